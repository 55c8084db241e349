"""
Main entrypoint: runs the sync engine headless (scheduler only).

The API runs separately under uvicorn and starts its own engine.

Usage:
    python -m lighthouse            # poll + initial sync until Ctrl+C
    python -m lighthouse backfill   # one-shot historical backfill
    uvicorn lighthouse.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _log_progress(event) -> None:
    from lighthouse.sync.progress import ProgressEvent

    if isinstance(event, ProgressEvent):
        logger.info("[%s] %s (%d%%)", event.phase.value, event.message, event.percent)


async def _run_engine() -> None:
    from lighthouse.config import get_settings
    from lighthouse.engine import build_engine

    settings = get_settings()
    if not settings.clickup_api_key or not settings.clickup_team_id:
        logger.error("CLICKUP_API_KEY and CLICKUP_TEAM_ID must be set (env or .env).")
        sys.exit(1)

    engine = build_engine(settings)
    engine.subscribe(_log_progress)
    engine.start()
    logger.info("Sync engine is running. Press Ctrl+C to stop.")

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        await engine.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m lighthouse backfill` or just `python -m lighthouse`
    if len(sys.argv) > 1 and sys.argv[1] == "backfill":
        from lighthouse.scripts.backfill import main

        sys.argv = [sys.argv[0]] + sys.argv[2:]
        main()
    else:
        asyncio.run(_run_engine())
