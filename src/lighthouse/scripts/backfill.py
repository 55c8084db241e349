"""
Backfill script: one historical sync of every team task.

Usage:
    python -m lighthouse.scripts.backfill --max-pages 100

Runs a backfill session (unfiltered task query, historical page limits and
the slower inter-page delay) through the normal executor, so the result is
merged into the cache exactly like a scheduled sync. Skips the run when the
last backfill is recent unless --force is given.
"""
import argparse
import asyncio
import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _backfill(max_pages: int, force: bool) -> int:
    from lighthouse.config import get_settings
    from lighthouse.engine import build_engine
    from lighthouse.sync.session import SyncKind, SyncOutcome

    settings = get_settings().model_copy(update={"historical_max_pages": max_pages})
    engine = build_engine(settings)

    try:
        if not force and not engine.executor.backfill_due():
            logger.info("Last backfill is recent; use --force to run anyway.")
            return 0

        result = await engine.sync(SyncKind.BACKFILL)
    finally:
        await engine.client.aclose()

    if result.outcome != SyncOutcome.COMPLETED:
        logger.error("Backfill %s: %s", result.outcome.value, result.error)
        return 1

    logger.info(
        "Backfill complete. Members: %d, Tasks: %d, Time entries: %d%s",
        result.members_synced,
        result.tasks_synced,
        result.entries_synced,
        " (truncated at page limit)" if result.truncated else "",
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill ClickUp tasks and time entries")
    parser.add_argument(
        "--max-pages",
        type=int,
        default=100,
        help="Maximum task pages to fetch (default: 100)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if the last backfill is recent",
    )
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_backfill(args.max_pages, args.force)))


if __name__ == "__main__":
    main()
