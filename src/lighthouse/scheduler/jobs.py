"""
APScheduler jobs for background sync.

Three jobs drive every sync attempt:
  - poll_sync       interval job, one attempt per poll interval
  - debounced_sync  one-shot date job, re-armed on every parameter change
                    so a burst of changes collapses into one attempt
  - initial_sync    one-shot date job shortly after start (backfill first
                    if the cache is empty or stale)

Ticks are gated on visibility (the poll job is paused while the dashboard
is hidden) and on connectivity (offline ticks are dropped; reconnecting
replays the offline queue, then syncs once immediately).

The scheduler runs inside the same event loop as the API (wired in
lighthouse.engine).
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from lighthouse.config import Settings, get_settings

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll_sync"
DEBOUNCE_JOB_ID = "debounced_sync"
INITIAL_JOB_ID = "initial_sync"


def build_scheduler(sync_engine, settings: Optional[Settings] = None) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        sync_engine: Object exposing async tick() (normally SyncScheduler).
        settings: Settings; defaults to get_settings().

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        sync_engine.tick,
        trigger="interval",
        seconds=settings.poll_interval_ms / 1000,
        id=POLL_JOB_ID,
        replace_existing=True,
        coalesce=True,
    )

    return scheduler


class SyncScheduler:
    """
    Turns poll ticks, parameter changes, visibility and connectivity changes
    into sync attempts on a SyncEngine.

    The engine must expose: async sync(), async initial_sync(),
    cancel_current() → bool and async replay_offline().
    """

    def __init__(self, engine, settings: Optional[Settings] = None):
        self.engine = engine
        self.settings = settings or get_settings()
        self.visible = True
        self.online = True
        self.scheduler = build_scheduler(self, self.settings)

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def start(self, initial_sync: bool = True) -> None:
        """Start the scheduler. Must be called with an event loop running."""
        if initial_sync:
            self.scheduler.add_job(
                self.engine.initial_sync,
                trigger="date",
                run_date=datetime.now(timezone.utc) + timedelta(milliseconds=self.settings.initial_sync_delay_ms),
                id=INITIAL_JOB_ID,
                replace_existing=True,
                misfire_grace_time=None,
            )
        self.scheduler.start()
        logger.info(
            "Scheduler started (polling every %.1fs)", self.settings.poll_interval_ms / 1000
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    # ─── Triggers ─────────────────────────────────────────────────────────────

    async def tick(self):
        """Poll job body: one sync attempt unless hidden or offline."""
        if not self.visible or not self.online:
            logger.debug("Tick ignored (visible=%s, online=%s)", self.visible, self.online)
            return None
        return await self.engine.sync()

    def parameters_changed(self) -> None:
        """
        Cancel the in-flight session and (re)arm the debounce timer.

        Only the last change inside the debounce window produces an attempt;
        the attempt reads the engine's parameters when it fires.
        """
        self.engine.cancel_current()
        self.scheduler.add_job(
            self.engine.sync,
            trigger="date",
            run_date=datetime.now(timezone.utc) + timedelta(milliseconds=self.settings.debounce_ms),
            id=DEBOUNCE_JOB_ID,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def reschedule_poll(self, interval_ms: int) -> None:
        self.scheduler.reschedule_job(
            POLL_JOB_ID, trigger="interval", seconds=interval_ms / 1000
        )
        if not self.visible:
            self.scheduler.pause_job(POLL_JOB_ID)
        logger.info("Poll interval set to %.1fs", interval_ms / 1000)

    def set_visible(self, visible: bool) -> None:
        if visible == self.visible:
            return
        self.visible = visible
        if visible:
            self.scheduler.resume_job(POLL_JOB_ID)
            logger.info("Dashboard visible, polling resumed")
        else:
            self.scheduler.pause_job(POLL_JOB_ID)
            logger.info("Dashboard hidden, polling paused")

    async def set_online(self, online: bool):
        """
        Track connectivity. On reconnect, replay queued operations first and
        then run one out-of-band sync attempt; returns that attempt's result.
        """
        was_online = self.online
        self.online = online
        if not online:
            if was_online:
                logger.info("Went offline, ticks suspended")
            return None
        if was_online:
            return None
        logger.info("Back online, replaying queued operations")
        await self.engine.replay_offline()
        return await self.engine.sync()
