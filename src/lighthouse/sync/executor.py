"""
SyncExecutor: runs one sync session end to end.

Flow for a single attempt:
  1. locking      guard.try_acquire(); if another session holds it → skipped
  2. fetching     members → time entries (30-day chunks) → running timers
                  → task pages through the rate-limited fetcher
  3. reconciling  pure merge of the remote batch into the store snapshot
  4. caching      one bulk_upsert of the reconciled snapshot (stale time
                  entries deleted in the same transaction), then the task
                  baseline and leave records when they were refreshed
  5. publishing   new EngineState + final progress event

The session's token is checked before every remote call, at every page
boundary and immediately before the store write. Cancelled sessions end
as aborted and never write. Every exception is caught here and turned into
a session outcome plus last_error; nothing propagates to the scheduler.

Every attempt records a SyncLog row (status = the outcome). If the log
itself cannot be written the attempt ends as failed instead of raising.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from lighthouse.clickup.client import ClickUpError, ClickUpNetworkError
from lighthouse.config import Settings, get_settings
from lighthouse.db.store import StoreError
from lighthouse.models.sync import SyncLog, as_utc, utc_now
from lighthouse.sync.baseline import (
    BASELINE_DAYS,
    BASELINE_KEY,
    avg_tasks_per_member_day,
    current_baseline,
)
from lighthouse.sync.derive import DeriveFn, Thresholds
from lighthouse.sync.fetcher import fetch_all
from lighthouse.sync.guard import ConcurrencyGuard
from lighthouse.sync.leaves import LEAVES_KEY, build_leaves, fetch_leave_tasks, leaves_due
from lighthouse.sync.params import SyncParameters, working_days
from lighthouse.sync.progress import EngineState, EventStream, ProgressEvent
from lighthouse.sync.reconciler import (
    EntitySnapshot,
    ReconciliationError,
    RemoteBatch,
    reconcile,
    summarize,
)
from lighthouse.sync.session import (
    SyncCancelledError,
    SyncKind,
    SyncOutcome,
    SyncPhase,
    SyncSession,
)

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000
TIME_ENTRY_CHUNK_DAYS = 30  # ClickUp caps a time entry query at ~30 days
NETWORK_ERROR_MESSAGE = "Network error - retrying..."


@dataclass
class SyncResult:
    session_id: str
    kind: SyncKind
    outcome: SyncOutcome
    members_synced: int = 0
    tasks_synced: int = 0
    entries_synced: int = 0
    entries_removed: int = 0
    pages_fetched: int = 0
    truncated: bool = False
    error: Optional[str] = None
    snapshot: Optional[EntitySnapshot] = None
    stats: Dict[str, Any] = field(default_factory=dict)


class StateHolder:
    """Holds the current EngineState and publishes every replacement."""

    def __init__(self, stream: EventStream, initial: Optional[EngineState] = None):
        self.stream = stream
        self.state = initial or EngineState()

    def update(self, **changes) -> EngineState:
        self.state = self.state.evolve(**changes)
        self.stream.publish(self.state)
        return self.state


def _raw_member_id(raw: Dict[str, Any]) -> Optional[str]:
    user = raw.get("user") if isinstance(raw.get("user"), dict) else raw
    value = user.get("id") if isinstance(user, dict) else None
    return str(value) if value is not None else None


def local_now() -> datetime:
    return datetime.now().astimezone()


class SyncExecutor:
    """Runs sync sessions against one ClickUp team and one local store."""

    def __init__(
        self,
        client,
        store,
        guard: Optional[ConcurrencyGuard] = None,
        holder: Optional[StateHolder] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = local_now,
        derive_fns: Optional[Sequence[DeriveFn]] = None,
    ):
        """
        Args:
            client: ClickUpClient instance (or AsyncMock in tests).
            store: LocalStore over the SQLModel engine.
            guard: Shared ConcurrencyGuard; one is created if omitted.
            holder: StateHolder the engine reads from.
            settings: Settings; defaults to get_settings().
            clock: Returns a timezone-aware "now"; fixes date ranges and
                derived timings for the whole session.
            derive_fns: Derived-field functions passed to the reconciler.
        """
        self.client = client
        self.store = store
        self.guard = guard or ConcurrencyGuard()
        self.holder = holder or StateHolder(EventStream())
        self.settings = settings or get_settings()
        self.clock = clock
        self.derive_fns = derive_fns
        self.current: Optional[SyncSession] = None

    # ─── Public API ───────────────────────────────────────────────────────────

    def cancel_current(self, reason: str = "parameters changed") -> bool:
        """Cancel the in-flight session, if any. Returns True if one was signalled."""
        session = self.current
        if session is None or not session.active:
            return False
        cancelled = session.token.cancel(reason)
        if cancelled:
            logger.info("Cancelling sync %s: %s", session.id, reason)
        return cancelled

    async def run(
        self,
        params: SyncParameters,
        kind: SyncKind = SyncKind.INCREMENTAL,
        session: Optional[SyncSession] = None,
    ) -> SyncResult:
        """
        Run one sync attempt. Never raises; the outcome is in the result.
        """
        session = session or SyncSession(kind=kind)
        session.phase = SyncPhase.LOCKING

        if not self.guard.try_acquire():
            logger.info("Sync %s skipped: another session is running", session.id)
            session.phase = SyncPhase.IDLE
            result = SyncResult(session.id, session.kind, SyncOutcome.SKIPPED)
            try:
                self._finish_sync_log(self._create_sync_log(session), result)
            except StoreError as exc:
                logger.warning("Could not record skipped sync %s: %s", session.id, exc)
            return result

        try:
            self.current = session
            self.holder.update(is_syncing=True, phase=SyncPhase.LOCKING)
            try:
                log = self._create_sync_log(session)
            except StoreError as exc:
                logger.error("Sync %s failed: %s", session.id, exc)
                return self._end(
                    session, SyncPhase.FAILED, SyncOutcome.FAILED, "Sync failed", error=str(exc)
                )
            result = await self._run_guarded(session, params)
            self._finish_sync_log(log, result)
        finally:
            self.current = None
            self.guard.release()

        return result

    def backfill_due(self) -> bool:
        """True when the cache holds no tasks or the last backfill is stale."""
        if self.store.count_tasks() == 0:
            return True
        with Session(self.store.engine) as s:
            last = s.exec(
                select(SyncLog)
                .where(SyncLog.kind == SyncKind.BACKFILL.value)
                .where(SyncLog.status == SyncOutcome.COMPLETED.value)
                .order_by(SyncLog.finished_at.desc())
            ).first()
        if last is None or last.finished_at is None:
            return True
        now_utc = self.clock().astimezone(timezone.utc)
        return now_utc - as_utc(last.finished_at) > timedelta(days=self.settings.backfill_stale_days)

    # ─── Session body ─────────────────────────────────────────────────────────

    async def _run_guarded(self, session: SyncSession, params: SyncParameters) -> SyncResult:
        try:
            return await self._execute(session, params)

        except SyncCancelledError as exc:
            logger.info("Sync %s aborted: %s", session.id, exc)
            return self._end(session, SyncPhase.ABORTED, SyncOutcome.ABORTED, "Sync cancelled")

        except ClickUpNetworkError as exc:
            logger.warning("Sync %s failed, will retry on next tick: %s", session.id, exc)
            return self._end(
                session, SyncPhase.FAILED, SyncOutcome.FAILED,
                "Sync failed", error=NETWORK_ERROR_MESSAGE,
            )

        except ReconciliationError as exc:
            logger.error("Sync %s failed on malformed remote data: %s", session.id, exc)
            return self._end(
                session, SyncPhase.FAILED, SyncOutcome.FAILED, "Sync failed", error=str(exc)
            )

        except Exception as exc:
            # ClickUpAPIError, StoreError and anything unexpected
            logger.exception("Sync %s failed", session.id)
            return self._end(
                session, SyncPhase.FAILED, SyncOutcome.FAILED, "Sync failed", error=str(exc)
            )

    async def _execute(self, session: SyncSession, params: SyncParameters) -> SyncResult:
        settings = self.settings
        token = session.token
        now = self.clock()
        now_ms = int(now.timestamp() * 1000)
        range_start_ms, range_end_ms = params.date_range.bounds_ms(now)
        first_day, last_day = params.date_range.days(now)
        backfill = session.kind == SyncKind.BACKFILL
        self.client.reset_request_count()

        # Members
        self._phase(session, SyncPhase.FETCHING, "Fetching team members...", 5)
        token.raise_if_cancelled()
        raw_members = await self.client.list_entities(params.entity_filter)
        member_ids = sorted({
            mid for mid in (_raw_member_id(m) for m in raw_members)
            if mid and params.matches(mid)
        })
        if not member_ids:
            logger.info("Sync %s: no monitored members, nothing to do", session.id)
            return self._end(session, SyncPhase.COMPLETE, SyncOutcome.NOOP, "No members to sync", percent=100)

        # Time entries, oldest chunk first
        self._phase(session, SyncPhase.FETCHING, "Fetching time entries...", 15)
        entries_end_ms = max(range_end_ms, now_ms)
        raw_entries = await self._fetch_time_entries(
            token, member_ids, range_start_ms, entries_end_ms
        )
        baseline, baseline_stale = current_baseline(self.store, now, settings.baseline_refresh_hours)
        refreshed_baseline = None
        if baseline_stale:
            baseline = refreshed_baseline = avg_tasks_per_member_day(
                raw_entries, since_ms=now_ms - BASELINE_DAYS * MS_PER_DAY
            )
            logger.info("Task baseline refreshed: %.2f tasks per member-day", baseline)

        # Running timers (per member; one failure must not sink the sync)
        self._phase(session, SyncPhase.FETCHING, "Checking running timers...", 25)
        running: Dict[str, Optional[Dict[str, Any]]] = {}
        for member_id in member_ids:
            token.raise_if_cancelled()
            try:
                running[member_id] = await self.client.get_running_timer(member_id)
            except ClickUpError as exc:
                logger.warning("Running timer lookup failed for %s: %s", member_id, exc)
                running[member_id] = None

        # Tasks
        if backfill:
            task_filter = {"assignees": [], "date_updated_gt": None}
            max_pages = settings.historical_max_pages
            delay_ms = settings.historical_page_delay_ms
        else:
            task_filter = {
                "assignees": member_ids,
                "date_updated_gt": now_ms - settings.history_days * MS_PER_DAY,
            }
            max_pages = settings.max_task_pages
            delay_ms = settings.page_delay_ms
        task_filter.update(include_closed=True, subtasks=True)

        def on_page(pages: int, percent: int) -> None:
            self._phase(
                session, SyncPhase.FETCHING,
                f"Fetching tasks (page {pages})...", max(30, percent),
            )

        fetch = await fetch_all(
            partial(self.client.list_tasks_page, task_filter),
            max_pages=max_pages,
            inter_page_delay_ms=delay_ms,
            token=token,
            on_progress=on_page,
        )
        if fetch.error is not None and fetch.pages_fetched == 0:
            raise fetch.error

        leave_tasks = None
        if leaves_due(self.store, settings, now):
            self._phase(session, SyncPhase.FETCHING, "Fetching leave requests...", 90)
            leave_tasks = await fetch_leave_tasks(self.client, settings, token)

        # Reconcile
        self._phase(session, SyncPhase.RECONCILING, "Processing team data...", 92)
        token.raise_if_cancelled()
        batch = RemoteBatch(
            members=raw_members,
            time_entries=raw_entries,
            tasks=fetch.records,
            running_timers=running,
            range_start_ms=range_start_ms,
            range_end_ms=range_end_ms,
            fetched_at_ms=now_ms,
            working_days=working_days(first_day, last_day, settings.weekend_days),
            entity_filter=params.entity_filter,
            thresholds=Thresholds.from_settings(settings),
            entry_user_ids=frozenset(member_ids),
            entries_window_end_ms=entries_end_ms,
            avg_tasks_baseline=baseline,
            tz=now.tzinfo or timezone.utc,
        )
        local = self.store.read_all()
        snapshot = reconcile(local, batch, self.derive_fns)
        removed = sorted(k for k in local.time_entries if k not in snapshot.time_entries)
        stats = summarize(snapshot, batch)
        stats["avg_tasks_baseline"] = baseline
        leaves = None
        if leave_tasks is not None:
            names = {m["clickup_id"]: m["name"] for m in snapshot.monitored_members(params.entity_filter)}
            leaves = build_leaves(leave_tasks, names)

        # Persist: last cancellation checkpoint, then one synchronous write
        self._phase(session, SyncPhase.PERSISTING, "Saving to cache...", 96)
        token.raise_if_cancelled()
        self.store.bulk_upsert(snapshot, removed_entry_ids=removed)
        self._save_refreshed(now, refreshed_baseline, leaves)

        # Publish
        self._phase(session, SyncPhase.PUBLISHING, "Publishing...", 98)
        message = "Sync complete"
        if fetch.truncated:
            message = "Sync complete (partial data: not all task pages were fetched)"
        self.holder.update(
            entities=snapshot,
            stats=stats,
            last_sync_at=now,
            last_error=None,
        )
        logger.info(
            "Sync %s complete: %d members, %d tasks, %d entries in %d requests%s",
            session.id,
            len(member_ids),
            len(fetch.records),
            len(raw_entries),
            self.client.request_count,
            " (truncated)" if fetch.truncated else "",
        )
        result = self._end(session, SyncPhase.COMPLETE, SyncOutcome.COMPLETED, message, percent=100)
        result.members_synced = len(member_ids)
        result.tasks_synced = len(fetch.records)
        result.entries_synced = len(raw_entries)
        result.entries_removed = len(removed)
        result.pages_fetched = fetch.pages_fetched
        result.truncated = fetch.truncated
        result.snapshot = snapshot
        result.stats = stats
        return result

    async def _fetch_time_entries(
        self, token, member_ids: List[str], start_ms: int, end_ms: int
    ) -> List[Dict[str, Any]]:
        """Cover [min(start, end - history_days), end] in sequential 30-day chunks."""
        history_start = end_ms - self.settings.history_days * MS_PER_DAY
        chunk_start = min(start_ms, history_start)
        chunk_ms = TIME_ENTRY_CHUNK_DAYS * MS_PER_DAY
        entries: List[Dict[str, Any]] = []
        while chunk_start < end_ms:
            chunk_end = min(chunk_start + chunk_ms, end_ms)
            token.raise_if_cancelled()
            entries.extend(
                await self.client.list_time_entries(chunk_start, chunk_end, member_ids)
            )
            chunk_start = chunk_end
        return entries

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _phase(self, session: SyncSession, phase: SyncPhase, message: str, percent: int) -> None:
        if session.phase != phase:
            logger.info("Sync %s: %s", session.id, phase.value)
        session.phase = phase
        event = ProgressEvent(phase=phase, message=message, percent=percent)
        self.holder.stream.publish(event)
        self.holder.update(phase=phase, progress=event)

    def _end(
        self,
        session: SyncSession,
        phase: SyncPhase,
        outcome: SyncOutcome,
        message: str,
        percent: int = 0,
        error: Optional[str] = None,
    ) -> SyncResult:
        session.phase = phase
        event = ProgressEvent(phase=phase, message=message, percent=percent)
        self.holder.stream.publish(event)
        changes: Dict[str, Any] = {"is_syncing": False, "phase": phase, "progress": event}
        if error is not None:
            changes["last_error"] = error
        self.holder.update(**changes)
        return SyncResult(session.id, session.kind, outcome, error=error)

    def _create_sync_log(self, session: SyncSession) -> SyncLog:
        """Raises StoreError if the row cannot be written."""
        log = SyncLog(
            session_id=session.id,
            kind=session.kind.value,
            started_at=utc_now(),
            status="running",
        )
        try:
            with Session(self.store.engine) as s:
                s.add(log)
                s.commit()
                s.refresh(log)
        except SQLAlchemyError as exc:
            raise StoreError(f"sync log write failed: {exc}") from exc
        return log

    def _finish_sync_log(self, log: SyncLog, result: SyncResult) -> None:
        try:
            with Session(self.store.engine) as s:
                db_log = s.get(SyncLog, log.id)
                if db_log is None:
                    logger.warning("Sync log %s disappeared before it was finished", log.id)
                    return
                db_log.status = result.outcome.value
                db_log.finished_at = utc_now()
                db_log.members_synced = result.members_synced
                db_log.tasks_synced = result.tasks_synced
                db_log.entries_synced = result.entries_synced
                db_log.truncated = result.truncated
                db_log.error_message = result.error
                s.add(db_log)
                s.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not finish sync log for %s: %s", result.session_id, exc)

    def _save_refreshed(self, now: datetime, baseline: Optional[float], leaves) -> None:
        """Baseline and leave records are best effort; the main snapshot is already stored."""
        try:
            if baseline is not None:
                self.store.set_meta(BASELINE_KEY, baseline, updated_at=now)
            if leaves is not None:
                self.store.replace_leaves(leaves)
                self.store.set_meta(LEAVES_KEY, float(len(leaves)), updated_at=now)
        except StoreError as exc:
            logger.warning("Could not store refreshed baseline/leaves: %s", exc)
