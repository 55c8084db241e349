"""
SyncEngine: the one object the host (API, CLI) talks to.

Owns the sync parameters, the published state, the executor, the offline
queue and the scheduler. All collaborators are injected so tests can swap
the ClickUp client for a mock and the store for in-memory SQLite.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from lighthouse.clickup.client import ClickUpClient, ClickUpNetworkError
from lighthouse.config import Settings, get_settings
from lighthouse.db.store import LocalStore
from lighthouse.scheduler.jobs import SyncScheduler
from lighthouse.sync.executor import StateHolder, SyncExecutor, SyncResult, local_now
from lighthouse.sync.guard import ConcurrencyGuard
from lighthouse.sync.offline_queue import OPERATION_TYPES, OfflineQueue, ReplayResult
from lighthouse.sync.params import SyncParameters
from lighthouse.sync.progress import EngineState, EventStream, Subscriber
from lighthouse.sync.session import SyncKind, SyncOutcome

logger = logging.getLogger(__name__)


class SyncEngine:
    def __init__(
        self,
        client,
        store: LocalStore,
        settings: Optional[Settings] = None,
        params: Optional[SyncParameters] = None,
        queue: Optional[OfflineQueue] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.store = store
        self.stream = EventStream()
        self.holder = StateHolder(self.stream, EngineState(entities=store.read_all()))
        self.executor = SyncExecutor(
            client,
            store,
            guard=ConcurrencyGuard(),
            holder=self.holder,
            settings=self.settings,
            clock=clock,
        )
        self.queue = queue or OfflineQueue(store.engine, max_attempts=self.settings.max_replay_attempts)
        self.params = params or SyncParameters.from_settings(self.settings)
        self.scheduler = SyncScheduler(self, self.settings)

    # ─── Reads ────────────────────────────────────────────────────────────────

    def read(self) -> EngineState:
        """Current published state; never waits on an in-flight sync."""
        return self.holder.state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.stream.subscribe(callback)

    # ─── Sync attempts ────────────────────────────────────────────────────────

    async def sync(self, kind: SyncKind = SyncKind.INCREMENTAL) -> SyncResult:
        return await self.executor.run(self.params, kind=kind)

    async def initial_sync(self) -> SyncResult:
        """Backfill when the cache is empty or stale, otherwise a normal sync."""
        if self.executor.backfill_due():
            logger.info("Cache empty or stale, running historical backfill")
            result = await self.sync(SyncKind.BACKFILL)
            if result.outcome == SyncOutcome.COMPLETED:
                return result
        return await self.sync()

    def cancel_current(self) -> bool:
        return self.executor.cancel_current()

    # ─── Host signals ─────────────────────────────────────────────────────────

    def set_parameters(self, params: SyncParameters) -> bool:
        """
        Swap in new parameters. Returns False (and does nothing) if they are
        unchanged; otherwise the in-flight session is cancelled and one
        debounced attempt is scheduled with the new values.
        """
        if params == self.params:
            return False
        if params.poll_interval_ms != self.params.poll_interval_ms:
            self.scheduler.reschedule_poll(params.poll_interval_ms)
        self.params = params
        self.scheduler.parameters_changed()
        return True

    def set_visible(self, visible: bool) -> None:
        self.scheduler.set_visible(visible)

    async def set_online(self, online: bool) -> Optional[SyncResult]:
        return await self.scheduler.set_online(online)

    # ─── Write operations / offline queue ─────────────────────────────────────

    async def replay_offline(self) -> ReplayResult:
        result = await self.queue.replay(self._apply_operation)
        self.queue.purge_failed(self.settings.failed_operation_retention_days)
        return result

    async def submit_operation(self, op_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a write operation to ClickUp, or queue it when offline.

        Raises:
            ValueError: unknown op_type.
            ClickUpAPIError: the API rejected the operation (not queued).
        """
        if op_type not in OPERATION_TYPES:
            raise ValueError(f"unknown operation type: {op_type!r}")
        if self.scheduler.online:
            try:
                await self._apply_operation(op_type, payload)
                return {"queued": False, "operation_id": None}
            except ClickUpNetworkError as exc:
                logger.warning("%s failed on the network, queueing: %s", op_type, exc)
        op = self.queue.enqueue(op_type, payload)
        return {"queued": True, "operation_id": op.operation_id}

    async def _apply_operation(self, op_type: str, payload: Dict[str, Any]) -> Any:
        if op_type == "time_entry_start":
            return await self.client.start_timer(payload["task_id"])
        if op_type == "time_entry_stop":
            return await self.client.stop_timer()
        if op_type == "task_update":
            return await self.client.update_task(payload["task_id"], payload.get("updates") or {})
        raise ValueError(f"unknown operation type: {op_type!r}")

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def start(self, initial_sync: bool = True) -> None:
        self.scheduler.start(initial_sync=initial_sync)

    async def shutdown(self) -> None:
        self.scheduler.shutdown()
        await self.client.aclose()


def build_engine(settings: Optional[Settings] = None) -> SyncEngine:
    """Wire a SyncEngine from settings: real ClickUp client, SQLite store."""
    from lighthouse.db.engine import get_engine

    settings = settings or get_settings()
    client = ClickUpClient(
        api_key=settings.clickup_api_key,
        team_id=settings.clickup_team_id,
        base_url=settings.clickup_base_url,
        timeout=settings.http_timeout_seconds,
    )
    return SyncEngine(client, LocalStore(get_engine()), settings=settings)
