"""
Offline recovery queue.

Write-style operations (start/stop a timer, update a task) issued while the
remote is unreachable are persisted as PendingOperation rows and replayed in
order on reconnect. An operation is deleted only after its handler returns,
i.e. after the remote acknowledged it; the first failure halts the replay
and leaves it (and everything behind it) in place for the next reconnect.
Delivery is at-least-once.

An operation that has failed max_attempts replays is marked "failed": it no
longer blocks the queue, stays visible in stats() for inspection, and is
purged once it is older than the retention period.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from lighthouse.models.sync import PendingOperation, utc_now
from lighthouse.sync.guard import ConcurrencyGuard

logger = logging.getLogger(__name__)

OPERATION_TYPES = ("time_entry_start", "time_entry_stop", "task_update")
PENDING = "pending"
FAILED = "failed"
DEFAULT_MAX_ATTEMPTS = 3

ReplayHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass
class ReplayResult:
    replayed: int = 0
    remaining: int = 0
    failed_operation_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False  # another replay was already running
    replayed_ids: List[str] = field(default_factory=list)
    abandoned_ids: List[str] = field(default_factory=list)  # marked failed this run


class OfflineQueue:
    """PendingOperation persistence plus ordered replay."""

    def __init__(self, engine, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.engine = engine
        self.max_attempts = max_attempts
        self._replaying = ConcurrencyGuard()

    def enqueue(self, op_type: str, payload: Dict[str, Any]) -> PendingOperation:
        """
        Persist one operation at the tail of the queue.

        Raises:
            ValueError: unknown op_type.
        """
        if op_type not in OPERATION_TYPES:
            raise ValueError(f"unknown operation type: {op_type!r}")
        op = PendingOperation(
            operation_id=f"op_{uuid.uuid4().hex[:12]}",
            op_type=op_type,
            payload_json=json.dumps(payload, sort_keys=True),
            created_at=utc_now(),
        )
        with Session(self.engine) as s:
            s.add(op)
            s.commit()
            s.refresh(op)
        logger.info("Queued %s operation %s for replay", op_type, op.operation_id)
        return op

    def pending(self) -> List[PendingOperation]:
        """Operations still due for replay, in enqueue order."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(PendingOperation)
                .where(PendingOperation.status == PENDING)
                .order_by(PendingOperation.id)
            ).all())

    def failed(self) -> List[PendingOperation]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(PendingOperation)
                .where(PendingOperation.status == FAILED)
                .order_by(PendingOperation.id)
            ).all())

    def stats(self) -> Dict[str, Any]:
        with Session(self.engine) as s:
            counts = dict(s.exec(
                select(PendingOperation.status, func.count()).group_by(PendingOperation.status)
            ).all())
            oldest = s.exec(
                select(PendingOperation.created_at)
                .where(PendingOperation.status == PENDING)
                .order_by(PendingOperation.id)
            ).first()
        return {
            "pending": counts.get(PENDING, 0),
            "failed": counts.get(FAILED, 0),
            "oldest": oldest,
        }

    async def replay(self, handler: ReplayHandler) -> ReplayResult:
        """
        Replay every pending operation in enqueue order.

        Args:
            handler: async (op_type, payload) → anything; returning means the
                remote acknowledged the operation, raising means it did not.

        Returns:
            ReplayResult. Failures are reported here, never raised.
        """
        if not self._replaying.try_acquire():
            logger.info("Replay already in progress, skipping")
            return ReplayResult(skipped=True, remaining=self.stats()["pending"])

        result = ReplayResult()
        try:
            for op in self.pending():
                try:
                    await handler(op.op_type, json.loads(op.payload_json))
                except Exception as exc:
                    logger.warning(
                        "Replay of %s (%s) failed, halting: %s",
                        op.operation_id, op.op_type, exc,
                    )
                    if self._record_failure(op.id, str(exc)):
                        result.abandoned_ids.append(op.operation_id)
                    result.failed_operation_id = op.operation_id
                    result.error = str(exc)
                    break
                self._acknowledge(op.id)
                result.replayed += 1
                result.replayed_ids.append(op.operation_id)
        finally:
            self._replaying.release()

        result.remaining = self.stats()["pending"]
        logger.info(
            "Replayed %d queued operations, %d remaining", result.replayed, result.remaining
        )
        return result

    def purge_failed(self, older_than_days: int, now: Optional[datetime] = None) -> int:
        """Delete failed operations created more than older_than_days ago."""
        cutoff = (now or utc_now()).astimezone(timezone.utc) - timedelta(days=older_than_days)
        with Session(self.engine) as s:
            # created_at is stored as UTC without an offset
            cutoff_naive = cutoff.replace(tzinfo=None)
            purged = s.execute(
                delete(PendingOperation)
                .where(PendingOperation.status == FAILED)
                .where(PendingOperation.created_at < cutoff_naive)
            ).rowcount
            s.commit()
        if purged:
            logger.info("Purged %d failed operations older than %d days", purged, older_than_days)
        return purged

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _acknowledge(self, op_id: int) -> None:
        with Session(self.engine) as s:
            op = s.get(PendingOperation, op_id)
            if op is not None:
                s.delete(op)
                s.commit()

    def _record_failure(self, op_id: int, error: str) -> bool:
        """Returns True when this failure used up the operation's last attempt."""
        with Session(self.engine) as s:
            op = s.get(PendingOperation, op_id)
            op.attempts += 1
            op.last_error = error
            abandoned = op.attempts >= self.max_attempts
            if abandoned:
                op.status = FAILED
                logger.error(
                    "Operation %s (%s) failed %d times, giving up: %s",
                    op.operation_id, op.op_type, op.attempts, error,
                )
            s.add(op)
            s.commit()
        return abandoned
