"""
Sync sessions, phases, outcomes and the cooperative cancellation token.

A session is created by the executor for every sync attempt. Its token is
checked at well-defined boundaries (before each remote call / page, and
immediately before the store write); nothing else inspects "is this still
current?" state.
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SyncCancelledError(Exception):
    """Raised at a cancellation checkpoint once the session's token is cancelled."""


class CancellationToken:
    """One-shot, thread-safe cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if it was already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelledError(self.reason or "cancelled")


class SyncPhase(str, Enum):
    IDLE = "idle"
    LOCKING = "locking"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    PERSISTING = "caching"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({SyncPhase.COMPLETE, SyncPhase.ABORTED, SyncPhase.FAILED})


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"  # guard held by another session
    NOOP = "noop"  # nothing to sync (no monitored members)
    ABORTED = "aborted"
    FAILED = "failed"


class SyncKind(str, Enum):
    INCREMENTAL = "incremental"
    BACKFILL = "backfill"


@dataclass
class SyncSession:
    kind: SyncKind = SyncKind.INCREMENTAL
    id: str = field(default_factory=lambda: f"sync_{uuid.uuid4().hex[:12]}")
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    token: CancellationToken = field(default_factory=CancellationToken)
    phase: SyncPhase = SyncPhase.IDLE

    @property
    def active(self) -> bool:
        return self.phase not in TERMINAL_PHASES and self.phase != SyncPhase.IDLE
