"""Progress events and the published engine state."""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from lighthouse.sync.reconciler import EntitySnapshot
from lighthouse.sync.session import SyncPhase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    phase: SyncPhase
    message: str
    percent: int = 0


@dataclass(frozen=True)
class EngineState:
    """What the rendering layer reads. Replaced wholesale, never mutated."""

    entities: EntitySnapshot = field(default_factory=EntitySnapshot)
    stats: Dict[str, Any] = field(default_factory=dict)
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    is_syncing: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    progress: Optional[ProgressEvent] = None

    def evolve(self, **changes) -> "EngineState":
        return replace(self, **changes)


Event = Union[ProgressEvent, EngineState]
Subscriber = Callable[[Event], None]


class EventStream:
    """
    Fan-out of progress events and state snapshots.

    Subscribers are plain callables invoked synchronously in publish order;
    a failing subscriber is logged and does not affect the others or the
    sync. Async consumers can iterate listen() instead.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as exc:
                logger.warning("Event subscriber %r failed: %s", callback, exc)

    async def listen(self) -> AsyncIterator[Event]:
        """Yield every event published after the iterator starts."""
        queue: "asyncio.Queue[Event]" = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
