"""Binary gate ensuring at most one sync session runs at a time."""
import threading


class ConcurrencyGuard:
    """
    Non-queueing mutual exclusion.

    A caller that cannot acquire is told to skip its attempt instead of
    waiting: the next scheduled tick retries soon, so there is never a
    backlog behind a slow remote API.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        """Release the gate. Releasing an open gate is a no-op."""
        try:
            self._lock.release()
        except RuntimeError:
            pass

    @property
    def held(self) -> bool:
        return self._lock.locked()
