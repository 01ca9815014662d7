from __future__ import annotations

import threading
import time
import weakref
from typing import Optional


class CancelledError(Exception):
    """Raised when work is abandoned because its token was cancelled or expired."""


class CancellationToken:
    """
    Cooperative cancellation passed down the reconciler -> runner -> validator chain.

    A token is cancelled explicitly or when its deadline (monotonic seconds) passes.
    Child tokens observe their parent's cancellation but can carry a tighter deadline.
    """

    def __init__(self, deadline: Optional[float] = None, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._deadline = deadline
        self._parent = parent
        self._reason = ""
        self._lock = threading.Lock()
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()
        if parent is not None:
            with parent._lock:
                parent._children.add(self)

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        deadline = self._deadline
        if timeout is not None:
            own = time.monotonic() + timeout
            deadline = own if deadline is None else min(deadline, own)
        return CancellationToken(deadline=deadline, parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
        with self._lock:
            children = list(self._children)
        # wake children blocked in wait()
        for child in children:
            child.cancel(reason)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return self._reason
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return "deadline exceeded"
        if self._parent is not None:
            return self._parent.reason
        return ""

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None if self._parent is None else self._parent.remaining()
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(self.reason)

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds, waking early on explicit cancellation."""
        if self.cancelled:
            return True
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled


def background() -> CancellationToken:
    """A token that is never cancelled unless someone calls cancel() on it."""
    return CancellationToken()
