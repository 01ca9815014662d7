"""
Level-triggered work queue driving the reconciler.

Items are assessment names. A name is never handed to two workers at once: adding a
name that is already being processed marks it dirty, and it is re-queued when the
current worker finishes with it.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from datetime import timedelta
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple, Union

from core.assessment.cancellation import CancellationToken, CancelledError

logger = logging.getLogger(__name__)

Delay = Union[float, timedelta]
ReconcileFn = Callable[[str, CancellationToken], object]

BASE_ERROR_BACKOFF = 0.005


def _seconds(delay: Delay) -> float:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    return float(delay)


class WorkQueue:
    def __init__(
        self,
        reconcile: ReconcileFn,
        workers: int = 2,
        max_backoff: float = 300.0,
        base_backoff: float = BASE_ERROR_BACKOFF,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._reconcile = reconcile
        self._workers = workers
        self._max_backoff = max_backoff
        self._base_backoff = base_backoff

        self._cond = threading.Condition()
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._delayed: List[Tuple[float, int, str]] = []
        # earliest pending deadline per name; heap entries that disagree are stale
        self._due: Dict[str, float] = {}
        self._seq = itertools.count()
        self._failures: Dict[str, int] = {}
        self._shutting_down = False

        self._root = CancellationToken()
        self._threads: List[threading.Thread] = []

    # -------------------------
    # Producer side
    # -------------------------

    def add(self, name: str) -> None:
        with self._cond:
            if self._shutting_down or name in self._dirty:
                return
            self._dirty.add(name)
            if name not in self._processing:
                self._queue.append(name)
                self._cond.notify()

    def add_after(self, name: str, delay: Delay) -> None:
        seconds = _seconds(delay)
        if seconds <= 0:
            self.add(name)
            return
        with self._cond:
            if self._shutting_down:
                return
            at = time.monotonic() + seconds
            pending = self._due.get(name)
            if pending is not None and pending <= at:
                return
            self._due[name] = at
            heapq.heappush(self._delayed, (at, next(self._seq), name))
            self._cond.notify()

    def add_rate_limited(self, name: str) -> float:
        """Re-add after an exponential per-name backoff; returns the delay used."""
        with self._cond:
            failures = self._failures.get(name, 0)
            self._failures[name] = failures + 1
        delay = min(self._base_backoff * (2 ** failures), self._max_backoff)
        self.add_after(name, delay)
        return delay

    def forget(self, name: str) -> None:
        with self._cond:
            self._failures.pop(name, None)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    # -------------------------
    # Consumer side
    # -------------------------

    def _promote_due(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            at, _, name = heapq.heappop(self._delayed)
            if self._due.get(name) != at:
                continue
            del self._due[name]
            if name in self._dirty:
                continue
            self._dirty.add(name)
            if name not in self._processing:
                self._queue.append(name)

    def get(self) -> Optional[str]:
        """Block until a name is ready; None once the queue is shut down."""
        with self._cond:
            while True:
                if self._shutting_down:
                    return None
                self._promote_due(time.monotonic())
                if self._queue:
                    name = self._queue.popleft()
                    self._dirty.discard(name)
                    self._processing.add(name)
                    return name
                timeout = None
                if self._delayed:
                    timeout = max(0.0, self._delayed[0][0] - time.monotonic())
                self._cond.wait(timeout)

    def done(self, name: str) -> None:
        with self._cond:
            self._processing.discard(name)
            if name in self._dirty:
                self._queue.append(name)
                self._cond.notify()

    def process(self, name: str) -> None:
        """Reconcile one name and schedule its follow-up."""
        try:
            result = self._reconcile(name, self._root.child())
        except CancelledError:
            logger.info("Reconcile cancelled: name=%s", name)
            return
        except Exception:
            delay = self.add_rate_limited(name)
            logger.exception("Reconcile failed, retrying in %.3fs: name=%s", delay, name)
            return

        self.forget(name)
        requeue_after = getattr(result, "requeue_after", None)
        if requeue_after is not None and _seconds(requeue_after) > 0:
            self.add_after(name, requeue_after)
        elif getattr(result, "requeue", False):
            self.add(name)

    def _run_worker(self) -> None:
        while True:
            name = self.get()
            if name is None:
                return
            try:
                self.process(name)
            finally:
                self.done(name)

    # -------------------------
    # Lifecycle
    # -------------------------

    def start(self) -> None:
        for i in range(self._workers):
            t = threading.Thread(target=self._run_worker, name=f"reconcile-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info("Work queue started (workers=%s)", self._workers)

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        self._root.cancel("shutting down")
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("Work queue stopped")

    @property
    def processing(self) -> Set[str]:
        with self._cond:
            return set(self._processing)
