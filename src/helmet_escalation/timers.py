"""Owned timer thread that hands due callbacks to a worker pool."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List

logger = logging.getLogger(__name__)

# Rebuild the heap once this many canceled handles are waiting in it.
_COMPACT_THRESHOLD = 64

# Records which service the current pool worker is running a callback for.
_worker_state = threading.local()


@dataclass(order=True)
class TimerHandle:
    """A single armed timer; ordered and compared by ``(deadline, sequence)``."""

    deadline: float
    sequence: int
    callback: Callable[[], object] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)
    dispatched: bool = field(default=False, compare=False)

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.dispatched)


class TimerService:
    """Single timer thread backed by a heap plus a ``ThreadPoolExecutor``.

    Callbacks never run on the timer thread itself, so a slow callback
    cannot hold back other deadlines. The service must be shut down
    explicitly; :meth:`shutdown` cancels every outstanding handle.
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        name: str = "helmet-escalation-timer",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._condition = threading.Condition()
        self._heap: List[TimerHandle] = []
        self._sequence = itertools.count(1)
        self._cancelled_in_heap = 0
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix=f"{name}-worker",
        )
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    # ------------------------------------------------------------------ helpers
    @property
    def closed(self) -> bool:
        return self._closed

    def now(self) -> float:
        return self._clock()

    def pending_count(self) -> int:
        with self._condition:
            return sum(1 for handle in self._heap if handle.active)

    # --------------------------------------------------------------- arm/disarm
    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle:
        """Run ``callback`` on the worker pool once ``delay`` seconds elapse."""

        if delay < 0:
            raise ValueError("delay must be >= 0")
        with self._condition:
            if self._closed:
                raise RuntimeError("TimerService has been shut down")
            handle = TimerHandle(
                deadline=self._clock() + float(delay),
                sequence=next(self._sequence),
                callback=callback,
            )
            heapq.heappush(self._heap, handle)
            if self._heap[0] is handle:
                self._condition.notify()
        return handle

    def cancel(self, handle: TimerHandle | None) -> bool:
        """Disarm ``handle``; ``False`` when it already fired or was canceled."""

        if handle is None:
            return False
        with self._condition:
            if not handle.active:
                return False
            handle.cancelled = True
            self._cancelled_in_heap += 1
            if (
                self._cancelled_in_heap >= _COMPACT_THRESHOLD
                and self._cancelled_in_heap * 2 > len(self._heap)
            ):
                self._compact()
            return True

    def _compact(self) -> None:
        self._heap = [handle for handle in self._heap if not handle.cancelled]
        heapq.heapify(self._heap)
        self._cancelled_in_heap = 0

    # ---------------------------------------------------------------- main loop
    def _run(self) -> None:
        while True:
            with self._condition:
                while True:
                    if self._closed:
                        return
                    while self._heap and self._heap[0].cancelled:
                        heapq.heappop(self._heap)
                        self._cancelled_in_heap -= 1
                    if not self._heap:
                        self._condition.wait()
                        continue
                    remaining = self._heap[0].deadline - self._clock()
                    if remaining <= 0:
                        break
                    self._condition.wait(remaining)
                due: List[TimerHandle] = []
                now = self._clock()
                while self._heap and self._heap[0].deadline <= now:
                    handle = heapq.heappop(self._heap)
                    if handle.cancelled:
                        self._cancelled_in_heap -= 1
                        continue
                    handle.dispatched = True
                    due.append(handle)
            for handle in due:
                future = self._executor.submit(self._invoke, handle.callback)
                future.add_done_callback(self._report_crash)

    def _invoke(self, callback: Callable[[], object]) -> object:
        _worker_state.service = self
        try:
            return callback()
        finally:
            _worker_state.service = None

    @staticmethod
    def _report_crash(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Timer callback raised", exc_info=exc)

    # ----------------------------------------------------------------- shutdown
    def shutdown(self, wait: bool = True) -> int:
        """Cancel outstanding timers and stop the thread; returns the cancel count.

        From inside one of this service's own callbacks the worker pool is
        released without waiting for it.
        """

        with self._condition:
            if self._closed:
                return 0
            self._closed = True
            cancelled = 0
            for handle in self._heap:
                if handle.active:
                    handle.cancelled = True
                    cancelled += 1
            self._heap.clear()
            self._cancelled_in_heap = 0
            self._condition.notify_all()
        if threading.current_thread() is not self._thread:
            self._thread.join()
        on_own_worker = getattr(_worker_state, "service", None) is self
        self._executor.shutdown(wait=wait and not on_own_worker)
        return cancelled


__all__ = ["TimerHandle", "TimerService"]
