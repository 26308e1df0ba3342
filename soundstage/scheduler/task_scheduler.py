"""
Background task scheduler.

Optional collaborator that moves fade/crossfade stepping and playlist
sequencing off the caller's thread:

- schedule_timer(delay, callback): run callback after delay seconds on the
  timer thread. A positive numeric return value reschedules the callback
  after that many seconds; zero/None stops it.
- add_task(fn): run fn on a worker thread, returning a Deferred settled with
  its result (or its exception).
- new_deferred(): a fresh Deferred for promise-style chaining.

Timer callbacks run on the single timer thread and must be short; blocking
work belongs in add_task().
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Any, Callable, List, Optional, Protocol, Tuple

from .deferred import Deferred

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellable handle for a scheduled callback."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        self._cancelled.set()
        if self._on_cancel is not None:
            self._on_cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class TaskScheduler(Protocol):
    """Interface the engine expects from a background scheduler."""

    def schedule_timer(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...

    def add_task(self, fn: Callable[[], Any], name: Optional[str] = None) -> Deferred:
        ...

    def new_deferred(self) -> Deferred:
        ...


class ThreadedTaskScheduler:
    """
    TaskScheduler backed by one heap-ordered timer thread and daemon worker threads.
    """

    def __init__(self, name: str = "soundstage-scheduler"):
        self.name = name
        self._lock = threading.RLock()
        self._condition = threading.Condition(self._lock)
        self._timers: List[Tuple[float, int, TimerHandle, Callable[[], Any]]] = []
        self._sequence = itertools.count()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def start(self) -> None:
        """Start the timer thread (idempotent)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug(f"[SCHEDULER] {self.name} started")

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop the timer thread. Pending timers are dropped."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._timers.clear()
            self._condition.notify_all()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.debug(f"[SCHEDULER] {self.name} stopped")

    @property
    def running(self) -> bool:
        return self._running

    def new_deferred(self) -> Deferred:
        return Deferred()

    def schedule_timer(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = TimerHandle()
        self._push(max(0.0, float(delay)), handle, callback)
        return handle

    def add_task(self, fn: Callable[[], Any], name: Optional[str] = None) -> Deferred:
        deferred = Deferred()

        def worker():
            try:
                deferred.resolve(fn())
            except Exception as e:
                logger.debug(f"[SCHEDULER] Task {name or fn!r} failed: {e}")
                deferred.reject(e)

        thread = threading.Thread(target=worker, name=name or f"{self.name}-task", daemon=True)
        thread.start()
        return deferred

    def _push(self, delay: float, handle: TimerHandle, callback: Callable[[], Any]) -> None:
        with self._lock:
            if not self._running:
                raise RuntimeError(f"{self.name} is not running")
            heapq.heappush(self._timers, (time.monotonic() + delay, next(self._sequence), handle, callback))
            self._condition.notify_all()

    def _run(self) -> None:
        while True:
            with self._lock:
                while self._running:
                    if not self._timers:
                        self._condition.wait()
                        continue
                    due = self._timers[0][0]
                    remaining = due - time.monotonic()
                    if remaining <= 0:
                        break
                    self._condition.wait(timeout=remaining)
                if not self._running:
                    return
                _, _, handle, callback = heapq.heappop(self._timers)

            if handle.cancelled:
                continue
            try:
                again = callback()
            except Exception as e:
                logger.error(f"[SCHEDULER] Timer callback failed: {e}", exc_info=True)
                continue
            if isinstance(again, (int, float)) and not isinstance(again, bool) and again > 0 and not handle.cancelled:
                try:
                    self._push(float(again), handle, callback)
                except RuntimeError:
                    return
