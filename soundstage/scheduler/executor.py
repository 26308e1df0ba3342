"""
Step executors for SoundStage.

Fades and crossfades are written once as plain step loops against the
StepExecutor capability:

- sleep(seconds, token): suspend one step; returns False as soon as the
  CancelToken fires
- run_concurrently(*sequences): run sequences side by side and return only
  after all of them finished (the first failure is re-raised)
- spawn(fn, name): run fn in the background, returning a TaskHandle
- call_later(delay, callback): one-shot timer, returning a TimerHandle
- now(): monotonic clock used for playback timing

DirectExecutor blocks on threading primitives. ScheduledExecutor routes every
suspension, sequence and timer through a TaskScheduler. Algorithms cannot
tell them apart.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

from .deferred import Deferred
from .task_scheduler import TaskScheduler, TimerHandle

logger = logging.getLogger(__name__)

STEP_INTERVAL = 0.1
MIN_STEPS = 5


def step_plan(duration: float) -> Tuple[int, float]:
    """
    Split a transition into steps.

    Args:
        duration: Transition length in seconds (negative treated as 0)

    Returns:
        (steps, step_duration) with steps = max(5, floor(duration / 0.1))
    """
    duration = max(0.0, float(duration))
    steps = max(MIN_STEPS, math.floor(duration / STEP_INTERVAL))
    return steps, duration / steps


class CancelToken:
    """
    One-shot cancellation flag shared between a job and its owner.

    Callbacks registered with add_callback() fire once, on the cancelling
    thread (immediately if the token is already cancelled).
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def cancel(self) -> bool:
        """Cancel the token. Returns False if it was already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"[SCHEDULER] Cancel callback failed: {e}")
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


class TaskHandle:
    """Handle for a background job started with StepExecutor.spawn()."""

    def __init__(self, name: str):
        self.name = name
        self._done = threading.Event()
        self.error: Optional[BaseException] = None
        self.thread_id: Optional[int] = None

    def _finish(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the job. Returns False on timeout."""
        if self.thread_id is not None and self.thread_id == threading.get_ident():
            # Joining from inside the job itself would deadlock
            return self.done
        return self._done.wait(timeout)


class StepExecutor(ABC):
    """Suspension and structured-concurrency capability used by every step loop."""

    @abstractmethod
    def sleep(self, seconds: float, token: Optional[CancelToken] = None) -> bool:
        """Suspend. Returns False if token was (or became) cancelled."""
        raise NotImplementedError

    @abstractmethod
    def run_concurrently(self, *sequences: Callable[[], Any]) -> List[Any]:
        """Run sequences concurrently; return their results in order."""
        raise NotImplementedError

    @abstractmethod
    def spawn(self, fn: Callable[[], Any], name: str = "job") -> TaskHandle:
        raise NotImplementedError

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        raise NotImplementedError

    def now(self) -> float:
        return time.monotonic()

    def shutdown(self) -> None:
        """Release executor resources (no-op by default)."""


def _run_into(results: List[Any], errors: List[BaseException], index: int, fn: Callable[[], Any]) -> None:
    try:
        results[index] = fn()
    except Exception as e:
        errors.append(e)


class DirectExecutor(StepExecutor):
    """
    Executor built on blocking waits and plain threads.

    The first sequence of run_concurrently() runs on the calling thread;
    every other sequence gets its own thread.
    """

    def sleep(self, seconds: float, token: Optional[CancelToken] = None) -> bool:
        if token is None:
            if seconds > 0:
                time.sleep(seconds)
            return True
        if token.cancelled:
            return False
        return not token.wait(max(0.0, seconds))

    def run_concurrently(self, *sequences: Callable[[], Any]) -> List[Any]:
        results: List[Any] = [None] * len(sequences)
        errors: List[BaseException] = []
        threads = []
        for index, sequence in enumerate(sequences[1:], start=1):
            thread = threading.Thread(
                target=_run_into,
                args=(results, errors, index, sequence),
                name=f"soundstage-seq-{index}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        if sequences:
            _run_into(results, errors, 0, sequences[0])
        for thread in threads:
            thread.join()
        if errors:
            raise errors[0]
        return results

    def spawn(self, fn: Callable[[], Any], name: str = "job") -> TaskHandle:
        handle = TaskHandle(name)

        def worker():
            handle.thread_id = threading.get_ident()
            try:
                fn()
            except Exception as e:
                logger.error(f"[SCHEDULER] Background job {name} failed: {e}", exc_info=True)
                handle._finish(e)
                return
            handle._finish()

        thread = threading.Thread(target=worker, name=f"soundstage-{name}", daemon=True)
        thread.start()
        return handle

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay), lambda: None)
        handle = TimerHandle(on_cancel=timer.cancel)

        def fire():
            if handle.cancelled:
                return
            try:
                callback()
            except Exception as e:
                logger.error(f"[SCHEDULER] Timer callback failed: {e}", exc_info=True)

        timer.function = fire
        timer.daemon = True
        timer.start()
        return handle


class ScheduledExecutor(StepExecutor):
    """
    Executor that delegates to a TaskScheduler.

    Each suspension is a scheduler timer resolving a Deferred; cancelling the
    token resolves it early. Sequences and spawned jobs run as scheduler tasks.
    """

    def __init__(self, scheduler: TaskScheduler):
        self.scheduler = scheduler

    def sleep(self, seconds: float, token: Optional[CancelToken] = None) -> bool:
        if token is not None and token.cancelled:
            return False
        wake = self.scheduler.new_deferred()

        def elapsed():
            wake.resolve(True)
            return 0

        timer = self.scheduler.schedule_timer(max(0.0, seconds), elapsed)
        cancel = lambda: wake.resolve(False)
        if token is not None:
            token.add_callback(cancel)
        try:
            completed = wake.result()
        finally:
            if token is not None:
                token.remove_callback(cancel)
            timer.cancel()
        return bool(completed) and not (token is not None and token.cancelled)

    def run_concurrently(self, *sequences: Callable[[], Any]) -> List[Any]:
        pending: List[Deferred] = [
            self.scheduler.add_task(sequence, name=f"soundstage-seq-{index}")
            for index, sequence in enumerate(sequences)
        ]
        results = []
        first_error: Optional[BaseException] = None
        for deferred in pending:
            deferred.wait()
            if deferred.error is not None and first_error is None:
                first_error = deferred.error
            results.append(None if deferred.error is not None else deferred.result())
        if first_error is not None:
            raise first_error
        return results

    def spawn(self, fn: Callable[[], Any], name: str = "job") -> TaskHandle:
        handle = TaskHandle(name)

        def job():
            handle.thread_id = threading.get_ident()
            return fn()

        def failed(error):
            logger.error(f"[SCHEDULER] Background job {name} failed: {error}")
            handle._finish(error)

        self.scheduler.add_task(job, name=f"soundstage-{name}").then(lambda _: handle._finish(), failed)
        return handle

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        # Callbacks may block (play_next crossfades), so they leave the timer thread
        def fire():
            self.scheduler.add_task(callback, name="soundstage-timer")
            return 0

        return self.scheduler.schedule_timer(max(0.0, delay), fire)


__all__ = [
    "CancelToken",
    "DirectExecutor",
    "ScheduledExecutor",
    "StepExecutor",
    "TaskHandle",
    "TimerHandle",
    "step_plan",
]
