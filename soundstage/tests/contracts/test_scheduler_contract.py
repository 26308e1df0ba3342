"""
Tests for the scheduling primitives: Deferred, CancelToken, the threaded
task scheduler and both step executors.
"""

import threading
import time

import pytest

from soundstage.scheduler.deferred import Deferred
from soundstage.scheduler.executor import CancelToken, DirectExecutor, ScheduledExecutor
from soundstage.scheduler.task_scheduler import ThreadedTaskScheduler


@pytest.fixture
def scheduler():
    task_scheduler = ThreadedTaskScheduler(name="test-scheduler")
    task_scheduler.start()
    yield task_scheduler
    task_scheduler.shutdown()


class Test1_Deferred:
    def test_settles_once(self):
        deferred = Deferred()
        assert deferred.resolve(1)
        assert not deferred.resolve(2)
        assert not deferred.reject(RuntimeError("late"))
        assert deferred.result(0) == 1
        assert deferred.state == "resolved"

    def test_then_chains_values(self):
        chained = Deferred.resolved(2).then(lambda v: v * 3).then(lambda v: v + 1)
        assert chained.result(0) == 7

    def test_then_adopts_returned_deferred(self):
        inner = Deferred()
        chained = Deferred.resolved().then(lambda _: inner)
        assert not chained.done
        inner.resolve("inner")
        assert chained.result(0) == "inner"

    def test_exception_in_callback_rejects_chain(self):
        chained = Deferred.resolved().then(lambda _: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            chained.result(0)

    def test_rejection_skips_resolved_handlers_until_catch(self):
        calls = []
        chained = (
            Deferred.rejected(ValueError("bad"))
            .then(lambda v: calls.append("skipped"))
            .catch(lambda e: f"recovered from {e}")
        )
        assert chained.result(0) == "recovered from bad"
        assert calls == []

    def test_reject_wraps_non_exceptions(self):
        deferred = Deferred.rejected("plain message")
        assert isinstance(deferred.error, RuntimeError)

    def test_result_timeout(self):
        with pytest.raises(TimeoutError):
            Deferred().result(0.01)

    def test_callbacks_run_on_settling_thread(self):
        deferred = Deferred()
        seen = []
        deferred.then(lambda _: seen.append(threading.get_ident()))
        worker = threading.Thread(target=deferred.resolve)
        worker.start()
        worker.join()
        assert seen == [worker.ident]


class Test2_CancelToken:
    def test_cancel_runs_callbacks_once(self):
        token = CancelToken()
        calls = []
        token.add_callback(lambda: calls.append("cb"))
        assert token.cancel() is True
        assert token.cancel() is False
        assert calls == ["cb"]

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_failing_callback_does_not_block_others(self):
        token = CancelToken()
        calls = []
        token.add_callback(lambda: 1 / 0)
        token.add_callback(lambda: calls.append("second"))
        token.cancel()
        assert calls == ["second"]

    def test_removed_callback_not_run(self):
        token = CancelToken()
        calls = []
        callback = lambda: calls.append("removed")
        token.add_callback(callback)
        token.remove_callback(callback)
        token.remove_callback(callback)
        token.cancel()
        assert calls == []


class Test3_ThreadedTaskScheduler:
    def test_timer_fires_after_delay(self, scheduler):
        fired = threading.Event()
        scheduler.schedule_timer(0.05, fired.set)
        assert fired.wait(1.0)

    def test_timers_fire_in_due_order(self, scheduler):
        order = []
        done = threading.Event()
        scheduler.schedule_timer(0.10, lambda: (order.append("late"), done.set()))
        scheduler.schedule_timer(0.02, lambda: order.append("early"))
        assert done.wait(1.0)
        assert order == ["early", "late"]

    def test_cancelled_timer_does_not_fire(self, scheduler):
        fired = threading.Event()
        handle = scheduler.schedule_timer(0.05, fired.set)
        handle.cancel()
        assert not fired.wait(0.2)

    def test_positive_return_reschedules(self, scheduler):
        ticks = []
        done = threading.Event()

        def tick():
            ticks.append(time.monotonic())
            if len(ticks) == 3:
                done.set()
                return 0
            return 0.02

        scheduler.schedule_timer(0.0, tick)
        assert done.wait(1.0)
        assert len(ticks) == 3

    def test_failing_timer_does_not_stop_scheduler(self, scheduler):
        fired = threading.Event()
        scheduler.schedule_timer(0.0, lambda: 1 / 0)
        scheduler.schedule_timer(0.02, fired.set)
        assert fired.wait(1.0)

    def test_add_task_resolves_with_result(self, scheduler):
        assert scheduler.add_task(lambda: 42).result(1.0) == 42

    def test_add_task_rejects_with_exception(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.add_task(lambda: int("x")).result(1.0)

    def test_schedule_before_start_raises(self):
        stopped = ThreadedTaskScheduler()
        with pytest.raises(RuntimeError):
            stopped.schedule_timer(0.1, lambda: None)

    def test_shutdown_stops_thread(self, thread_leak_guard):
        task_scheduler = ThreadedTaskScheduler()
        task_scheduler.start()
        assert task_scheduler.running
        task_scheduler.shutdown()
        assert not task_scheduler.running


@pytest.fixture(params=["direct", "scheduled"])
def executor(request, scheduler):
    if request.param == "direct":
        return DirectExecutor()
    return ScheduledExecutor(scheduler)


class Test4_Executors:
    def test_sleep_completes(self, executor):
        start = time.monotonic()
        assert executor.sleep(0.05, CancelToken()) is True
        assert time.monotonic() - start >= 0.04

    def test_sleep_returns_false_when_cancelled_early(self, executor):
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        start = time.monotonic()
        assert executor.sleep(5.0, token) is False
        assert time.monotonic() - start < 2.0

    def test_sleep_with_cancelled_token(self, executor):
        token = CancelToken()
        token.cancel()
        assert executor.sleep(1.0, token) is False

    def test_run_concurrently_overlaps(self, executor):
        start = time.monotonic()
        results = executor.run_concurrently(
            lambda: executor.sleep(0.2) and "a",
            lambda: executor.sleep(0.2) and "b",
        )
        assert results == ["a", "b"]
        assert time.monotonic() - start < 0.38

    def test_run_concurrently_reraises_first_error(self, executor):
        with pytest.raises(KeyError):
            executor.run_concurrently(lambda: "ok", lambda: {}["missing"])

    def test_spawn_runs_in_background(self, executor):
        ran = threading.Event()
        handle = executor.spawn(ran.set, name="spawned")
        assert handle.join(1.0)
        assert ran.is_set()
        assert handle.error is None

    def test_spawn_records_error(self, executor):
        handle = executor.spawn(lambda: 1 / 0, name="broken")
        assert handle.join(1.0)
        assert isinstance(handle.error, ZeroDivisionError)

    def test_call_later_fires_and_cancels(self, executor):
        fired = threading.Event()
        skipped = threading.Event()
        executor.call_later(0.02, fired.set)
        executor.call_later(0.05, skipped.set).cancel()
        assert fired.wait(1.0)
        assert not skipped.wait(0.15)
