"""Tests for cancellable periodic tasks."""

import asyncio
import threading
import time

import pytest

from backoffice.errors import ErrorCode, UnavailableError
from backoffice.scheduling import PeriodicTask


class TestPeriodicTask:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicTask("bad", lambda: None, interval=0)

    @pytest.mark.asyncio
    async def test_run_once_sync(self):
        task = PeriodicTask("sync", lambda: ["EXC-1"], interval=1)
        assert await task.run_once() == ["EXC-1"]
        assert task.runs == 1

    @pytest.mark.asyncio
    async def test_run_once_async(self):
        async def fn():
            return "ok"

        task = PeriodicTask("async", fn, interval=1)
        assert await task.run_once() == "ok"

    @pytest.mark.asyncio
    async def test_sync_fn_runs_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        ran_on = []

        def slow_feed_pull():
            ran_on.append(threading.get_ident())
            time.sleep(0.5)
            return "pulled"

        task = PeriodicTask("feed_refresh", slow_feed_pull, interval=1)
        started = time.monotonic()
        cycle = asyncio.create_task(task.run_once())
        await asyncio.sleep(0.01)
        assert time.monotonic() - started < 0.25
        assert not cycle.done()

        assert await cycle == "pulled"
        assert ran_on and ran_on[0] != loop_thread
        assert task.runs == 1

    @pytest.mark.asyncio
    async def test_unavailable_skips_cycle(self):
        def fn():
            raise UnavailableError("feed down", error_code=ErrorCode.FEED_UNAVAILABLE)

        task = PeriodicTask("feed_refresh", fn, interval=1)
        assert await task.run_once() is None
        assert task.skipped == 1
        assert task.failures == 0

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self):
        def fn():
            raise RuntimeError("boom")

        task = PeriodicTask("tick", fn, interval=1)
        assert await task.run_once() is None
        assert task.failures == 1
        assert task.runs == 0

    @pytest.mark.asyncio
    async def test_loop_runs_until_cancelled(self):
        calls = []
        task = PeriodicTask("tick", lambda: calls.append(1), interval=0.01)
        task.start()
        assert task.is_running
        for _ in range(100):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
        await task.cancel()
        assert not task.is_running
        seen = len(calls)
        assert seen >= 3
        await asyncio.sleep(0.05)
        assert len(calls) == seen

    @pytest.mark.asyncio
    async def test_tasks_cancel_independently(self):
        a_calls, b_calls = [], []
        a = PeriodicTask("a", lambda: a_calls.append(1), interval=0.01)
        b = PeriodicTask("b", lambda: b_calls.append(1), interval=0.01)
        a.start()
        b.start()
        await a.cancel()
        before = len(b_calls)
        for _ in range(100):
            if len(b_calls) > before:
                break
            await asyncio.sleep(0.01)
        assert b.is_running
        assert len(b_calls) > before
        await b.cancel()

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self):
        attempts = []

        def flaky():
            attempts.append(1)
            raise RuntimeError("transient")

        task = PeriodicTask("flaky", flaky, interval=0.01)
        task.start()
        for _ in range(100):
            if len(attempts) >= 2:
                break
            await asyncio.sleep(0.01)
        assert task.is_running
        await task.cancel()
        assert task.failures >= 2
