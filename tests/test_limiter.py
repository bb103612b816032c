"""
Tests for the request admission queue.
"""

import asyncio
from typing import List

import pytest

from dashboard_api import QueueTimeoutError, RequestQueue


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestConcurrency:
    """Bounded concurrency and FIFO admission."""

    @pytest.mark.asyncio
    async def test_limit_two_with_five_callers(self):
        """At most 2 in flight at any instant; all 5 settle."""
        queue = RequestQueue(max_concurrent=2, queue_timeout=5.0)
        peak = 0
        done: List[int] = []

        async def call(index: int) -> None:
            nonlocal peak
            async with queue.slot():
                peak = max(peak, queue.in_flight)
                await asyncio.sleep(0.01)
            done.append(index)

        await asyncio.gather(*(call(i) for i in range(5)))

        assert peak == 2
        assert sorted(done) == [0, 1, 2, 3, 4]
        assert queue.in_flight == 0
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_fifo_admission(self):
        queue = RequestQueue(max_concurrent=1)
        order: List[str] = []
        await queue.acquire()

        async def call(name: str) -> None:
            async with queue.slot():
                order.append(name)

        tasks = []
        for name in ("a", "b", "c", "d"):
            tasks.append(asyncio.ensure_future(call(name)))
            await _settle()

        assert queue.pending == 4
        queue.release()
        await asyncio.gather(*tasks)

        assert order == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_priority_lane_admitted_first(self):
        """Replays jump ahead of ordinary waiters but stay FIFO among themselves."""
        queue = RequestQueue(max_concurrent=1)
        order: List[str] = []
        await queue.acquire()

        async def call(name: str, priority: bool) -> None:
            async with queue.slot(priority):
                order.append(name)

        tasks = []
        for name, priority in (("a", False), ("b", False), ("replay-1", True), ("replay-2", True)):
            tasks.append(asyncio.ensure_future(call(name, priority)))
            await _settle()

        queue.release()
        await asyncio.gather(*tasks)

        assert order == ["replay-1", "replay-2", "a", "b"]

    @pytest.mark.asyncio
    async def test_new_caller_does_not_jump_waiters(self):
        queue = RequestQueue(max_concurrent=1)
        order: List[str] = []
        await queue.acquire()

        async def call(name: str) -> None:
            async with queue.slot():
                order.append(name)

        waiting = asyncio.ensure_future(call("waiting"))
        await _settle()
        queue.release()
        late = asyncio.ensure_future(call("late"))
        await asyncio.gather(waiting, late)

        assert order == ["waiting", "late"]


class TestTimeouts:
    """Every waiter settles exactly once."""

    @pytest.mark.asyncio
    async def test_queue_timeout(self):
        queue = RequestQueue(max_concurrent=1, queue_timeout=0.05)
        await queue.acquire()

        with pytest.raises(QueueTimeoutError) as exc_info:
            await queue.acquire()

        assert exc_info.value.waited >= 0
        assert queue.pending == 0
        assert queue.in_flight == 1

        queue.release()
        assert queue.in_flight == 0

    @pytest.mark.asyncio
    async def test_timed_out_waiter_is_skipped(self):
        queue = RequestQueue(max_concurrent=1, queue_timeout=0.05)
        await queue.acquire()

        with pytest.raises(QueueTimeoutError):
            await queue.acquire()

        queue.release()
        await asyncio.wait_for(queue.acquire(), 1.0)
        assert queue.in_flight == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak_slot(self):
        queue = RequestQueue(max_concurrent=1)
        await queue.acquire()

        waiter = asyncio.ensure_future(queue.acquire())
        await _settle()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert queue.pending == 0
        queue.release()
        assert queue.in_flight == 0


class TestPacing:
    """Per-second start limit."""

    @pytest.mark.asyncio
    async def test_third_start_in_same_second_waits(self):
        sleeps: List[float] = []

        async def sleep(seconds: float) -> None:
            sleeps.append(seconds)

        queue = RequestQueue(max_concurrent=5, max_per_second=2, clock=lambda: 100.0, sleep=sleep)

        for _ in range(3):
            async with queue.slot():
                pass

        assert sleeps == [pytest.approx(1.0)]

    @pytest.mark.asyncio
    async def test_no_wait_once_window_passes(self):
        now = [100.0]
        sleeps: List[float] = []

        async def sleep(seconds: float) -> None:
            sleeps.append(seconds)

        queue = RequestQueue(max_per_second=2, clock=lambda: now[0], sleep=sleep)

        async with queue.slot():
            pass
        async with queue.slot():
            pass
        now[0] = 101.5
        async with queue.slot():
            pass

        assert sleeps == []
