"""
Request admission queue.

Bounds the number of in-flight requests and paces bursts. Waiters are
admitted FIFO, except that requests replayed after a token refresh use a
priority lane and are admitted ahead of ordinary waiters.
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Deque, Optional

from .errors import QueueTimeoutError


logger = logging.getLogger("dashboard_api")


class RequestQueue:
    """Bounded-concurrency admission with an optional per-second start limit."""

    def __init__(
        self,
        max_concurrent: int = 6,
        queue_timeout: Optional[float] = 30.0,
        max_per_second: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_concurrent = max(1, max_concurrent)
        self._queue_timeout = queue_timeout
        self._clock = clock
        self._sleep = sleep
        self._active = 0
        self._waiters: Deque["asyncio.Future[None]"] = deque()
        self._priority: Deque["asyncio.Future[None]"] = deque()
        # Start times of the last max_per_second admissions
        self._starts: Optional[Deque[float]] = (
            deque(maxlen=max_per_second) if max_per_second else None
        )

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done()) + sum(
            1 for fut in self._priority if not fut.done()
        )

    @asynccontextmanager
    async def slot(self, priority: bool = False) -> AsyncIterator[None]:
        """Hold one admission slot for the duration of the block."""
        await self.acquire(priority)
        try:
            yield
        finally:
            self.release()

    async def acquire(self, priority: bool = False) -> None:
        """
        Wait for a slot.

        Raises:
            QueueTimeoutError: If no slot was granted within ``queue_timeout``.
        """
        if self._active < self._max_concurrent and not self._has_waiters():
            self._active += 1
        else:
            await self._wait_for_slot(priority)

        try:
            await self._pace()
        except BaseException:
            self.release()
            raise

    def release(self) -> None:
        """Return a slot and admit the next waiter."""
        if self._active > 0:
            self._active -= 1
        self._wake()

    def _has_waiters(self) -> bool:
        return any(not fut.done() for fut in self._priority) or any(
            not fut.done() for fut in self._waiters
        )

    async def _wait_for_slot(self, priority: bool) -> None:
        loop = asyncio.get_running_loop()
        fut: "asyncio.Future[None]" = loop.create_future()
        lane = self._priority if priority else self._waiters
        lane.append(fut)
        started = self._clock()

        try:
            await asyncio.wait_for(asyncio.shield(fut), self._queue_timeout)
        except asyncio.TimeoutError:
            if fut.done() and not fut.cancelled():
                # Granted in the same tick the timeout fired; keep the slot.
                return
            self._discard(lane, fut)
            waited = self._clock() - started
            logger.warning(
                "Request waited %.2fs for admission (in_flight=%s, pending=%s)",
                waited,
                self._active,
                self.pending,
            )
            raise QueueTimeoutError(waited) from None
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                self.release()
            else:
                self._discard(lane, fut)
            raise

    def _discard(self, lane: Deque["asyncio.Future[None]"], fut: "asyncio.Future[None]") -> None:
        fut.cancel()
        try:
            lane.remove(fut)
        except ValueError:
            pass

    def _wake(self) -> None:
        while self._active < self._max_concurrent:
            fut = self._next_waiter()
            if fut is None:
                return
            self._active += 1
            fut.set_result(None)

    def _next_waiter(self) -> Optional["asyncio.Future[None]"]:
        for lane in (self._priority, self._waiters):
            while lane:
                fut = lane.popleft()
                if not fut.done():
                    return fut
        return None

    async def _pace(self) -> None:
        if self._starts is None:
            return
        now = self._clock()
        start = now
        if len(self._starts) == self._starts.maxlen:
            start = max(now, self._starts[0] + 1.0)
        # Reserve before sleeping so concurrent admissions queue behind this one
        self._starts.append(start)
        if start > now:
            await self._sleep(start - now)

    def __repr__(self) -> str:
        return (
            f"RequestQueue(max_concurrent={self._max_concurrent}, "
            f"in_flight={self._active}, pending={self.pending})"
        )
