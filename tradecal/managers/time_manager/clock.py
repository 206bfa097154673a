"""Clock abstraction for real and simulated time.

SystemClock: real wall-clock time, sleeps on the event loop
SimClock: deterministic simulated time for tests and simulations

Calendars and the calendar manager never read the host clock directly;
they go through ``calendar.clock``.
"""
import asyncio
import heapq
import itertools
import time
from typing import List, Optional, Protocol, Tuple, Union

from tradecal.logger import logger


Millis = Union[int, float]


class Clock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now_ms(self) -> Millis:
        """Current real time as milliseconds since epoch."""
        ...

    async def sleep(self, delay_ms: Millis) -> None:
        """Suspend the caller for ``delay_ms`` real milliseconds."""
        ...


class SystemClock:
    """Real wall-clock time."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000

    async def sleep(self, delay_ms: Millis) -> None:
        await asyncio.sleep(max(delay_ms, 0) / 1000)


class SimClock:
    """Simulated clock driven explicitly by the caller.

    ``sleep`` never waits on the host clock: sleepers are parked until the
    driver moves time past their deadline with :meth:`set`, :meth:`advance`
    or, from a coroutine, :meth:`run_until`. ``run_until`` wakes sleepers in
    deadline order so that several calendars sharing one SimClock observe a
    consistent timeline.
    """

    def __init__(self, start_ms: Millis = 0, settle_passes: int = 100):
        self._now = start_ms
        self._settle_passes = settle_passes
        self._sleepers: List[Tuple[Millis, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now_ms(self) -> Millis:
        return self._now

    @property
    def pending(self) -> int:
        """Number of coroutines currently parked in sleep()"""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    def next_deadline(self) -> Optional[Millis]:
        while self._sleepers and self._sleepers[0][2].done():
            heapq.heappop(self._sleepers)
        return self._sleepers[0][0] if self._sleepers else None

    def set(self, now_ms: Millis) -> None:
        """Move time to ``now_ms`` and release every sleeper that is due."""
        if now_ms < self._now:
            raise ValueError(f"SimClock cannot go backwards: {now_ms} < {self._now}")
        self._now = now_ms
        self._wake_due()

    def advance(self, delta_ms: Millis) -> None:
        self.set(self._now + delta_ms)

    async def sleep(self, delay_ms: Millis) -> None:
        if delay_ms <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + delay_ms, next(self._seq), fut))
        await fut

    async def run_until(self, target_ms: Millis) -> None:
        """Advance to ``target_ms`` one deadline at a time.

        Between steps the event loop is given a chance to run so that woken
        coroutines can register their next sleep before time moves on.
        """
        if target_ms < self._now:
            raise ValueError(f"SimClock cannot go backwards: {target_ms} < {self._now}")
        while True:
            await self._settle()
            deadline = self.next_deadline()
            if deadline is None or deadline > target_ms:
                break
            self._now = max(self._now, deadline)
            self._wake_due()
        self._now = target_ms
        await self._settle()
        logger.trace(f"SimClock reached {target_ms}")

    async def run_for(self, delta_ms: Millis) -> None:
        await self.run_until(self._now + delta_ms)

    async def _settle(self) -> None:
        for _ in range(self._settle_passes):
            await asyncio.sleep(0)

    def _wake_due(self) -> None:
        while self._sleepers and self._sleepers[0][0] <= self._now:
            _, _, fut = heapq.heappop(self._sleepers)
            if not fut.done():
                fut.set_result(None)
