"""
clock.py - Wall-clock abstraction.

All lock timestamps are timezone-aware UTC datetimes. SystemClock is
the real clock; ManualClock is a deterministic clock that doubles as a
Scheduler, so a test can advance time and have heartbeats, extended
checks and propagation waits fire in a predictable order.
"""

import heapq
import itertools
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from handoff_sync.scheduler import Scheduler, TimerHandle


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Real UTC clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class _ManualTimer(TimerHandle):
    def __init__(self, due: datetime, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualClock(Scheduler):
    """
    Deterministic clock and scheduler.

    Time only moves through advance() or sleep(). Timers due within the
    advanced window run in due order on the calling thread, and a
    callback may itself sleep, which nests another advance.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._timers: list[tuple[datetime, int, _ManualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while self._timers and self._timers[0][0] <= target:
            due, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            if due > self._now:
                self._now = due
            timer.callback()
        if target > self._now:
            self._now = target

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(self._now + timedelta(seconds=max(0.0, delay)), callback)
        heapq.heappush(self._timers, (timer.due, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of scheduled, not yet cancelled timers."""
        return sum(1 for _, _, t in self._timers if not t.cancelled)
