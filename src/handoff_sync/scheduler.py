"""
scheduler.py - Timer scheduling for heartbeats and delayed checks.

The lock coordinator never owns ambient timers. It asks a Scheduler
for one-shot callbacks and re-arms them itself, so every timer it
starts can be cancelled from release(). Production code uses
ThreadingScheduler; tests drive time with clock.ManualClock.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    """A pending one-shot callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):
    """Abstract source of delayed callbacks."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds."""
        pass


class _ThreadTimerHandle(TimerHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ThreadingScheduler(Scheduler):
    """
    Scheduler backed by daemon threading.Timer objects.

    Callback exceptions are logged, never raised into the timer thread,
    so one failed heartbeat cannot kill the process.
    """

    def __init__(self, name: str = "handoff-sync-timer"):
        self._name = name

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        def run() -> None:
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback failed")

        timer = threading.Timer(max(0.0, delay), run)
        timer.daemon = True
        timer.name = self._name
        handle = _ThreadTimerHandle(timer)
        timer.start()
        return handle
