"""
Clock & Timers
==============

Every delay in the engine (display delay, auto-close, stagger, settle,
exit transition) goes through a Clock so that tests can drive time by hand.

    AsyncioClock  - real timers on the running event loop (loop.call_later)
    VirtualClock  - manual clock; advance() fires due callbacks in order

Usage:
    clock = VirtualClock()
    clock.call_later(2.0, lambda: print("shown"))
    clock.advance(2.0)   # prints "shown"
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], None]


class TimerHandle:
    """Cancellable handle for one armed timer."""

    def __init__(self, deadline: float, cancel_fn: Optional[Callable[[], None]] = None):
        self.deadline = deadline
        self._cancel_fn = cancel_fn
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel_fn is not None:
            self._cancel_fn()


class Clock(ABC):
    """Time source and timer factory."""

    @abstractmethod
    def now(self) -> float:
        """Session time in seconds (monotonic)."""
        pass

    @abstractmethod
    def wall_now(self) -> datetime:
        """Timezone-aware wall-clock time, used for activity windows."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run callback after delay seconds. Negative delays count as zero."""
        pass


class AsyncioClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def wall_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        delay = max(0.0, delay)
        handle = self.loop.call_later(delay, callback)
        return TimerHandle(self.now() + delay, handle.cancel)


class VirtualClock(Clock):
    """
    Deterministic clock for tests and timeline previews.

    Time only moves when advance() or advance_to() is called. Callbacks due
    at the same instant fire in the order they were armed.
    """

    def __init__(self, start: float = 0.0, wall_start: Optional[datetime] = None):
        self._now = start
        self._start = start
        self._wall_start = wall_start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._queue: List[Tuple[float, int, TimerHandle, TimerCallback]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def wall_now(self) -> datetime:
        return self._wall_start + timedelta(seconds=self._now - self._start)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        deadline = self._now + max(0.0, delay)
        handle = TimerHandle(deadline)
        heapq.heappush(self._queue, (deadline, next(self._seq), handle, callback))
        return handle

    def pending(self) -> int:
        """Number of armed, uncancelled timers."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def next_deadline(self) -> Optional[float]:
        for deadline, _, handle, _ in sorted(self._queue):
            if not handle.cancelled:
                return deadline
        return None

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due timers. Returns how many fired."""
        return self.advance_to(self._now + seconds)

    def advance_to(self, target: float) -> int:
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            deadline, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, deadline)
            # Mark as spent so a late cancel() from the callback is harmless
            handle._cancelled = True
            callback()
            fired += 1
        self._now = max(self._now, target)
        return fired
