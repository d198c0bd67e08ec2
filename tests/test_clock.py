"""
Tests for the virtual and asyncio clocks.
"""

import asyncio
from datetime import timedelta

import pytest

from signage_overlays.clock import AsyncioClock, VirtualClock

from tests.conftest import WALL_START


class TestVirtualClock:
    """Manual time source."""

    def test_fires_in_deadline_order(self):
        clock = VirtualClock()
        fired = []
        clock.call_later(2.0, lambda: fired.append("b"))
        clock.call_later(1.0, lambda: fired.append("a"))
        clock.call_later(2.0, lambda: fired.append("c"))

        assert clock.advance(1.5) == 1
        assert fired == ["a"]
        assert clock.now() == 1.5

        clock.advance(1.0)
        assert fired == ["a", "b", "c"]

    def test_cancelled_timer_never_fires(self):
        clock = VirtualClock()
        fired = []
        handle = clock.call_later(1.0, lambda: fired.append(1))
        handle.cancel()
        assert clock.pending() == 0
        clock.advance(5)
        assert fired == []

    def test_callback_can_arm_more_timers(self):
        clock = VirtualClock()
        fired = []

        def first():
            fired.append(clock.now())
            clock.call_later(1.0, lambda: fired.append(clock.now()))

        clock.call_later(1.0, first)
        clock.advance_to(3.0)
        assert fired == [1.0, 2.0]

    def test_negative_delay_is_immediate(self):
        clock = VirtualClock(start=10.0)
        handle = clock.call_later(-3, lambda: None)
        assert handle.deadline == 10.0
        assert clock.next_deadline() == 10.0

    def test_wall_time_moves_with_clock(self):
        clock = VirtualClock(wall_start=WALL_START)
        clock.advance(90)
        assert clock.wall_now() == WALL_START + timedelta(seconds=90)


class TestAsyncioClock:
    """Real timers on the running loop."""

    @pytest.mark.asyncio
    async def test_call_later_runs(self):
        clock = AsyncioClock()
        done = asyncio.Event()
        clock.call_later(0.01, done.set)
        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert done.is_set()

    @pytest.mark.asyncio
    async def test_cancel(self):
        clock = AsyncioClock()
        fired = []
        handle = clock.call_later(0.01, lambda: fired.append(1))
        handle.cancel()
        await asyncio.sleep(0.03)
        assert fired == []
        assert handle.cancelled
