"""
Tests for the banner / popup scheduler.

Time is driven by VirtualClock; submissions run on the test's event loop.
"""

import asyncio

import pytest

from signage_overlays.backends import MemorySubscriptionBackend
from signage_overlays.capture import CaptureWorkflow
from signage_overlays.clock import TimerHandle, VirtualClock
from signage_overlays.errors import ValidationError
from signage_overlays.models.capture import CaptureOutcome
from signage_overlays.models.definition import OverlayKind
from signage_overlays.models.instance import OverlayState
from signage_overlays.scheduler import OverlayScheduler

from tests.conftest import make_definition


class GatedSubscriptions(MemorySubscriptionBackend):
    """Subscription backend that blocks until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def subscribe(self, email, tags):
        self.calls.append({"email": email, "tags": list(tags)})
        await self.gate.wait()
        return self.accept


class LeakyClock(VirtualClock):
    """Clock whose cancel() never reaches the queue, like a cancel lost in flight."""

    def call_later(self, delay, callback):
        handle = super().call_later(delay, callback)
        return TimerHandle(handle.deadline)


@pytest.fixture
def popup():
    return make_definition("popup", "welcome", settings={"displayDelay": 2, "autoClose": 10})


@pytest.fixture
def scheduler(clock, workflow, config, transitions):
    return OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config, listener=transitions)


class TestTimeline:
    """Display delay, auto-close and exit transition."""

    def test_popup_timeline(self, scheduler, clock, popup, transitions):
        instance = scheduler.load(popup)
        assert instance.state == OverlayState.SCHEDULED
        assert scheduler.visible() == []

        clock.advance_to(1.99)
        assert instance.state == OverlayState.SCHEDULED

        clock.advance_to(2.0)
        assert instance.state == OverlayState.VISIBLE
        assert instance.visible_since == 2.0

        clock.advance_to(11.99)
        assert instance.state == OverlayState.VISIBLE

        clock.advance_to(12.0)
        assert instance.state == OverlayState.CLOSING
        assert instance.close_reason == "auto_close"
        assert scheduler.visible() == [instance]

        clock.advance_to(12.31)
        assert instance.state == OverlayState.REMOVED
        assert scheduler.current is None
        assert transitions.states(instance.instance_id) == [
            "scheduled", "visible", "closing", "removed",
        ]

    def test_zero_delay_shows_at_once(self, clock, workflow, config):
        scheduler = OverlayScheduler(OverlayKind.BANNER, clock, workflow, config=config)
        instance = scheduler.load(make_definition("banner"))
        assert instance.state == OverlayState.VISIBLE
        assert clock.pending() == 0

    def test_no_auto_close_stays_visible(self, scheduler, clock):
        instance = scheduler.load(make_definition("popup", settings={"displayDelay": 1}))
        clock.advance(3600)
        assert instance.state == OverlayState.VISIBLE

    def test_one_timer_per_instance(self, scheduler, clock, popup):
        scheduler.load(popup)
        clock.advance_to(2.0)
        assert clock.pending() == 1
        scheduler.dismiss()
        assert clock.pending() == 1


class TestSingleInstance:

    def test_second_load_ignored_while_live(self, scheduler, popup):
        first = scheduler.load(popup)
        assert scheduler.load(make_definition("popup", "other")) is None
        assert scheduler.live() == [first]

    def test_load_after_removal(self, scheduler, clock, popup):
        scheduler.load(popup)
        clock.advance_to(12.5)
        assert scheduler.load(popup) is not None

    def test_wrong_kind(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.load(make_definition("banner"))

    def test_toast_stream_not_accepted(self, clock):
        with pytest.raises(ValueError):
            OverlayScheduler(OverlayKind.TOAST_STREAM, clock)


class TestDismiss:

    def test_dismiss_visible(self, scheduler, clock, popup):
        instance = scheduler.load(popup)
        clock.advance_to(3.0)
        assert scheduler.dismiss()
        assert instance.state == OverlayState.CLOSING
        assert instance.close_reason == "dismissed"

        clock.advance_to(3.31)
        assert instance.state == OverlayState.REMOVED

        # Auto-close was replaced by the exit timer
        clock.advance_to(20)
        assert scheduler.get_stats()["removed_count"] == 1

    def test_dismiss_before_shown(self, scheduler, clock, popup):
        instance = scheduler.load(popup)
        assert scheduler.dismiss()
        assert instance.state == OverlayState.REMOVED
        clock.advance_to(5)
        assert instance.visible_since is None

    def test_dismiss_twice(self, scheduler, clock, popup):
        scheduler.load(popup)
        clock.advance_to(2.0)
        assert scheduler.dismiss()
        assert not scheduler.dismiss()

    def test_dismiss_nothing(self, scheduler):
        assert not scheduler.dismiss()


class TestStaleTimers:

    def test_timer_after_removal_is_ignored(self, workflow, config, popup):
        clock = LeakyClock()
        scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config)

        instance = scheduler.load(popup)
        clock.advance_to(5.0)
        scheduler.dismiss()
        clock.advance_to(5.31)
        assert instance.state == OverlayState.REMOVED

        # The auto-close armed at t=2 still fires at t=12
        clock.advance_to(12.0)
        assert instance.state == OverlayState.REMOVED
        assert scheduler.get_stats()["stale_timers"] == 1

    def test_listener_errors_are_contained(self, clock, workflow, config, popup):
        def listener(instance):
            raise RuntimeError("render failed")

        scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config, listener=listener)
        instance = scheduler.load(popup)
        clock.advance_to(2.0)
        assert instance.state == OverlayState.VISIBLE


class TestSubmit:
    """Capture through the scheduler."""

    @pytest.mark.asyncio
    async def test_success_settles_then_closes(self, scheduler, clock, popup, issuer):
        instance = scheduler.load(popup)
        clock.advance_to(4.0)

        result = await scheduler.submit("a@example.com")
        assert result.outcome == CaptureOutcome.COMPLETED
        assert instance.state == OverlayState.SUCCEEDED
        assert instance.result is result
        assert len(issuer.calls) == 1

        # Settle timer replaces the auto-close at t=12
        clock.advance_to(6.99)
        assert instance.state == OverlayState.SUCCEEDED
        clock.advance_to(7.0)
        assert instance.state == OverlayState.CLOSING
        assert instance.close_reason == "completed"
        clock.advance_to(7.31)
        assert instance.state == OverlayState.REMOVED

    @pytest.mark.asyncio
    async def test_submit_after_success_ignored(self, scheduler, clock, popup, issuer):
        scheduler.load(popup)
        clock.advance_to(2.0)
        await scheduler.submit("a@example.com")
        assert await scheduler.submit("a@example.com") is None
        assert len(issuer.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_submits_issue_once(self, scheduler, clock, popup, subscriptions, issuer):
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        results = await asyncio.gather(
            scheduler.submit("a@example.com"),
            scheduler.submit("a@example.com"),
        )
        completed = [r for r in results if r is not None]
        assert len(completed) == 1
        assert completed[0].outcome == CaptureOutcome.COMPLETED
        assert len(subscriptions.calls) == 1
        assert len(issuer.calls) == 1
        assert instance.state == OverlayState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_invalid_email_gives_feedback(self, scheduler, clock, popup, subscriptions):
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        with pytest.raises(ValidationError):
            await scheduler.submit("not-an-email")
        assert instance.state == OverlayState.VISIBLE
        assert "Invalid email" in instance.feedback
        assert subscriptions.calls == []

    @pytest.mark.asyncio
    async def test_issue_failure_allows_retry(self, scheduler, clock, popup, issuer):
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        issuer.accept = False
        result = await scheduler.submit("a@example.com")
        assert result.outcome == CaptureOutcome.ISSUE_FAILED
        assert instance.state == OverlayState.VISIBLE
        assert instance.feedback == result.reason

        issuer.accept = True
        result = await scheduler.submit("a@example.com")
        assert result.outcome == CaptureOutcome.COMPLETED
        assert instance.state == OverlayState.SUCCEEDED
        assert instance.feedback is None

    @pytest.mark.asyncio
    async def test_subscribe_failure_keeps_auto_close(self, scheduler, clock, popup, subscriptions, issuer):
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        subscriptions.accept = False
        result = await scheduler.submit("a@example.com")
        assert result.outcome == CaptureOutcome.SUBSCRIBE_FAILED
        assert issuer.calls == []

        clock.advance_to(12.0)
        assert instance.state == OverlayState.CLOSING

    @pytest.mark.asyncio
    async def test_submit_before_visible_ignored(self, scheduler, popup, subscriptions):
        scheduler.load(popup)
        assert await scheduler.submit("a@example.com") is None
        assert subscriptions.calls == []

    @pytest.mark.asyncio
    async def test_no_capture_configured(self, clock, workflow, config, subscriptions):
        scheduler = OverlayScheduler(OverlayKind.BANNER, clock, workflow, config=config)
        scheduler.load(make_definition("banner"))
        assert await scheduler.submit("a@example.com") is None
        assert subscriptions.calls == []


class TestCloseDuringSubmission:
    """Dismiss and auto-close wait for the in-flight submission."""

    @pytest.fixture
    def gated(self, issuer, config):
        subscriptions = GatedSubscriptions()
        return subscriptions, CaptureWorkflow(subscriptions, issuer, None, config)

    @pytest.mark.asyncio
    async def test_dismiss_deferred_until_success(self, clock, config, popup, gated):
        subscriptions, workflow = gated
        scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config)
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        task = asyncio.ensure_future(scheduler.submit("a@example.com"))
        await asyncio.sleep(0)
        assert instance.state == OverlayState.SUBMITTING

        assert scheduler.dismiss()
        assert instance.state == OverlayState.SUBMITTING

        subscriptions.gate.set()
        result = await task
        assert result.outcome == CaptureOutcome.COMPLETED
        assert instance.state == OverlayState.CLOSING
        assert instance.close_reason == "dismissed"

        clock.advance(0.31)
        assert instance.state == OverlayState.REMOVED

    @pytest.mark.asyncio
    async def test_auto_close_deferred_until_failure(self, clock, config, popup, gated):
        subscriptions, workflow = gated
        subscriptions.accept = False
        scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config)
        instance = scheduler.load(popup)
        clock.advance_to(11.0)

        task = asyncio.ensure_future(scheduler.submit("a@example.com"))
        await asyncio.sleep(0)

        clock.advance_to(12.0)
        assert instance.state == OverlayState.SUBMITTING

        subscriptions.gate.set()
        result = await task
        assert result.outcome == CaptureOutcome.SUBSCRIBE_FAILED
        assert instance.state == OverlayState.CLOSING
        assert instance.close_reason == "auto_close"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_submission(self, clock, config, popup, gated, issuer):
        subscriptions, workflow = gated
        scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow, config=config)
        instance = scheduler.load(popup)
        clock.advance_to(2.0)

        task = asyncio.ensure_future(scheduler.submit("a@example.com"))
        await asyncio.sleep(0)
        scheduler.shutdown()

        assert await task is None
        assert instance.state == OverlayState.REMOVED
        assert instance.close_reason == "unmounted"
        assert issuer.calls == []
        assert clock.pending() == 0

        subscriptions.gate.set()
        clock.advance(30)
        assert scheduler.live() == []
