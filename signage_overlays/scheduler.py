"""
Per-Overlay Scheduler
=====================

Drives banner and popup instances through their state machine:

    IDLE -> SCHEDULED -> VISIBLE -> (SUBMITTING -> SUCCEEDED | VISIBLE)
         -> CLOSING -> REMOVED

Each instance owns exactly one timer slot. Arming a timer (display delay,
auto-close, success settle, exit transition) cancels whatever was armed
before, so only one close trigger is ever pending.

Timers that fire late, after the instance moved on or was removed, are
dropped silently: cancellation order across async boundaries is not
guaranteed, so a stale timer is expected, not an error.

Usage:
    scheduler = OverlayScheduler(OverlayKind.POPUP, clock, workflow)
    scheduler.load(definition)
    result = await scheduler.submit("someone@example.com")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from signage_overlays.capture import CaptureWorkflow, validate_email
from signage_overlays.clock import Clock
from signage_overlays.config import EngineConfig, get_config
from signage_overlays.errors import ValidationError
from signage_overlays.models.capture import CaptureResult
from signage_overlays.models.definition import CaptureSettings, OverlayDefinition, OverlayKind
from signage_overlays.models.instance import OverlayInstance, OverlayState

logger = logging.getLogger(__name__)

# Presentation adapter hook, called after every applied transition
StateListener = Callable[[OverlayInstance], None]
TimerStep = Callable[[OverlayInstance], None]


class InstanceScheduler:
    """
    Timer and transition plumbing shared by the overlay scheduler and the
    toast sequencer.
    """

    def __init__(
        self,
        clock: Clock,
        config: Optional[EngineConfig] = None,
        listener: Optional[StateListener] = None,
    ):
        self.clock = clock
        self.config = config or get_config()
        self.listener = listener

        # Live (non-removed) instances
        self._instances: Dict[str, OverlayInstance] = {}
        self._inflight: Set[asyncio.Future] = set()
        self._closed = False

        # Metrics
        self._shown_count = 0
        self._removed_count = 0
        self._stale_timer_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def live(self) -> List[OverlayInstance]:
        """Instances not yet removed, in creation order."""
        return list(self._instances.values())

    def visible(self) -> List[OverlayInstance]:
        """Instances the presentation layer should render."""
        return [i for i in self._instances.values() if i.is_observable()]

    def get(self, instance_id: str) -> Optional[OverlayInstance]:
        return self._instances.get(instance_id)

    # ─────────────────────────────────────────────────────────────────
    # Transitions
    # ─────────────────────────────────────────────────────────────────

    def _apply(self, instance: OverlayInstance, target: OverlayState) -> bool:
        previous = instance.state
        if not instance.transition(target, self.clock.now()):
            logger.debug(
                f"Ignoring {previous.value} -> {target.value} for {instance.instance_id}"
            )
            return False

        logger.info(f"{instance.instance_id}: {previous.value} -> {target.value}")
        if target == OverlayState.VISIBLE and previous == OverlayState.SCHEDULED:
            self._shown_count += 1
        elif target == OverlayState.REMOVED:
            self._instances.pop(instance.instance_id, None)
            self._removed_count += 1

        self._notify(instance)
        return True

    def _notify(self, instance: OverlayInstance) -> None:
        if self.listener is None:
            return
        try:
            self.listener(instance)
        except Exception as e:
            logger.exception(f"Listener error for {instance.instance_id}: {e}")

    def _schedule(self, instance: OverlayInstance, delay: float) -> None:
        """IDLE -> SCHEDULED, then show after delay (at once when delay is 0)."""
        self._instances[instance.instance_id] = instance
        self._apply(instance, OverlayState.SCHEDULED)
        if delay <= 0:
            self._show(instance)
        else:
            self._arm(instance, delay, self._show)

    def _show(self, instance: OverlayInstance) -> None:
        if self._apply(instance, OverlayState.VISIBLE):
            self._on_visible(instance)

    def _on_visible(self, instance: OverlayInstance) -> None:
        """Hook for arming auto-close / auto-dismiss timers."""
        pass

    def _begin_close(self, instance: OverlayInstance, reason: str) -> bool:
        """Start the exit transition; REMOVED follows after exit_transition_sec."""
        if instance.state == OverlayState.SCHEDULED:
            # Never shown, nothing to animate out
            instance.close_reason = reason
            return self._apply(instance, OverlayState.REMOVED)

        if not instance.can_transition(OverlayState.CLOSING):
            return False
        instance.close_reason = reason
        self._apply(instance, OverlayState.CLOSING)
        self._arm(instance, self.config.timing.exit_transition_sec, self._remove)
        return True

    def _remove(self, instance: OverlayInstance) -> None:
        self._apply(instance, OverlayState.REMOVED)

    # ─────────────────────────────────────────────────────────────────
    # Timers
    # ─────────────────────────────────────────────────────────────────

    def _arm(self, instance: OverlayInstance, delay: float, step: TimerStep) -> None:
        token = instance.next_token()
        handle = self.clock.call_later(delay, lambda: self._fire(instance, token, step))
        instance.arm(handle)

    def _fire(self, instance: OverlayInstance, token: int, step: TimerStep) -> None:
        if self._closed or instance.is_terminal() or token != instance.timer_token:
            self._stale_timer_count += 1
            logger.debug(f"Stale timer for {instance.instance_id} ({instance.state.value}), ignored")
            return
        instance.timer = None
        step(instance)

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """
        Cancel every timer and in-flight request and retire all instances.

        Called on unmount. Nothing owned by this scheduler changes afterwards.
        """
        if self._closed:
            return
        self._closed = True

        for future in list(self._inflight):
            future.cancel()
        self._inflight.clear()

        for instance in list(self._instances.values()):
            instance.disarm()
            instance.close_reason = instance.close_reason or "unmounted"
            instance.transition(OverlayState.REMOVED, self.clock.now())
        self._instances.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "live": len(self._instances),
            "visible": len(self.visible()),
            "shown_count": self._shown_count,
            "removed_count": self._removed_count,
            "stale_timers": self._stale_timer_count,
            "inflight": len(self._inflight),
            "closed": self._closed,
        }


class OverlayScheduler(InstanceScheduler):
    """
    Runs at most one banner or popup instance at a time.

    The capture workflow is reached through submit(); its result is folded
    back into the instance's state.
    """

    def __init__(
        self,
        kind: OverlayKind,
        clock: Clock,
        workflow: Optional[CaptureWorkflow] = None,
        config: Optional[EngineConfig] = None,
        listener: Optional[StateListener] = None,
    ):
        if kind == OverlayKind.TOAST_STREAM:
            raise ValueError("toast streams are run by ToastSequencer")
        super().__init__(clock, config=config, listener=listener)
        self.kind = kind
        self.workflow = workflow

    @property
    def current(self) -> Optional[OverlayInstance]:
        """The non-terminal instance, if any."""
        for instance in self._instances.values():
            return instance
        return None

    def load(self, definition: OverlayDefinition) -> Optional[OverlayInstance]:
        """
        Start an instance for an eligible definition.

        Returns None when the scheduler is shut down or an instance of this
        kind is still live.
        """
        if definition.kind != self.kind:
            raise ValueError(f"{self.kind.value} scheduler cannot run {definition.kind.value} overlay")
        if self._closed:
            return None
        if self.current is not None:
            logger.info(
                f"{self.kind.value} overlay {definition.id} not started: "
                f"{self.current.instance_id} is still live"
            )
            return None

        instance = OverlayInstance.create(definition, self.clock.now())
        self._schedule(instance, definition.settings.display_delay)
        return instance

    def _on_visible(self, instance: OverlayInstance) -> None:
        auto_close = getattr(instance.definition.settings, "auto_close", 0.0)
        if auto_close > 0:
            self._arm(instance, auto_close, self._auto_close)

    def _auto_close(self, instance: OverlayInstance) -> None:
        self._request_close(instance, "auto_close")

    def _settled(self, instance: OverlayInstance) -> None:
        self._request_close(instance, "completed")

    def _request_close(self, instance: OverlayInstance, reason: str) -> bool:
        if instance.is_terminal():
            return False
        if instance.busy:
            # Applied once the submission finishes
            instance.close_requested = reason
            logger.debug(f"Close of {instance.instance_id} deferred until submission ends")
            return True
        return self._begin_close(instance, reason)

    def dismiss(self) -> bool:
        """User closed the overlay."""
        instance = self.current
        if instance is None or self._closed:
            return False
        return self._request_close(instance, "dismissed")

    async def submit(self, email: Optional[str]) -> Optional[CaptureResult]:
        """
        Submit the capture form on the current instance.

        Returns the CaptureResult, or None when the submission was ignored:
        no visible instance, capture disabled, already succeeded, or another
        submission still in flight. Raises ValidationError for a malformed
        address; the instance keeps its state and gets inline feedback.
        """
        instance = self.current
        if instance is None or self._closed:
            return None

        settings = instance.definition.settings
        if self.workflow is None or not isinstance(settings, CaptureSettings) or not settings.collect_email:
            logger.warning(f"{instance.instance_id} does not collect email, submission ignored")
            return None

        if instance.state == OverlayState.SUCCEEDED:
            logger.debug(f"{instance.instance_id} already succeeded, submission ignored")
            return None

        # Check and set in the same synchronous step
        if instance.busy or instance.state != OverlayState.VISIBLE:
            logger.info(f"{instance.instance_id} is {instance.state.value}, submission rejected")
            return None

        try:
            normalized = validate_email(email)
        except ValidationError as e:
            instance.feedback = str(e)
            self._notify(instance)
            raise

        instance.busy = True
        instance.email = normalized
        instance.feedback = None
        self._apply(instance, OverlayState.SUBMITTING)

        future = asyncio.ensure_future(
            self.workflow.run(instance.definition, normalized, at=self.clock.now())
        )
        self._inflight.add(future)
        try:
            result = await future
        except asyncio.CancelledError:
            if self._closed:
                logger.info(f"Submission on {instance.instance_id} cancelled by unmount")
                return None
            instance.busy = False
            self._apply(instance, OverlayState.VISIBLE)
            raise
        except Exception as e:
            # Programmer error inside the workflow: retire this overlay only
            logger.exception(f"Capture workflow crashed for {instance.instance_id}: {e}")
            instance.busy = False
            instance.close_reason = "error"
            self._apply(instance, OverlayState.REMOVED)
            return None
        finally:
            self._inflight.discard(future)
            instance.busy = False

        if self._closed or instance.is_terminal():
            logger.debug(f"Submission on {instance.instance_id} finished after removal, dropped")
            return result

        instance.result = result
        if result.succeeded:
            self._apply(instance, OverlayState.SUCCEEDED)
            if instance.close_requested:
                self._begin_close(instance, instance.close_requested)
            else:
                # Replaces any pending auto-close
                self._arm(instance, self.config.timing.success_settle_sec, self._settled)
        else:
            instance.feedback = result.reason
            self._apply(instance, OverlayState.VISIBLE)
            if instance.close_requested:
                self._begin_close(instance, instance.close_requested)

        return result
