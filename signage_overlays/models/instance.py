"""
Overlay Instance Models
=======================

A running occurrence of a definition during one session. Instances are
owned by a scheduler (banner, popup) or the toast sequencer and are only
mutated through transition().
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from signage_overlays.clock import TimerHandle
from signage_overlays.models.capture import CaptureResult
from signage_overlays.models.definition import OverlayDefinition, OverlayKind
from signage_overlays.models.sale import SaleRecord


class OverlayState(str, Enum):
    """Overlay instance states."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    VISIBLE = "visible"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    CLOSING = "closing"
    REMOVED = "removed"


ALLOWED_TRANSITIONS: Dict[OverlayState, FrozenSet[OverlayState]] = {
    OverlayState.IDLE: frozenset({OverlayState.SCHEDULED, OverlayState.REMOVED}),
    OverlayState.SCHEDULED: frozenset({OverlayState.VISIBLE, OverlayState.REMOVED}),
    OverlayState.VISIBLE: frozenset({OverlayState.SUBMITTING, OverlayState.CLOSING, OverlayState.REMOVED}),
    # A failed submission returns to VISIBLE
    OverlayState.SUBMITTING: frozenset({OverlayState.SUCCEEDED, OverlayState.VISIBLE, OverlayState.REMOVED}),
    OverlayState.SUCCEEDED: frozenset({OverlayState.CLOSING, OverlayState.REMOVED}),
    OverlayState.CLOSING: frozenset({OverlayState.REMOVED}),
    OverlayState.REMOVED: frozenset(),
}

# States the presentation layer renders
OBSERVABLE_STATES = frozenset({
    OverlayState.VISIBLE,
    OverlayState.SUBMITTING,
    OverlayState.SUCCEEDED,
    OverlayState.CLOSING,
})


@dataclass
class OverlayInstance:
    """One live overlay."""
    instance_id: str
    definition: OverlayDefinition
    state: OverlayState = OverlayState.IDLE

    created_at: float = 0.0
    visible_since: Optional[float] = None
    closed_at: Optional[float] = None
    close_reason: Optional[str] = None

    # Capture data (banner, popup)
    email: Optional[str] = None
    result: Optional[CaptureResult] = None
    feedback: Optional[str] = None
    busy: bool = False
    close_requested: Optional[str] = None

    # Toast data
    sale: Optional[SaleRecord] = None

    # One armed timer at a time; arming replaces the previous one
    timer: Optional[TimerHandle] = field(default=None, repr=False, compare=False)
    timer_token: int = field(default=0, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        definition: OverlayDefinition,
        created_at: float,
        sale: Optional[SaleRecord] = None,
    ) -> OverlayInstance:
        """Create a new IDLE instance with a generated ID."""
        suffix = sale.id if sale is not None else uuid.uuid4().hex[:8]
        return cls(
            instance_id=f"{definition.kind.value}-{definition.id}-{suffix}",
            definition=definition,
            created_at=created_at,
            sale=sale,
        )

    @property
    def kind(self) -> OverlayKind:
        return self.definition.kind

    def is_terminal(self) -> bool:
        return self.state == OverlayState.REMOVED

    def is_observable(self) -> bool:
        return self.state in OBSERVABLE_STATES

    def can_transition(self, target: OverlayState) -> bool:
        return target in ALLOWED_TRANSITIONS[self.state]

    def transition(self, target: OverlayState, at: float) -> bool:
        """
        Apply a state transition.

        Returns False (and changes nothing) when the move is not allowed
        from the current state, which covers every transition attempted on
        a REMOVED instance.
        """
        if not self.can_transition(target):
            return False
        self.state = target
        if target == OverlayState.VISIBLE and self.visible_since is None:
            self.visible_since = at
        elif target == OverlayState.CLOSING:
            self.closed_at = at
        elif target == OverlayState.REMOVED:
            self.disarm()
            if self.closed_at is None:
                self.closed_at = at
        return True

    def arm(self, handle: TimerHandle) -> None:
        """Install a new timer, cancelling any previous one."""
        self.disarm()
        self.timer = handle

    def next_token(self) -> int:
        self.timer_token += 1
        return self.timer_token

    def disarm(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "overlay_id": self.definition.id,
            "kind": self.kind.value,
            "state": self.state.value,
            "created_at": self.created_at,
            "visible_since": self.visible_since,
            "closed_at": self.closed_at,
            "close_reason": self.close_reason,
            "email": self.email,
            "result": self.result.to_dict() if self.result else None,
            "feedback": self.feedback,
            "sale": self.sale.to_dict() if self.sale else None,
        }
