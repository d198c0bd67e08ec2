"""
Capture Result Models
=====================

Outcome of one email-capture submission.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CaptureOutcome(str, Enum):
    """Submission outcomes."""
    SUBSCRIBED = "subscribed"              # Subscribe only, no coupon configured
    SUBSCRIBE_FAILED = "subscribe_failed"
    ISSUE_FAILED = "issue_failed"          # Subscribed, coupon email not sent
    COMPLETED = "completed"


SUCCESS_OUTCOMES = frozenset({CaptureOutcome.SUBSCRIBED, CaptureOutcome.COMPLETED})


@dataclass(frozen=True)
class CaptureResult:
    """Result of one submission attempt."""
    outcome: CaptureOutcome
    email: str
    overlay_id: str
    coupon_code: Optional[str] = None
    reason: str = ""
    at: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "email": self.email,
            "overlay_id": self.overlay_id,
            "coupon_code": self.coupon_code,
            "reason": self.reason,
            "at": self.at,
        }
