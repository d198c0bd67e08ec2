"""
Capture-and-Issue Workflow
==========================

Turns an email typed into a popup or banner into two external writes:

    1. validate the address        -> ValidationError, nothing written
    2. subscribe(email, tags)      -> SUBSCRIBE_FAILED, stop
    3. issue_coupon_email(...)     -> ISSUE_FAILED, subscription kept
    4. both succeeded              -> COMPLETED

Overlays configured without coupon issuance stop after step 2 with
SUBSCRIBED. Nothing is retried automatically; a retry is a new submission.

The once-only guarantee per instance is enforced by the owning scheduler,
not here.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from typing import Any, Dict, List, Optional, Set

from signage_overlays.backends import CouponIssuer, EventRecorder, SubscriptionBackend
from signage_overlays.config import EngineConfig, get_config
from signage_overlays.errors import ValidationError
from signage_overlays.models.capture import CaptureOutcome, CaptureResult
from signage_overlays.models.definition import CaptureSettings, OverlayDefinition

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

# No 0/O or 1/I, so codes survive being read aloud or retyped
COUPON_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CAPTURE_EVENT = "overlay_email_capture"


def validate_email(email: Optional[str]) -> str:
    """Validate and normalise an email address. Returns it lowercased."""
    if email is None or not email.strip():
        raise ValidationError("Please enter your email address", field="email")
    email = email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email address: '{email}'", field="email")
    return email


def generate_coupon_code(prefix: str = "EZK", length: int = 6) -> str:
    """
    PREFIX-XXXXXX with a random suffix from COUPON_ALPHABET.

    Uniqueness is best-effort; the issuing backend owns real uniqueness.
    """
    suffix = "".join(secrets.choice(COUPON_ALPHABET) for _ in range(max(1, length)))
    return f"{prefix}-{suffix}" if prefix else suffix


class CaptureWorkflow:
    """Runs subscribe and coupon issuance for one submission."""

    def __init__(
        self,
        subscriptions: SubscriptionBackend,
        issuer: CouponIssuer,
        recorder: Optional[EventRecorder] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.subscriptions = subscriptions
        self.issuer = issuer
        self.recorder = recorder
        self.config = config or get_config()

        # Fire-and-forget audit writes still need a strong reference
        self._background: Set[asyncio.Future] = set()

        self._attempts = 0
        self._outcomes: Dict[str, int] = {o.value: 0 for o in CaptureOutcome}

    def _tags_for(self, settings: CaptureSettings) -> List[str]:
        tags: List[str] = []
        for tag in list(self.config.capture.default_tags) + list(settings.subscribe_tags):
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    async def submit(self, definition: OverlayDefinition, email: Optional[str], at: float = 0.0) -> CaptureResult:
        """Validate then run. Raises ValidationError before any write."""
        return await self.run(definition, validate_email(email), at=at)

    async def run(self, definition: OverlayDefinition, email: str, at: float = 0.0) -> CaptureResult:
        """Run steps 2-4 for an already validated address."""
        settings = definition.settings
        if not isinstance(settings, CaptureSettings):
            raise TypeError(f"overlay {definition.id} ({definition.kind.value}) has no capture settings")

        self._attempts += 1

        # Step 2: subscribe
        reason = ""
        try:
            accepted = await self.subscriptions.subscribe(email, self._tags_for(settings))
        except Exception as e:
            logger.warning(f"Subscribe failed for overlay {definition.id}: {e}")
            accepted = False
            reason = str(e)

        if not accepted:
            return self._finish(definition, CaptureResult(
                outcome=CaptureOutcome.SUBSCRIBE_FAILED,
                email=email,
                overlay_id=definition.id,
                reason=reason or "subscription was not accepted",
                at=at,
            ))

        if not settings.issue_coupon:
            return self._finish(definition, CaptureResult(
                outcome=CaptureOutcome.SUBSCRIBED,
                email=email,
                overlay_id=definition.id,
                at=at,
            ))

        # Step 3: issue coupon. Subscription stands even if this fails.
        code = settings.coupon_code or generate_coupon_code(
            self.config.capture.coupon_prefix,
            self.config.capture.coupon_suffix_length,
        )
        try:
            issued = await self.issuer.issue_coupon_email(email, code, definition.id)
        except Exception as e:
            logger.warning(f"Coupon issuance failed for overlay {definition.id}: {e}")
            issued = False
            reason = str(e)

        if not issued:
            return self._finish(definition, CaptureResult(
                outcome=CaptureOutcome.ISSUE_FAILED,
                email=email,
                overlay_id=definition.id,
                reason=reason or "coupon email was not sent",
                at=at,
            ))

        return self._finish(definition, CaptureResult(
            outcome=CaptureOutcome.COMPLETED,
            email=email,
            overlay_id=definition.id,
            coupon_code=code,
            at=at,
        ))

    def _finish(self, definition: OverlayDefinition, result: CaptureResult) -> CaptureResult:
        self._outcomes[result.outcome.value] += 1
        logger.info(f"Capture on overlay {definition.id}: {result.outcome.value}")

        settings = definition.settings
        if self.recorder is not None and getattr(settings, "record_events", False):
            payload = {
                "kind": definition.kind.value,
                "email": result.email,
                "outcome": result.outcome.value,
            }
            future = asyncio.ensure_future(self._record(definition.id, payload))
            self._background.add(future)
            future.add_done_callback(self._background.discard)

        return result

    async def _record(self, target_id: str, payload: Dict[str, Any]) -> None:
        try:
            await self.recorder.record_event(CAPTURE_EVENT, target_id, payload)
        except Exception as e:
            logger.warning(f"Failed to record {CAPTURE_EVENT} for {target_id}: {e}")

    async def drain(self) -> None:
        """Wait for pending audit writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "attempts": self._attempts,
            "outcomes": dict(self._outcomes),
            "pending_events": len(self._background),
        }
