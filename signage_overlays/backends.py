"""
External Interfaces
===================

The engine talks to four collaborators, all asynchronous:

    OverlayDataSource    - overlay definitions and recent sales (idempotent reads)
    SubscriptionBackend  - mailing-list subscribe (write #1)
    CouponIssuer         - coupon email issuance (write #2)
    EventRecorder        - audit log, fire-and-forget

Concrete transports live outside this package. The in-memory versions below
back the CLI preview and the test suite.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from signage_overlays.models.definition import OverlayDefinition
from signage_overlays.models.sale import SaleRecord

logger = logging.getLogger(__name__)

DefinitionLike = Union[OverlayDefinition, Dict[str, Any]]
SaleLike = Union[SaleRecord, Dict[str, Any]]


class OverlayDataSource(ABC):
    """Read side: overlay catalog and sales feed."""

    @abstractmethod
    async def list_overlay_definitions(self) -> Sequence[DefinitionLike]:
        """Return every configured overlay, active or not."""
        pass

    @abstractmethod
    async def list_recent_sales(self, limit: int) -> Sequence[SaleLike]:
        """Return up to `limit` most recent sales, newest first."""
        pass


class SubscriptionBackend(ABC):
    """Mailing-list subscription."""

    @abstractmethod
    async def subscribe(self, email: str, tags: List[str]) -> bool:
        """True if the address was accepted."""
        pass


class CouponIssuer(ABC):
    """Coupon email delivery."""

    @abstractmethod
    async def issue_coupon_email(self, email: str, code: str, overlay_id: str) -> bool:
        """True if the coupon email was sent or queued."""
        pass


class EventRecorder(ABC):
    """Audit trail for capture events."""

    @abstractmethod
    async def record_event(self, event_type: str, target_id: str, payload: Dict[str, Any]) -> None:
        pass


# =============================================================================
# In-memory implementations
# =============================================================================

DEMO_SALES: List[Dict[str, Any]] = [
    {"id": "demo-1", "customer_display_name": "Maria G.", "location": "Austin Coffee Co.",
     "campaign_label": "1 Week Ad Campaign", "minutes_ago": 4},
    {"id": "demo-2", "customer_display_name": "Dev P.", "location": "Northside Gym",
     "campaign_label": "Vertical Ad Creation - Video", "minutes_ago": 37},
    {"id": "demo-3", "customer_display_name": "Alex K.", "location": "Unknown Location",
     "campaign_label": "1 Month Ad Campaign", "minutes_ago": 180},
]


class StaticDataSource(OverlayDataSource):
    """
    Data source over fixed lists.

    demo_sales=True returns sample sales when the real list is empty. That
    is a preview aid for the presentation layer; the toast sequencer itself
    never invents records.
    """

    def __init__(
        self,
        definitions: Optional[List[DefinitionLike]] = None,
        sales: Optional[List[SaleLike]] = None,
        demo_sales: bool = False,
        fail_definitions: bool = False,
        fail_sales: bool = False,
    ):
        self.definitions = list(definitions or [])
        self.sales = list(sales or [])
        self.demo_sales = demo_sales
        self.fail_definitions = fail_definitions
        self.fail_sales = fail_sales

        self.definition_calls = 0
        self.sales_calls = 0

    @classmethod
    def from_yaml(cls, path: Path, demo_sales: bool = False) -> StaticDataSource:
        """Load `overlays:` and `sales:` lists from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(
            definitions=data.get("overlays", []),
            sales=data.get("sales", []),
            demo_sales=demo_sales or bool(data.get("demo_sales", False)),
        )

    async def list_overlay_definitions(self) -> Sequence[DefinitionLike]:
        self.definition_calls += 1
        if self.fail_definitions:
            raise ConnectionError("overlay catalog unavailable")
        return list(self.definitions)

    async def list_recent_sales(self, limit: int) -> Sequence[SaleLike]:
        self.sales_calls += 1
        if self.fail_sales:
            raise ConnectionError("sales feed unavailable")
        sales = self.sales
        if not sales and self.demo_sales:
            sales = self._demo_records()
        return list(sales[:limit])

    @staticmethod
    def _demo_records() -> List[SaleRecord]:
        now = datetime.now(timezone.utc)
        return [
            SaleRecord(
                id=d["id"],
                customer_display_name=d["customer_display_name"],
                location=d["location"],
                campaign_label=d["campaign_label"],
                timestamp=now - timedelta(minutes=d["minutes_ago"]),
            )
            for d in DEMO_SALES
        ]


@dataclass
class MemorySubscriptionBackend(SubscriptionBackend):
    """Records subscriptions in memory."""
    accept: bool = True
    raise_error: bool = False
    calls: List[Dict[str, Any]] = field(default_factory=list)

    async def subscribe(self, email: str, tags: List[str]) -> bool:
        self.calls.append({"email": email, "tags": list(tags)})
        if self.raise_error:
            raise ConnectionError("subscription service unavailable")
        return self.accept


@dataclass
class MemoryCouponIssuer(CouponIssuer):
    """Records coupon emails in memory."""
    accept: bool = True
    raise_error: bool = False
    calls: List[Dict[str, Any]] = field(default_factory=list)

    async def issue_coupon_email(self, email: str, code: str, overlay_id: str) -> bool:
        self.calls.append({"email": email, "code": code, "overlay_id": overlay_id})
        if self.raise_error:
            raise ConnectionError("coupon email service unavailable")
        return self.accept


class LoggingEventRecorder(EventRecorder):
    """Writes events to the log and keeps them for inspection."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def record_event(self, event_type: str, target_id: str, payload: Dict[str, Any]) -> None:
        self.events.append({"event_type": event_type, "target_id": target_id, "payload": dict(payload)})
        logger.info(f"Event {event_type} on {target_id}: {payload}")
