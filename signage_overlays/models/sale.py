"""
Sale Record Models
==================

Recent sales shown by the toast stream. Records are immutable and are
never synthesized by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from signage_overlays.models.definition import parse_timestamp

UNKNOWN_LOCATION = "Unknown Location"


def format_display_name(full_name: str) -> str:
    """Shorten a customer name to "First L." for public display."""
    parts = (full_name or "").split()
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]} {parts[-1][0]}."


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count > 1 else ''} ago"


@dataclass(frozen=True)
class SaleRecord:
    """One completed sale."""
    id: str
    customer_display_name: str
    location: str
    campaign_label: str
    timestamp: datetime
    amount: Optional[float] = None

    def time_ago(self, now: datetime) -> str:
        """Relative age of the sale, e.g. "5 minutes ago"."""
        minutes = int((now - self.timestamp).total_seconds() // 60)
        if minutes < 1:
            return "just now"
        if minutes < 60:
            return _plural(minutes, "minute")
        hours = minutes // 60
        if hours < 24:
            return _plural(hours, "hour")
        days = hours // 24
        if days < 7:
            return _plural(days, "day")
        return self.timestamp.date().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_display_name": self.customer_display_name,
            "location": self.location,
            "campaign_label": self.campaign_label,
            "timestamp": self.timestamp.isoformat(),
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SaleRecord:
        """
        Build a record from either the flat form or the billing query form:

            {"id", "amount", "payment_date",
             "user": {"full_name", "company_name"},
             "campaign": {"name"}}
        """
        if not isinstance(data, dict):
            raise ValueError(f"sale record is not a mapping: {data!r}")
        user = data.get("user") or {}
        campaign = data.get("campaign") or {}
        if not isinstance(user, dict) or not isinstance(campaign, dict):
            raise ValueError(f"sale record {data.get('id')!r} has malformed user or campaign")

        name = data.get("customer_display_name")
        if name is None:
            name = format_display_name(user.get("full_name", ""))

        location = data.get("location") or user.get("company_name") or UNKNOWN_LOCATION
        label = data.get("campaign_label") or campaign.get("name") or ""

        timestamp = parse_timestamp(
            data.get("timestamp", data.get("payment_date", data.get("created_at")))
        )
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        amount = data.get("amount")
        return cls(
            id=str(data["id"]),
            customer_display_name=name,
            location=location,
            campaign_label=label,
            timestamp=timestamp,
            amount=float(amount) if amount is not None else None,
        )
