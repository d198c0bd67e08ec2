"""
Overlay Definition Models
=========================

Definitions describe one configured overlay: its kind, content, timing
settings and activity window. They are immutable once loaded.

Settings come from an admin form and are stored as a loose JSON blob, so
each field is validated on its own: a malformed value falls back to that
field's documented default instead of rejecting the whole definition.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from signage_overlays.errors import SettingsError


class OverlayKind(str, Enum):
    """Kinds of marketing overlays."""
    BANNER = "banner"
    POPUP = "popup"
    TOAST_STREAM = "toast-stream"

    @classmethod
    def parse(cls, value: Any) -> Optional[OverlayKind]:
        """Map a stored type name (including legacy names) to a kind."""
        if isinstance(value, OverlayKind):
            return value
        if not isinstance(value, str):
            return None
        return _KIND_ALIASES.get(value.strip().lower().replace("_", "-"))


_KIND_ALIASES: Dict[str, OverlayKind] = {
    "banner": OverlayKind.BANNER,
    "announcement-bar": OverlayKind.BANNER,
    "popup": OverlayKind.POPUP,
    "toast-stream": OverlayKind.TOAST_STREAM,
    "sales-notification": OverlayKind.TOAST_STREAM,
}


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class CallToAction(BaseModel):
    """Optional button shown on banners and popups."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    label: str = ""
    href: str = ""


class OverlaySettings(BaseModel):
    """Options shared by every overlay kind."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    display_delay: float = Field(
        default=0.0, ge=0,
        validation_alias=_aliases("display_delay", "displayDelay", "displayDelaySec"),
    )
    background_color: str = Field(
        default="", validation_alias=_aliases("background_color", "backgroundColor"),
    )
    text_color: str = Field(
        default="", validation_alias=_aliases("text_color", "textColor"),
    )
    cta: Optional[CallToAction] = None

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(cls, value: Any, handler: Any, info: pydantic.ValidationInfo) -> Any:
        try:
            return handler(value)
        except pydantic.ValidationError:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)

    @classmethod
    def from_raw(cls, raw: Any) -> OverlaySettings:
        """Build settings from a stored blob (dict, JSON string or nothing)."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = None
        if not isinstance(raw, dict):
            raw = {}
        return cls.model_validate(raw)


class CaptureSettings(OverlaySettings):
    """Options for overlays that can collect an email address."""

    auto_close: float = Field(
        default=0.0, ge=0,
        validation_alias=_aliases("auto_close", "autoClose", "autoCloseSec"),
    )
    collect_email: bool = Field(
        default=False, validation_alias=_aliases("collect_email", "collectEmail"),
    )
    issue_coupon: bool = Field(
        default=False, validation_alias=_aliases("issue_coupon", "issueCoupon"),
    )
    coupon_code: Optional[str] = Field(
        default=None, validation_alias=_aliases("coupon_code", "couponCode"),
    )
    subscribe_tags: List[str] = Field(
        default_factory=list,
        validation_alias=_aliases("subscribe_tags", "subscribeTags", "tags"),
    )
    record_events: bool = Field(
        default=False, validation_alias=_aliases("record_events", "recordEvents"),
    )


class BannerSettings(CaptureSettings):
    """Sticky announcement bar. Shown immediately, subscribe-only capture."""

    position: str = Field(default="top", pattern="^(top|bottom)$")
    record_events: bool = Field(
        default=True, validation_alias=_aliases("record_events", "recordEvents"),
    )


class PopupSettings(CaptureSettings):
    """Modal popup. Delayed, collects an email and issues a coupon."""

    display_delay: float = Field(
        default=3.0, ge=0,
        validation_alias=_aliases("display_delay", "displayDelay", "displayDelaySec"),
    )
    collect_email: bool = Field(
        default=True, validation_alias=_aliases("collect_email", "collectEmail"),
    )
    issue_coupon: bool = Field(
        default=True, validation_alias=_aliases("issue_coupon", "issueCoupon"),
    )


class ToastSettings(OverlaySettings):
    """Recent-sale toast stream."""

    display_delay: float = Field(
        default=5.0, ge=0,
        validation_alias=_aliases("display_delay", "displayDelay", "displayDelaySec"),
    )
    duration: float = Field(
        default=0.0, ge=0, validation_alias=_aliases("duration", "durationSec"),
    )
    max_visible: int = Field(
        default=1, ge=1, validation_alias=_aliases("max_visible", "maxVisible"),
    )
    stagger: float = Field(
        default=0.2, ge=0, validation_alias=_aliases("stagger", "staggerSec"),
    )
    show_location: bool = Field(
        default=True, validation_alias=_aliases("show_location", "showLocation"),
    )
    show_profile_picture: bool = Field(
        default=True,
        validation_alias=_aliases("show_profile_picture", "showProfilePicture"),
    )


SETTINGS_BY_KIND: Dict[OverlayKind, Type[OverlaySettings]] = {
    OverlayKind.BANNER: BannerSettings,
    OverlayKind.POPUP: PopupSettings,
    OverlayKind.TOAST_STREAM: ToastSettings,
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class OverlayDefinition:
    """One configured overlay, as loaded from the catalog."""
    id: str
    kind: OverlayKind
    title: str = ""
    content: str = ""
    settings: OverlaySettings = field(default_factory=OverlaySettings)
    is_active: bool = True
    priority: int = 0
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "content": self.content,
            "settings": self.settings.model_dump(mode="json"),
            "is_active": self.is_active,
            "priority": self.priority,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> OverlayDefinition:
        """
        Build a definition from a catalog record.

        Accepts both engine field names and the stored column names
        (type, start_date, end_date). Raises SettingsError when the record
        has no id, an unknown kind or an unreadable activity window.
        """
        overlay_id = data.get("id")
        if overlay_id is None or str(overlay_id) == "":
            raise SettingsError("<missing>", "record has no id")
        overlay_id = str(overlay_id)

        kind = OverlayKind.parse(data.get("kind", data.get("type")))
        if kind is None:
            raise SettingsError(overlay_id, f"unsupported kind {data.get('kind', data.get('type'))!r}")

        try:
            start_at = parse_timestamp(data.get("start_at", data.get("start_date")))
            end_at = parse_timestamp(data.get("end_at", data.get("end_date")))
        except ValueError as e:
            raise SettingsError(overlay_id, f"bad activity window: {e}") from e

        try:
            priority = int(data.get("priority", 0) or 0)
        except (TypeError, ValueError):
            priority = 0

        settings = SETTINGS_BY_KIND[kind].from_raw(data.get("settings"))

        return cls(
            id=overlay_id,
            kind=kind,
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            settings=settings,
            is_active=_as_bool(data.get("is_active", data.get("isActive", True))),
            priority=priority,
            start_at=start_at,
            end_at=end_at,
        )
