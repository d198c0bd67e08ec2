"""Data models for the overlay engine."""

from signage_overlays.models.definition import (
    OverlayKind, OverlayDefinition, OverlaySettings,
    BannerSettings, PopupSettings, ToastSettings, CallToAction,
)
from signage_overlays.models.sale import SaleRecord, format_display_name
from signage_overlays.models.capture import CaptureOutcome, CaptureResult
from signage_overlays.models.instance import OverlayInstance, OverlayState

__all__ = [
    "OverlayKind", "OverlayDefinition", "OverlaySettings",
    "BannerSettings", "PopupSettings", "ToastSettings", "CallToAction",
    "SaleRecord", "format_display_name",
    "CaptureOutcome", "CaptureResult",
    "OverlayInstance", "OverlayState",
]
