"""
Signage Overlays
================

Presentation engine for the marketing overlays of the digital-signage
advertising console: a sticky banner, a modal popup and a stream of
"recent sale" toasts.

Architecture:
    CatalogLoader    - Fetches overlay definitions, keeps the eligible ones
    OverlayScheduler - Runs the banner / popup state machine and its timers
    ToastSequencer   - Fetches recent sales and staggers their toasts
    CaptureWorkflow  - Email capture: subscribe, then issue a coupon
    OverlaySession   - One page mount; wires everything and cancels on unmount

All timers go through a Clock, so VirtualClock can drive the whole engine
deterministically.
"""

from signage_overlays.models.definition import (
    OverlayKind, OverlayDefinition, OverlaySettings,
    BannerSettings, PopupSettings, ToastSettings,
)
from signage_overlays.models.sale import SaleRecord
from signage_overlays.models.capture import CaptureOutcome, CaptureResult
from signage_overlays.models.instance import OverlayInstance, OverlayState

from signage_overlays.errors import OverlayError, LoadError, ValidationError, SettingsError
from signage_overlays.clock import Clock, AsyncioClock, VirtualClock, TimerHandle
from signage_overlays.config import EngineConfig, get_config, set_config
from signage_overlays.eligibility import is_eligible, filter_eligible
from signage_overlays.catalog import Catalog, CatalogLoader
from signage_overlays.capture import CaptureWorkflow, validate_email, generate_coupon_code
from signage_overlays.scheduler import OverlayScheduler
from signage_overlays.toasts import ToastSequencer
from signage_overlays.session import OverlaySession

__all__ = [
    # Models
    "OverlayKind", "OverlayDefinition", "OverlaySettings",
    "BannerSettings", "PopupSettings", "ToastSettings",
    "SaleRecord",
    "CaptureOutcome", "CaptureResult",
    "OverlayInstance", "OverlayState",
    # Errors
    "OverlayError", "LoadError", "ValidationError", "SettingsError",
    # Core
    "Clock", "AsyncioClock", "VirtualClock", "TimerHandle",
    "EngineConfig", "get_config", "set_config",
    "is_eligible", "filter_eligible",
    "Catalog", "CatalogLoader",
    "CaptureWorkflow", "validate_email", "generate_coupon_code",
    "OverlayScheduler",
    "ToastSequencer",
    "OverlaySession",
]

__version__ = "0.1.0"
