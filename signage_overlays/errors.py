"""
Overlay Errors
==============

Failures that cross a component boundary. Fetch and write failures are
caught where they happen and turned into instance state; these classes
exist so that boundary code can tell them apart.
"""

from __future__ import annotations

from typing import Optional


class OverlayError(Exception):
    """Base exception for overlay engine errors."""
    pass


class LoadError(OverlayError):
    """Catalog or sales fetch failed."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(f"{source}: {message}" if message else source)


class ValidationError(OverlayError):
    """User input was rejected before any side effect ran."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class SettingsError(OverlayError):
    """A single definition record could not be built."""

    def __init__(self, overlay_id: str, message: str):
        self.overlay_id = overlay_id
        super().__init__(f"overlay {overlay_id}: {message}")
