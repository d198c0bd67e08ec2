"""
Activity Window Filter
======================

Decides whether a definition may run right now. Evaluated once when the
catalog is loaded; a definition that becomes active mid-session waits for
the next load.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List

from signage_overlays.models.definition import OverlayDefinition

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_eligible(definition: OverlayDefinition, now: datetime) -> bool:
    """
    True iff the definition is active and now lies inside [start_at, end_at].

    Both window bounds are inclusive and either may be absent. Never raises:
    anything that cannot be compared counts as not eligible.
    """
    try:
        if not definition.is_active:
            return False
        now = _aware(now)
        if definition.start_at is not None and _aware(definition.start_at) > now:
            return False
        if definition.end_at is not None and _aware(definition.end_at) < now:
            return False
        return True
    except Exception as e:
        logger.debug(f"Eligibility check failed for {getattr(definition, 'id', '?')}: {e}")
        return False


def filter_eligible(definitions: Iterable[OverlayDefinition], now: datetime) -> List[OverlayDefinition]:
    """Keep eligible definitions, preserving order."""
    return [d for d in definitions if is_eligible(d, now)]
