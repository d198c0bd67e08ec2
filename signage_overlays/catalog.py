"""
Overlay Catalog Loader
======================

Fetches overlay definitions once per mount, normalizes them into
OverlayDefinition objects and keeps the ones eligible right now.

A failed fetch yields an empty catalog (no overlay appears) rather than an
error. A record that cannot be built is skipped on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from signage_overlays.backends import DefinitionLike, OverlayDataSource
from signage_overlays.clock import Clock
from signage_overlays.eligibility import filter_eligible
from signage_overlays.errors import LoadError, SettingsError
from signage_overlays.models.definition import OverlayDefinition, OverlayKind

logger = logging.getLogger(__name__)


@dataclass
class Catalog:
    """Eligible definitions from one load."""
    loaded_at: datetime
    definitions: List[OverlayDefinition] = field(default_factory=list)
    total: int = 0
    skipped: int = 0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def for_kind(self, kind: OverlayKind) -> Optional[OverlayDefinition]:
        """Highest-priority eligible definition of a kind (first wins on ties)."""
        best: Optional[OverlayDefinition] = None
        for definition in self.definitions:
            if definition.kind != kind:
                continue
            if best is None or definition.priority > best.priority:
                best = definition
        return best

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded_at": self.loaded_at.isoformat(),
            "total": self.total,
            "eligible": len(self.definitions),
            "skipped": self.skipped,
            "error": self.error,
            "definitions": [d.to_dict() for d in self.definitions],
        }


def build_definitions(records: Sequence[DefinitionLike]) -> List[OverlayDefinition]:
    """Build definitions from raw records, skipping the ones that fail."""
    definitions: List[OverlayDefinition] = []
    for record in records:
        if isinstance(record, OverlayDefinition):
            definitions.append(record)
            continue
        try:
            definitions.append(OverlayDefinition.from_dict(record))
        except SettingsError as e:
            logger.info(f"Skipping overlay record: {e}")
        except Exception:
            logger.exception(f"Unexpected error building overlay record {record!r}")
    return definitions


class CatalogLoader:
    """
    Loads the overlay catalog.

    Only one fetch runs at a time: a load() issued while another is in flight
    returns None immediately.
    """

    def __init__(self, source: OverlayDataSource, clock: Clock):
        self.source = source
        self.clock = clock

        self._loading = False
        self.last: Optional[Catalog] = None
        self._load_count = 0

    @property
    def loading(self) -> bool:
        return self._loading

    async def load(self) -> Optional[Catalog]:
        """Fetch, normalize and filter definitions."""
        # Check and set in the same synchronous step
        if self._loading:
            logger.debug("Catalog load already in flight, skipping")
            return None
        self._loading = True

        try:
            records = await self.source.list_overlay_definitions()
        except Exception as e:
            error = LoadError("overlay_definitions", str(e))
            logger.warning(f"Catalog load failed: {error}")
            catalog = Catalog(loaded_at=self.clock.wall_now(), error=str(error))
            self.last = catalog
            return catalog
        finally:
            self._loading = False

        records = list(records or [])
        now = self.clock.wall_now()
        definitions = build_definitions(records)
        eligible = filter_eligible(definitions, now)

        catalog = Catalog(
            loaded_at=now,
            definitions=eligible,
            total=len(records),
            skipped=len(records) - len(definitions),
        )
        self.last = catalog
        self._load_count += 1

        logger.info(
            f"Catalog loaded: {len(records)} records, {len(eligible)} eligible, "
            f"{catalog.skipped} skipped"
        )
        return catalog

    def get_stats(self) -> Dict[str, Any]:
        return {
            "loading": self._loading,
            "load_count": self._load_count,
            "last_error": self.last.error if self.last else None,
        }
