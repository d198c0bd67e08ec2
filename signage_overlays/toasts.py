"""
Toast Sequencer
===============

Shows "recent sale" toasts. On activation it fetches at most `max_visible`
sales and turns each into its own instance:

    record i  ->  SCHEDULED, visible after display_delay + i * stagger
              ->  CLOSING on dismiss or after `duration` (if set)
              ->  REMOVED after the exit transition

Every toast owns its timer, so dismissing one never moves a sibling.
No sales means no toasts: the sequencer stays dormant and never fills in
placeholder records. A sale is toasted at most once per sequencer, so a
refill never brings back a toast the user already dismissed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from signage_overlays.backends import OverlayDataSource, SaleLike
from signage_overlays.clock import Clock
from signage_overlays.config import EngineConfig
from signage_overlays.errors import LoadError
from signage_overlays.models.definition import OverlayDefinition, OverlayKind, ToastSettings
from signage_overlays.models.instance import OverlayInstance
from signage_overlays.models.sale import SaleRecord
from signage_overlays.scheduler import InstanceScheduler, StateListener

logger = logging.getLogger(__name__)


class ToastSequencer(InstanceScheduler):
    """Fetches recent sales and sequences their toasts."""

    def __init__(
        self,
        definition: OverlayDefinition,
        source: OverlayDataSource,
        clock: Clock,
        config: Optional[EngineConfig] = None,
        listener: Optional[StateListener] = None,
    ):
        if definition.kind != OverlayKind.TOAST_STREAM:
            raise ValueError(f"ToastSequencer cannot run {definition.kind.value} overlay")
        super().__init__(clock, config=config, listener=listener)
        self.definition = definition
        self.source = source

        self._loading = False
        self._fetch_count = 0
        # Sales already turned into a toast; each is shown once per mount
        self._shown_sale_ids: Set[str] = set()
        self._last_error: Optional[str] = None

    @property
    def settings(self) -> ToastSettings:
        settings = self.definition.settings
        if isinstance(settings, ToastSettings):
            return settings
        return ToastSettings()

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def dormant(self) -> bool:
        return not self._instances and not self._loading

    async def activate(self) -> int:
        """
        Fetch sales and schedule a toast per record.

        Fills only free slots (max_visible minus live toasts). Returns the
        number of toasts scheduled; 0 when a fetch is already in flight, the
        fetch failed or returned nothing.
        """
        if self._closed:
            return 0

        # Check and set in the same synchronous step
        if self._loading:
            logger.debug("Recent sales fetch already in flight, skipping")
            return 0

        slots = self.settings.max_visible - len(self._instances)
        if slots <= 0:
            return 0

        self._loading = True
        try:
            records = await self.source.list_recent_sales(slots)
        except Exception as e:
            error = LoadError("recent_sales", str(e))
            self._last_error = str(error)
            logger.warning(f"Toast stream {self.definition.id} stays dormant: {error}")
            return 0
        finally:
            self._loading = False

        self._fetch_count += 1
        if self._closed:
            return 0

        sales = [s for s in self._parse(records or []) if s.id not in self._shown_sale_ids][:slots]
        if not sales:
            logger.info(f"No recent sales, toast stream {self.definition.id} stays dormant")
            return 0

        scheduled = 0
        for index, sale in enumerate(sales):
            instance = OverlayInstance.create(self.definition, self.clock.now(), sale=sale)
            if instance.instance_id in self._instances:
                continue
            self._shown_sale_ids.add(sale.id)
            delay = self.settings.display_delay + index * self.settings.stagger
            self._schedule(instance, delay)
            scheduled += 1

        logger.info(f"Toast stream {self.definition.id}: {scheduled} toast(s) scheduled")
        return scheduled

    def _parse(self, records: Sequence[SaleLike]) -> List[SaleRecord]:
        sales: List[SaleRecord] = []
        for record in records:
            if isinstance(record, SaleRecord):
                sales.append(record)
                continue
            try:
                sales.append(SaleRecord.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed sale record: {e}")
            except Exception:
                logger.exception(f"Unexpected error building sale record {record!r}")
        return sales

    def _on_visible(self, instance: OverlayInstance) -> None:
        if self.settings.duration > 0:
            self._arm(instance, self.settings.duration, self._expire)

    def _expire(self, instance: OverlayInstance) -> None:
        self._begin_close(instance, "expired")

    def dismiss(self, instance_id: str) -> bool:
        """User closed one toast. Siblings are untouched."""
        if self._closed:
            return False
        instance = self._instances.get(instance_id)
        if instance is None:
            return False
        return self._begin_close(instance, "dismissed")

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "loading": self._loading,
            "fetch_count": self._fetch_count,
            "shown_sales": len(self._shown_sale_ids),
            "last_error": self._last_error,
        })
        return stats
