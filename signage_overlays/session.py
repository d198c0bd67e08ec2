"""
Overlay Session
===============

One page mount. Loads the catalog once, starts one scheduler per overlay
kind plus the toast sequencer, and tears everything down on unmount.

The presentation layer reads state through `visible()` / `snapshot()` and
is told about every transition through the listener callback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Set, TypeVar

from signage_overlays.backends import (
    CouponIssuer, EventRecorder, OverlayDataSource, SubscriptionBackend,
)
from signage_overlays.capture import CaptureWorkflow
from signage_overlays.catalog import Catalog, CatalogLoader
from signage_overlays.clock import AsyncioClock, Clock
from signage_overlays.config import EngineConfig, get_config
from signage_overlays.models.capture import CaptureResult
from signage_overlays.models.definition import OverlayKind
from signage_overlays.models.instance import OverlayInstance
from signage_overlays.scheduler import OverlayScheduler, StateListener
from signage_overlays.toasts import ToastSequencer

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEDULED_KINDS = (OverlayKind.BANNER, OverlayKind.POPUP)


class OverlaySession:
    """
    Overlay engine for one mounted page.

    Every kind is isolated: a failure while starting one overlay is logged
    and the others carry on.
    """

    def __init__(
        self,
        source: OverlayDataSource,
        subscriptions: SubscriptionBackend,
        issuer: CouponIssuer,
        recorder: Optional[EventRecorder] = None,
        clock: Optional[Clock] = None,
        config: Optional[EngineConfig] = None,
        listener: Optional[StateListener] = None,
    ):
        self.clock = clock or AsyncioClock()
        self.config = config or get_config()
        self.listener = listener

        self.source = source
        self.loader = CatalogLoader(source, self.clock)
        self.workflow = CaptureWorkflow(subscriptions, issuer, recorder, self.config)

        self.catalog: Optional[Catalog] = None
        self.schedulers: Dict[OverlayKind, OverlayScheduler] = {}
        self.toasts: Optional[ToastSequencer] = None

        self._tasks: Set[asyncio.Future] = set()
        self._mounted = False
        self._unmounted = False

    @property
    def mounted(self) -> bool:
        return self._mounted and not self._unmounted

    async def _tracked(self, awaitable: Awaitable[T]) -> Optional[T]:
        """Run a session-owned operation that unmount() can cancel."""
        future = asyncio.ensure_future(awaitable)
        self._tasks.add(future)
        try:
            return await future
        except asyncio.CancelledError:
            if self._unmounted:
                return None
            raise
        finally:
            self._tasks.discard(future)

    async def mount(self) -> Optional[Catalog]:
        """Load the catalog and start every eligible overlay."""
        if self._mounted:
            return self.catalog
        self._mounted = True
        logger.info("Mounting overlay session")

        catalog = await self._tracked(self.loader.load())
        if catalog is None or self._unmounted:
            return None
        self.catalog = catalog

        for kind in SCHEDULED_KINDS:
            scheduler = OverlayScheduler(
                kind, self.clock, self.workflow, config=self.config, listener=self.listener,
            )
            self.schedulers[kind] = scheduler
            definition = catalog.for_kind(kind)
            if definition is None:
                continue
            try:
                scheduler.load(definition)
            except Exception as e:
                logger.exception(f"Failed to start {kind.value} overlay {definition.id}: {e}")

        toast_definition = catalog.for_kind(OverlayKind.TOAST_STREAM)
        if toast_definition is not None:
            self.toasts = ToastSequencer(
                toast_definition, self.source, self.clock,
                config=self.config, listener=self.listener,
            )
            try:
                await self._tracked(self.toasts.activate())
            except Exception as e:
                logger.exception(f"Toast stream {toast_definition.id} failed to start: {e}")

        return catalog

    def unmount(self) -> None:
        """Cancel all timers and in-flight work. Safe to call more than once."""
        if self._unmounted:
            return
        self._unmounted = True

        for future in list(self._tasks):
            future.cancel()
        self._tasks.clear()

        for scheduler in self.schedulers.values():
            scheduler.shutdown()
        if self.toasts is not None:
            self.toasts.shutdown()

        logger.info("Overlay session unmounted")

    # ─────────────────────────────────────────────────────────────────
    # User actions
    # ─────────────────────────────────────────────────────────────────

    async def submit(self, kind: OverlayKind, email: Optional[str]) -> Optional[CaptureResult]:
        """Submit the capture form on the banner or popup."""
        scheduler = self.schedulers.get(kind)
        if scheduler is None or not self.mounted:
            return None
        return await scheduler.submit(email)

    def dismiss(self, kind: OverlayKind) -> bool:
        """Close the banner or popup."""
        scheduler = self.schedulers.get(kind)
        if scheduler is None or not self.mounted:
            return False
        return scheduler.dismiss()

    def dismiss_toast(self, instance_id: str) -> bool:
        if self.toasts is None or not self.mounted:
            return False
        return self.toasts.dismiss(instance_id)

    async def refresh_toasts(self) -> int:
        """Fetch sales again to fill free toast slots."""
        if self.toasts is None or not self.mounted:
            return 0
        return await self._tracked(self.toasts.activate()) or 0

    # ─────────────────────────────────────────────────────────────────
    # Presentation
    # ─────────────────────────────────────────────────────────────────

    def current(self, kind: OverlayKind) -> Optional[OverlayInstance]:
        scheduler = self.schedulers.get(kind)
        return scheduler.current if scheduler is not None else None

    def visible(self) -> List[OverlayInstance]:
        instances: List[OverlayInstance] = []
        for kind in SCHEDULED_KINDS:
            scheduler = self.schedulers.get(kind)
            if scheduler is not None:
                instances.extend(scheduler.visible())
        if self.toasts is not None:
            instances.extend(self.toasts.visible())
        return instances

    def snapshot(self) -> Dict[str, Any]:
        return {
            "time": self.clock.now(),
            "mounted": self.mounted,
            "catalog": self.catalog.to_dict() if self.catalog else None,
            "visible": [i.to_dict() for i in self.visible()],
            "schedulers": {k.value: s.get_stats() for k, s in self.schedulers.items()},
            "toasts": self.toasts.get_stats() if self.toasts else None,
            "capture": self.workflow.get_stats(),
        }
