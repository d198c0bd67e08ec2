"""
Tests for the catalog loader.
"""

import asyncio

import pytest

from signage_overlays.backends import StaticDataSource
from signage_overlays.catalog import Catalog, CatalogLoader, build_definitions
from signage_overlays.models.definition import OverlayKind

from tests.conftest import WALL_START, make_definition


class SlowSource(StaticDataSource):
    """Data source whose definition fetch waits for a release event."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()

    async def list_overlay_definitions(self):
        self.definition_calls += 1
        await self.release.wait()
        return list(self.definitions)


class TestCatalogLoader:
    """Fetch, normalize and filter."""

    @pytest.mark.asyncio
    async def test_keeps_eligible_only(self, clock):
        source = StaticDataSource(definitions=[
            {"id": "p1", "type": "popup"},
            {"id": "p2", "type": "popup", "end_date": "2023-01-01T00:00:00Z"},
            {"id": "b1", "type": "announcement_bar", "is_active": False},
            {"id": "t1", "type": "sales_notification"},
        ])
        catalog = await CatalogLoader(source, clock).load()

        assert not catalog.failed
        assert catalog.total == 4
        assert [d.id for d in catalog.definitions] == ["p1", "t1"]
        assert catalog.for_kind(OverlayKind.BANNER) is None

    @pytest.mark.asyncio
    async def test_fetch_failure_gives_empty_catalog(self, clock):
        source = StaticDataSource(fail_definitions=True)
        loader = CatalogLoader(source, clock)

        catalog = await loader.load()
        assert catalog.failed
        assert "overlay_definitions" in catalog.error
        assert catalog.definitions == []
        assert not loader.loading
        assert loader.get_stats()["last_error"] == catalog.error

    @pytest.mark.asyncio
    async def test_bad_records_skipped(self, clock):
        source = StaticDataSource(definitions=[
            {"id": "x", "type": "testimonial"},
            {"type": "popup"},
            "not a record",
            {"id": "ok", "type": "popup"},
        ])
        catalog = await CatalogLoader(source, clock).load()
        assert [d.id for d in catalog.definitions] == ["ok"]
        assert catalog.skipped == 3

    @pytest.mark.asyncio
    async def test_concurrent_load_suppressed(self, clock):
        source = SlowSource(definitions=[{"id": "p1", "type": "popup"}])
        loader = CatalogLoader(source, clock)

        first = asyncio.ensure_future(loader.load())
        await asyncio.sleep(0)
        assert loader.loading

        assert await loader.load() is None
        source.release.set()
        catalog = await first

        assert source.definition_calls == 1
        assert [d.id for d in catalog.definitions] == ["p1"]
        assert not loader.loading

    @pytest.mark.asyncio
    async def test_window_uses_clock_wall_time(self, clock):
        # Clock wall time is 2024-05-01 12:00 UTC
        source = StaticDataSource(definitions=[
            {"id": "later", "type": "popup", "start_date": "2024-05-01T12:00:10Z"},
        ])
        loader = CatalogLoader(source, clock)
        assert (await loader.load()).definitions == []

        clock.advance(10)
        assert [d.id for d in (await loader.load()).definitions] == ["later"]


class TestCatalog:

    def test_for_kind_prefers_priority(self):
        definitions = [
            make_definition("popup", "low", priority=1),
            make_definition("popup", "high", priority=5),
            make_definition("popup", "tie", priority=5),
        ]
        catalog = Catalog(loaded_at=WALL_START, definitions=definitions)
        assert catalog.for_kind(OverlayKind.POPUP).id == "high"

    def test_build_definitions_passes_through_objects(self):
        d = make_definition("banner")
        assert build_definitions([d]) == [d]
