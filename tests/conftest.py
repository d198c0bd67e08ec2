"""
Shared fixtures for the overlay engine tests.
"""

from datetime import datetime, timezone

import pytest

from signage_overlays.backends import (
    LoggingEventRecorder, MemoryCouponIssuer, MemorySubscriptionBackend, StaticDataSource,
)
from signage_overlays.capture import CaptureWorkflow
from signage_overlays.clock import VirtualClock
from signage_overlays.config import EngineConfig
from signage_overlays.models.definition import OverlayDefinition


WALL_START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Helpers
# =============================================================================

def make_definition(kind="popup", overlay_id=None, **fields):
    """Build a definition from a catalog-style record."""
    record = {"id": overlay_id or f"{kind}-1", "type": kind}
    record.update(fields)
    return OverlayDefinition.from_dict(record)


def make_sale(sale_id, name="Jane Doe", company="Corner Cafe", campaign="1 Week Ad Campaign"):
    return {
        "id": sale_id,
        "amount": 149.0,
        "payment_date": "2024-05-01T11:55:00Z",
        "user": {"full_name": name, "company_name": company},
        "campaign": {"name": campaign},
    }


class Transitions:
    """Listener that records (instance_id, state) pairs."""

    def __init__(self):
        self.events = []

    def __call__(self, instance):
        self.events.append((instance.instance_id, instance.state.value))

    def states(self, instance_id):
        return [state for iid, state in self.events if iid == instance_id]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Virtual clock starting at t=0."""
    return VirtualClock(wall_start=WALL_START)


@pytest.fixture
def config():
    """Engine config with default timings."""
    return EngineConfig()


@pytest.fixture
def subscriptions():
    return MemorySubscriptionBackend()


@pytest.fixture
def issuer():
    return MemoryCouponIssuer()


@pytest.fixture
def recorder():
    return LoggingEventRecorder()


@pytest.fixture
def workflow(subscriptions, issuer, recorder, config):
    return CaptureWorkflow(subscriptions, issuer, recorder, config)


@pytest.fixture
def transitions():
    return Transitions()


@pytest.fixture
def source():
    return StaticDataSource()
