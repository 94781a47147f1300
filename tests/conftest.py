"""Pytest configuration for tierlimit tests.

Provides shared fixtures and test configuration.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tierlimit.backends.memory import InMemoryBackend
from tierlimit.engine import RateLimitEngine
from tierlimit.events.backends.custom import CustomEventBackend
from tierlimit.events.log import EventLog
from tierlimit.registry import LimitClassRegistry


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (uses real services)"
    )
    config.addinivalue_line(
        "markers", "e2e: mark test as an end-to-end test (complete user flows)"
    )


class FakeClock:
    """Controllable clock for window arithmetic."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Clock starting at a fixed UTC instant."""
    return FakeClock()


@pytest.fixture
def registry():
    """Registry with the built-in tiers."""
    return LimitClassRegistry.default()


@pytest.fixture
def recorded_events():
    """List that collects events written through the event_log fixture."""
    return []


@pytest.fixture
def event_log(recorded_events):
    """Event log appending to recorded_events."""
    return EventLog(CustomEventBackend(recorded_events.append))


@pytest.fixture
def engine(registry, clock, event_log):
    """Engine over an in-memory store with a fake clock."""
    return RateLimitEngine(
        registry=registry,
        store=InMemoryBackend(),
        event_log=event_log,
        clock=clock,
    )
