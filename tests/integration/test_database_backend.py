"""Integration tests for DatabaseBackend.

Runs the upsert against a real SQLite database through aiosqlite.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from tierlimit.backends.database import DatabaseBackend
from tierlimit.config import RateLimitConfig
from tierlimit.engine import RateLimitEngine, build_engine
from tierlimit.events.backends.database import DatabaseEventBackend
from tierlimit.registry import LimitClassRegistry
from tierlimit.tables import create_engine

NOW = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/rate_limits.db"


@pytest_asyncio.fixture
async def backend(database_url):
    backend = DatabaseBackend(database_url=database_url)
    await backend.initialize()
    yield backend
    await backend.close()


# =============================================================================
# Tests: Construction
# =============================================================================


class TestDatabaseBackendInit:
    """Test constructor validation."""

    def test_requires_url_or_engine(self):
        with pytest.raises(ValueError, match="database_url or engine required"):
            DatabaseBackend()

    @pytest.mark.asyncio
    async def test_shared_engine_not_disposed(self, database_url):
        engine = create_engine(database_url)
        backend = DatabaseBackend(engine=engine)
        await backend.initialize()
        await backend.close()

        # Still usable after the backend closed.
        await backend.initialize()
        state = await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert state.request_count == 1
        await engine.dispose()


# =============================================================================
# Tests: Upsert
# =============================================================================


class TestDatabaseIncrement:
    """Test the single-statement fixed window upsert."""

    @pytest.mark.asyncio
    async def test_first_request(self, backend):
        state = await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert state.request_count == 1
        assert state.max_requests == 3
        assert state.window_start == NOW

    @pytest.mark.asyncio
    async def test_increment_within_window(self, backend):
        for second in range(4):
            state = await backend.increment_and_check(
                "user:1", "/api", "api", NOW + timedelta(seconds=second), 3, 60
            )
        assert state.request_count == 4
        assert state.window_start == NOW

    @pytest.mark.asyncio
    async def test_window_reset_at_boundary(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)

        just_before = NOW + timedelta(seconds=59, milliseconds=999)
        state = await backend.increment_and_check(
            "user:1", "/api", "api", just_before, 3, 60
        )
        assert state.request_count == 3

        boundary = NOW + timedelta(seconds=60)
        state = await backend.increment_and_check("user:1", "/api", "api", boundary, 3, 60)
        assert state.request_count == 1
        assert state.window_start == boundary

    @pytest.mark.asyncio
    async def test_max_requests_snapshot(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        same_window = await backend.increment_and_check(
            "user:1", "/api", "api", NOW, 10, 60
        )
        assert same_window.max_requests == 3

        later = NOW + timedelta(seconds=61)
        new_window = await backend.increment_and_check(
            "user:1", "/api", "api", later, 10, 60
        )
        assert new_window.max_requests == 10

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        state = await backend.increment_and_check(
            "user:1", "/api", "payment", NOW, 3, 3600
        )
        assert state.request_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments(self, backend):
        """Concurrent upserts on one key never read the same count."""
        states = await asyncio.gather(
            *[
                backend.increment_and_check("user:1", "/api", "api", NOW, 10, 60)
                for _ in range(20)
            ]
        )
        counts = sorted(state.request_count for state in states)
        assert counts == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_counter_survives_new_backend(self, database_url, backend):
        """Counters persist across process restarts."""
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)

        restarted = DatabaseBackend(database_url=database_url)
        try:
            state = await restarted.increment_and_check(
                "user:1", "/api", "api", NOW, 3, 60
            )
        finally:
            await restarted.close()

        assert state.request_count == 2


# =============================================================================
# Tests: Read, Reset, Purge
# =============================================================================


class TestDatabaseMaintenance:
    """Test get, reset and purge."""

    @pytest.mark.asyncio
    async def test_get(self, backend):
        assert await backend.get("user:1", "/api", "api") is None

        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        later = NOW + timedelta(seconds=5)
        await backend.increment_and_check("user:1", "/api", "api", later, 3, 60)

        record = await backend.get("user:1", "/api", "api")
        assert record.request_count == 2
        assert record.window_start == NOW
        assert record.last_request_at == later

    @pytest.mark.asyncio
    async def test_reset(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert await backend.reset("user:1", "/api", "api") is True
        assert await backend.reset("user:1", "/api", "api") is False

    @pytest.mark.asyncio
    async def test_purge(self, backend):
        await backend.increment_and_check("user:old", "/api", "api", NOW, 3, 60)
        await backend.increment_and_check(
            "user:new", "/api", "api", NOW + timedelta(hours=2), 3, 60
        )

        removed = await backend.purge(NOW + timedelta(hours=1))

        assert removed == 1
        assert await backend.get("user:old", "/api", "api") is None
        assert await backend.get("user:new", "/api", "api") is not None


# =============================================================================
# Tests: Engine over SQL
# =============================================================================


class TestEngineOverDatabase:
    """Test the full decision path against SQLite."""

    @pytest.mark.asyncio
    async def test_payment_scenario(self, backend):
        clock_now = [NOW]
        engine = RateLimitEngine(
            LimitClassRegistry.default(), backend, clock=lambda: clock_now[0]
        )

        remaining = [
            (await engine.check("user:42", "/api/checkout", "payment")).remaining
            for _ in range(3)
        ]
        assert remaining == [2, 1, 0]

        clock_now[0] = NOW + timedelta(seconds=10)
        blocked = await engine.check("user:42", "/api/checkout", "payment")
        assert blocked.allowed is False
        assert blocked.retry_after_seconds(clock_now[0]) == 3590

        clock_now[0] = NOW + timedelta(seconds=3601)
        assert (await engine.check("user:42", "/api/checkout", "payment")).allowed

    @pytest.mark.asyncio
    async def test_concurrent_checks_allow_exactly_max(self, backend):
        """Twice the quota in parallel admits exactly the quota."""
        engine = RateLimitEngine(
            LimitClassRegistry.from_mapping(
                {"api": {"max_requests": 10, "window_seconds": 60}}
            ),
            backend,
            store_timeout_seconds=5.0,
            clock=lambda: NOW,
        )

        decisions = await asyncio.gather(
            *[engine.check("user:1", "/api", "api") for _ in range(20)]
        )

        assert not any(d.degraded for d in decisions)
        assert sum(d.allowed for d in decisions) == 10
        assert sorted(d.remaining for d in decisions if d.allowed) == list(range(10))

    @pytest.mark.asyncio
    async def test_build_engine_shares_sql_engine(self, database_url):
        config = RateLimitConfig(
            backend="database", database_url=database_url, events="database"
        )
        engine = build_engine(config)
        try:
            await engine.initialize()
            assert isinstance(engine.event_log.backend, DatabaseEventBackend)
            assert engine.event_log.backend._engine is engine.store.engine

            await engine.check("user:1", "/api", "api")
            events = await engine.event_log.backend.query(identifier="user:1")
            assert [e.action for e in events] == ["allowed"]
        finally:
            await engine.close()
