"""Unit tests for InMemoryBackend."""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from tierlimit.backends.memory import InMemoryBackend

NOW = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def backend():
    return InMemoryBackend()


# =============================================================================
# Tests: Fixed Window Increment
# =============================================================================


class TestIncrementAndCheck:
    """Test counter creation, increment and window reset."""

    @pytest.mark.asyncio
    async def test_first_request_opens_window(self, backend):
        state = await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert state.request_count == 1
        assert state.max_requests == 3
        assert state.window_start == NOW

    @pytest.mark.asyncio
    async def test_requests_in_window_increment(self, backend):
        for second in range(3):
            state = await backend.increment_and_check(
                "user:1", "/api", "api", NOW + timedelta(seconds=second), 3, 60
            )
        assert state.request_count == 3
        assert state.window_start == NOW

    @pytest.mark.asyncio
    async def test_counting_continues_past_max(self, backend):
        for _ in range(5):
            state = await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert state.request_count == 5

    @pytest.mark.asyncio
    async def test_window_resets_at_exact_boundary(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        later = NOW + timedelta(seconds=60)
        state = await backend.increment_and_check("user:1", "/api", "api", later, 3, 60)
        assert state.request_count == 1
        assert state.window_start == later

    @pytest.mark.asyncio
    async def test_max_requests_snapshot_kept_until_reset(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        state = await backend.increment_and_check("user:1", "/api", "api", NOW, 10, 60)
        assert state.max_requests == 3

        later = NOW + timedelta(seconds=61)
        state = await backend.increment_and_check("user:1", "/api", "api", later, 10, 60)
        assert state.max_requests == 10

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        other_class = await backend.increment_and_check(
            "user:1", "/api", "payment", NOW, 3, 3600
        )
        other_user = await backend.increment_and_check("user:2", "/api", "api", NOW, 3, 60)
        assert other_class.request_count == 1
        assert other_user.request_count == 1


# =============================================================================
# Tests: Concurrency
# =============================================================================


class TestConcurrency:
    """Test that concurrent increments never lose updates."""

    @pytest.mark.asyncio
    async def test_concurrent_coroutines(self, backend):
        states = await asyncio.gather(
            *[
                backend.increment_and_check("user:1", "/api", "api", NOW, 10, 60)
                for _ in range(20)
            ]
        )
        assert sorted(state.request_count for state in states) == list(range(1, 21))

    def test_concurrent_threads(self, backend):
        counts = []
        counts_lock = threading.Lock()

        def worker():
            for _ in range(25):
                state = asyncio.run(
                    backend.increment_and_check("user:1", "/api", "api", NOW, 50, 60)
                )
                with counts_lock:
                    counts.append(state.request_count)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(counts) == list(range(1, 101))
        assert sum(1 for count in counts if count <= 50) == 50


# =============================================================================
# Tests: Read, Reset, Purge, Eviction
# =============================================================================


class TestMaintenance:
    """Test get, reset, purge and bounded size."""

    @pytest.mark.asyncio
    async def test_get_missing(self, backend):
        assert await backend.get("user:1", "/api", "api") is None

    @pytest.mark.asyncio
    async def test_get_existing(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        record = await backend.get("user:1", "/api", "api")
        assert record.request_count == 1
        assert record.last_request_at == NOW

    @pytest.mark.asyncio
    async def test_reset(self, backend):
        await backend.increment_and_check("user:1", "/api", "api", NOW, 3, 60)
        assert await backend.reset("user:1", "/api", "api") is True
        assert await backend.reset("user:1", "/api", "api") is False
        assert await backend.get("user:1", "/api", "api") is None

    @pytest.mark.asyncio
    async def test_purge_removes_only_old_windows(self, backend):
        await backend.increment_and_check("user:old", "/api", "api", NOW, 3, 60)
        recent = NOW + timedelta(hours=2)
        await backend.increment_and_check("user:new", "/api", "api", recent, 3, 60)

        removed = await backend.purge(NOW + timedelta(hours=1))

        assert removed == 1
        assert await backend.get("user:old", "/api", "api") is None
        assert await backend.get("user:new", "/api", "api") is not None

    @pytest.mark.asyncio
    async def test_eviction_bounds_size(self):
        backend = InMemoryBackend(max_entries=10)
        for i in range(11):
            await backend.increment_and_check(
                f"addr:10.0.0.{i}", "/api", "api", NOW + timedelta(seconds=i), 3, 60
            )
        assert len(backend._records) == 10
        assert await backend.get("addr:10.0.0.0", "/api", "api") is None
        assert await backend.get("addr:10.0.0.10", "/api", "api") is not None
