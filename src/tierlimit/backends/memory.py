"""In-memory fixed window store for development.

Keeps counters in a process-local dict guarded by threading.Lock. Counters
are not shared between processes, so production deployments use the Redis
or database store.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from tierlimit.backends.base import RateLimitBackend
from tierlimit.result import CounterState, RateLimitRecord

logger = logging.getLogger(__name__)

Key = Tuple[str, str, str]


class InMemoryBackend(RateLimitBackend):
    """In-memory fixed window store for development.

    - Atomic increment under a threading.Lock
    - Bounded size: oldest entries evicted past max_entries
    - No persistence - resets on restart

    Example:
        >>> backend = InMemoryBackend()
        >>> state = await backend.increment_and_check(
        ...     "user:42", "/api/checkout", "payment", now, 3, 3600
        ... )
    """

    # Maximum entries to prevent unbounded memory growth from spoofed identifiers
    DEFAULT_MAX_ENTRIES = 100_000

    def __init__(self, max_entries: int = 0):
        """Initialize in-memory backend.

        Args:
            max_entries: Maximum number of tracked keys (default: 100,000).
                         When exceeded, the least recently used 10% are evicted.
                         Set to 0 to use DEFAULT_MAX_ENTRIES.
        """
        self._records: Dict[Key, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries if max_entries > 0 else self.DEFAULT_MAX_ENTRIES

    def _evict_if_needed(self) -> None:
        """Evict least recently used entries if max_entries exceeded.

        SECURITY: Prevents unbounded memory growth from spoofed identifiers
        (e.g., forged X-Forwarded-For headers creating unique keys).
        Must be called while holding self._lock.
        """
        if len(self._records) <= self._max_entries:
            return

        evict_count = max(1, len(self._records) // 10)
        sorted_keys = sorted(
            self._records.keys(),
            key=lambda k: self._records[k].last_request_at,
        )
        for key in sorted_keys[:evict_count]:
            del self._records[key]

        logger.warning(
            "Rate limit memory eviction: removed %d oldest entries "
            "(max_entries=%d, current=%d)",
            evict_count,
            self._max_entries,
            len(self._records),
        )

    async def increment_and_check(
        self,
        identifier: str,
        endpoint: str,
        limit_class: str,
        now: datetime,
        max_requests: int,
        window_seconds: float,
    ) -> CounterState:
        key = (identifier, endpoint, limit_class)
        window = timedelta(seconds=window_seconds)

        with self._lock:
            record = self._records.get(key)

            if record is None or now - record.window_start >= window:
                record = RateLimitRecord(
                    identifier=identifier,
                    endpoint=endpoint,
                    limit_class=limit_class,
                    request_count=1,
                    max_requests=max_requests,
                    window_start=now,
                    last_request_at=now,
                )
            else:
                record = RateLimitRecord(
                    identifier=identifier,
                    endpoint=endpoint,
                    limit_class=limit_class,
                    request_count=record.request_count + 1,
                    max_requests=record.max_requests,
                    window_start=record.window_start,
                    last_request_at=now,
                )

            self._records[key] = record
            self._evict_if_needed()

        return CounterState(
            request_count=record.request_count,
            max_requests=record.max_requests,
            window_start=record.window_start,
        )

    async def get(
        self, identifier: str, endpoint: str, limit_class: str
    ) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._records.get((identifier, endpoint, limit_class))

    async def reset(self, identifier: str, endpoint: str, limit_class: str) -> bool:
        with self._lock:
            return self._records.pop((identifier, endpoint, limit_class), None) is not None

    async def purge(self, older_than: datetime) -> int:
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if record.window_start < older_than
            ]
            for key in stale:
                del self._records[key]

        if stale:
            logger.info("Purged %d stale rate limit records", len(stale))

        return len(stale)
