"""Abstract base class for rate limit stores.

Defines the interface that all rate limit backends must implement.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from tierlimit.result import CounterState, RateLimitRecord


class RateLimitBackend(ABC):
    """Abstract interface for rate limit stores.

    The store exclusively owns counter records. increment_and_check() must be
    a single atomic read-modify-write executed by the store itself; callers
    never read a counter and write it back.

    Any connectivity, timeout or driver failure must surface as
    StoreUnavailable so the engine can apply its fail-open policy.
    """

    async def initialize(self) -> None:
        """Open connections or create schema. Safe to call repeatedly."""
        pass

    @abstractmethod
    async def increment_and_check(
        self,
        identifier: str,
        endpoint: str,
        limit_class: str,
        now: datetime,
        max_requests: int,
        window_seconds: float,
    ) -> CounterState:
        """Atomically count one request against the key.

        - No record: create with request_count=1, window_start=now
        - now - window_start < window: increment request_count
        - now - window_start >= window: reset to request_count=1,
          window_start=now, and snapshot max_requests again

        Args:
            identifier: Resolved caller identifier
            endpoint: Protected endpoint
            limit_class: Limit class name
            now: Current instant (timezone-aware)
            max_requests: Quota to snapshot when a window opens
            window_seconds: Window duration

        Returns:
            Counter state after the increment

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def get(
        self, identifier: str, endpoint: str, limit_class: str
    ) -> Optional[RateLimitRecord]:
        """Read a record without modifying it."""
        pass

    @abstractmethod
    async def reset(self, identifier: str, endpoint: str, limit_class: str) -> bool:
        """Delete one record (admin override).

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    async def purge(self, older_than: datetime) -> int:
        """Delete records whose window opened before ``older_than``.

        Returns:
            Number of records removed
        """
        pass

    async def close(self) -> None:
        """Clean up resources (connection pools, etc.)."""
        pass
