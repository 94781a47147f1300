"""Abstract event backend interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from tierlimit.events.record import RateLimitEvent


class EventBackend(ABC):
    """Abstract interface for rate limit event storage.

    All backends must implement store() for appending events.
    Query methods are optional (raise NotImplementedError if not supported).
    """

    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def store(self, event: RateLimitEvent) -> None:
        """Append an event.

        Args:
            event: RateLimitEvent to store
        """
        pass

    async def query(
        self,
        identifier: Optional[str] = None,
        endpoint: Optional[str] = None,
        limit_class: Optional[str] = None,
        action: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[RateLimitEvent]:
        """Query events, newest first (optional).

        Raises:
            NotImplementedError: If query not supported
        """
        raise NotImplementedError("Query not supported by this backend")

    async def blocked_summary(
        self, since: Optional[datetime] = None, limit: int = 10
    ) -> List[Tuple[str, int]]:
        """Identifiers with the most blocked decisions (optional).

        Raises:
            NotImplementedError: If aggregation not supported
        """
        raise NotImplementedError("Summary not supported by this backend")

    async def close(self) -> None:
        """Clean up resources."""
        pass
