"""Best-effort event log.

Wraps an EventBackend so that a failed or slow write can never block or
fail an admission decision that has already been made.
"""

import asyncio
import logging

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.record import RateLimitEvent
from tierlimit.exceptions import EventLogWriteFailure

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only admission event log.

    Example:
        >>> log = EventLog(LoggingEventBackend(), timeout_seconds=1.0)
        >>> await log.record(event)  # never raises
    """

    def __init__(self, backend: EventBackend, timeout_seconds: float = 1.0):
        self.backend = backend
        self._timeout = timeout_seconds
        self.failures = 0

    async def initialize(self) -> None:
        try:
            await self.backend.initialize()
        except Exception as e:
            # Writes retry initialization; each failure is reported there.
            logger.warning("Event log backend failed to initialize: %s", e)

    async def record(self, event: RateLimitEvent) -> None:
        """Append an event. Failures are logged and swallowed."""
        try:
            await self._write(event)
        except EventLogWriteFailure as e:
            self.failures += 1
            logger.warning("%s", e)

    async def _write(self, event: RateLimitEvent) -> None:
        try:
            await asyncio.wait_for(self.backend.store(event), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise EventLogWriteFailure(
                f"Timed out writing rate limit event {event.id} "
                f"after {self._timeout}s"
            ) from e
        except Exception as e:
            raise EventLogWriteFailure(
                f"Failed to write rate limit event {event.id}: {e}"
            ) from e

    async def close(self) -> None:
        await self.backend.close()
