"""Structured JSON logging backend.

Default event backend that writes events as JSON to Python's logging system.
"""

import logging

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.record import RateLimitEvent


class LoggingEventBackend(EventBackend):
    """Structured JSON logging backend.

    Writes events as JSON to Python's logging system.
    Default backend - requires no additional infrastructure.
    """

    def __init__(
        self,
        logger_name: str = "tierlimit.events",
        log_level: str = "INFO",
    ):
        """Initialize logging backend.

        Args:
            logger_name: Logger name (default: "tierlimit.events")
            log_level: Log level for allowed decisions (default: "INFO")
        """
        self._logger = logging.getLogger(logger_name)
        self._level = getattr(logging, log_level.upper(), logging.INFO)

    async def store(self, event: RateLimitEvent) -> None:
        """Store event by logging as JSON.

        Logs at WARNING for blocked decisions, configured level otherwise.
        """
        if event.blocked:
            self._logger.warning(event.to_json())
        else:
            self._logger.log(self._level, event.to_json())
