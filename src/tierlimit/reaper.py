"""Background purge of stale counter records.

A record whose window opened longer ago than the longest configured window
carries no further meaning. The Redis store expires keys on its own; the
database and in-memory stores rely on this reaper.
"""

import asyncio
import logging
from typing import Optional

from tierlimit.config import RateLimitConfig
from tierlimit.engine import RateLimitEngine
from tierlimit.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


class RateLimitReaper:
    """Periodically calls engine.purge_stale().

    Example:
        >>> reaper = RateLimitReaper(engine, interval_seconds=300)
        >>> await reaper.start()
        >>> ...
        >>> await reaper.stop()
    """

    def __init__(self, engine: RateLimitEngine, interval_seconds: float = 300.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._engine = engine
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start background purge task."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> int:
        """Run one purge pass.

        Returns:
            Number of records removed (0 if the store was unavailable)
        """
        try:
            removed = await self._engine.purge_stale()
        except StoreUnavailable as e:
            logger.warning("Rate limit purge skipped, store unavailable: %s", e)
            return 0

        if removed:
            logger.debug("Rate limit reaper removed %d records", removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Rate limit purge failed; retrying next interval")


def build_reaper(
    engine: RateLimitEngine, config: RateLimitConfig
) -> Optional[RateLimitReaper]:
    """Create the reaper a configuration needs.

    Returns None for the Redis store, whose keys expire on their own.

    Example:
        >>> @asynccontextmanager
        >>> async def lifespan(app):
        ...     reaper = build_reaper(engine, config)
        ...     if reaper:
        ...         await reaper.start()
        ...     yield
        ...     if reaper:
        ...         await reaper.stop()
    """
    if config.backend == "redis":
        return None
    return RateLimitReaper(engine, interval_seconds=config.reaper_interval_seconds)
