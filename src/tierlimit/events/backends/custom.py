"""Custom backend wrapper for user-provided callable."""

import asyncio
from typing import Awaitable, Callable, Union

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.record import RateLimitEvent

StoreCallable = Union[
    Callable[[RateLimitEvent], None],
    Callable[[RateLimitEvent], Awaitable[None]],
]


class CustomEventBackend(EventBackend):
    """Wraps a user-provided function as an event backend.

    Supports both sync and async callables.
    """

    def __init__(self, store_func: StoreCallable):
        self._store_func = store_func

    async def store(self, event: RateLimitEvent) -> None:
        """Store event using custom function."""
        if asyncio.iscoroutinefunction(self._store_func):
            await self._store_func(event)
        else:
            self._store_func(event)
