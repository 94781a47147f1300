"""Rate limit event backends."""

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.backends.custom import CustomEventBackend
from tierlimit.events.backends.database import DatabaseEventBackend
from tierlimit.events.backends.logging import LoggingEventBackend

__all__ = [
    "EventBackend",
    "LoggingEventBackend",
    "DatabaseEventBackend",
    "CustomEventBackend",
]
