"""Rate limit event log package.

Append-only record of every admission decision with pluggable backends.
"""

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.backends.custom import CustomEventBackend
from tierlimit.events.backends.database import DatabaseEventBackend
from tierlimit.events.backends.logging import LoggingEventBackend
from tierlimit.events.log import EventLog
from tierlimit.events.record import ALLOWED, BLOCKED, RateLimitEvent

__all__ = [
    "ALLOWED",
    "BLOCKED",
    "RateLimitEvent",
    "EventBackend",
    "LoggingEventBackend",
    "DatabaseEventBackend",
    "CustomEventBackend",
    "EventLog",
]
