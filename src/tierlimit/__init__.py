"""tierlimit - Persistent multi-tier rate limiting.

Fixed-window admission control for multi-tenant APIs, backed by a shared
store (Redis or SQL) so limits hold across stateless server processes.

Usage:
    >>> from fastapi import FastAPI
    >>> from tierlimit import RateLimitConfig, RateLimitMiddleware
    >>>
    >>> config = RateLimitConfig(
    ...     backend="redis",
    ...     redis_url="redis://localhost:6379/0",
    ...     route_classes={
    ...         "/api/ai/*": "ai",
    ...         "/api/checkout*": "payment",
    ...         "/api/admin/*": "admin",
    ...         "/health": None,
    ...     },
    ... )
    >>> app = FastAPI()
    >>> app.add_middleware(RateLimitMiddleware, config=config)
"""

from tierlimit.backends.base import RateLimitBackend
from tierlimit.backends.memory import InMemoryBackend
from tierlimit.config import RateLimitConfig
from tierlimit.decorators import rate_limit
from tierlimit.engine import RateLimitEngine, build_engine
from tierlimit.events import EventLog, RateLimitEvent
from tierlimit.exceptions import (
    EventLogWriteFailure,
    RateLimitError,
    RateLimitExceededError,
    StoreUnavailable,
    UnknownLimitClass,
)
from tierlimit.identity import IdentifierResolver, RequestMetadata
from tierlimit.middleware import RateLimitMiddleware
from tierlimit.reaper import RateLimitReaper, build_reaper
from tierlimit.registry import LimitClass, LimitClassConfig, LimitClassRegistry
from tierlimit.result import CounterState, Decision, RateLimitRecord
from tierlimit.router import create_rate_limit_router
from tierlimit.routing import EndpointClassifier

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "RateLimitConfig",
    "LimitClass",
    "LimitClassConfig",
    "LimitClassRegistry",
    "EndpointClassifier",
    # Engine
    "RateLimitEngine",
    "build_engine",
    "Decision",
    "CounterState",
    "RateLimitRecord",
    # Stores
    "RateLimitBackend",
    "InMemoryBackend",
    # Identity
    "IdentifierResolver",
    "RequestMetadata",
    # Gate
    "RateLimitMiddleware",
    "rate_limit",
    "create_rate_limit_router",
    # Events
    "EventLog",
    "RateLimitEvent",
    "RateLimitReaper",
    "build_reaper",
    # Errors
    "RateLimitError",
    "UnknownLimitClass",
    "StoreUnavailable",
    "EventLogWriteFailure",
    "RateLimitExceededError",
]
