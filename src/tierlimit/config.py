"""Rate limiting configuration.

Provides RateLimitConfig dataclass for configuring limit classes, endpoint
classification, the backing store, the event log and response headers.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Literal, Optional, Union

from tierlimit.registry import DEFAULT_LIMIT_CLASSES, LimitClassRegistry


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting.

    Attributes:
        enabled: Master switch; when False every check is allowed without
            touching the store (test/offline environments)
        limit_classes: Limit class name -> {"max_requests", "window_seconds"}
        route_classes: Path pattern -> limit class, or None for no rate limit
        default_class: Limit class for paths matching no pattern (default: "api")
        backend: Store type - "memory", "redis" or "database" (default: "memory")
        redis_url: Redis connection URL (required if backend="redis")
        redis_key_prefix: Prefix for Redis keys (default: "tierlimit:rl:")
        redis_connection_pool_size: Redis connection pool size (default: 50)
        redis_timeout_seconds: Redis socket timeout (default: 0.25)
        database_url: SQLAlchemy async URL (required for "database" store/events)
        store_timeout_seconds: Bound on one store round trip (default: 0.25)
        fail_open_remaining: Remaining reported while the store is down
            (default: the class's max_requests)
        events: Event log - "logging", "database", a callable, or None
        event_timeout_seconds: Bound on one event write (default: 1.0)
        include_headers: Whether to add X-RateLimit-* headers (default: True)
        trust_proxy_headers: Read X-Forwarded-For for the caller address
        environment: "production" fails open on misconfigured limit classes;
            anything else fails the request loudly
        reaper_interval_seconds: Interval between stale record purges (see build_reaper)

    Example:
        >>> config = RateLimitConfig(
        ...     backend="redis",
        ...     redis_url="redis://localhost:6379/0",
        ...     route_classes={
        ...         "/api/ai/*": "ai",
        ...         "/api/checkout*": "payment",
        ...         "/health": None,  # No rate limit
        ...     },
        ... )
    """

    enabled: bool = True

    # Limit classes and endpoint classification
    limit_classes: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {
            name: dict(values) for name, values in DEFAULT_LIMIT_CLASSES.items()
        }
    )
    route_classes: Dict[str, Optional[str]] = field(default_factory=dict)
    default_class: str = "api"

    # Store configuration
    backend: Literal["memory", "redis", "database"] = "memory"
    redis_url: Optional[str] = None
    redis_key_prefix: str = "tierlimit:rl:"
    redis_connection_pool_size: int = 50
    redis_timeout_seconds: float = 0.25
    database_url: Optional[str] = None
    store_timeout_seconds: float = 0.25

    # Failure behavior
    fail_open_remaining: Optional[int] = None

    # Event log
    events: Union[str, Callable, None] = "logging"
    event_timeout_seconds: float = 1.0

    # Response behavior
    include_headers: bool = True

    # SECURITY: Only trust X-Forwarded-For when deployed behind a trusted
    # reverse proxy that overwrites it.
    trust_proxy_headers: bool = True

    environment: str = "development"
    reaper_interval_seconds: float = 300.0

    def __post_init__(self):
        """Validate configuration."""
        if self.backend not in ("memory", "redis", "database"):
            raise ValueError(f"Invalid backend: {self.backend}")
        if self.backend == "redis" and not self.redis_url:
            raise ValueError("redis_url required when backend='redis'")
        if self.backend == "database" and not self.database_url:
            raise ValueError("database_url required when backend='database'")
        if self.events == "database" and not self.database_url:
            raise ValueError("database_url required when events='database'")
        if isinstance(self.events, str) and self.events not in ("logging", "database"):
            raise ValueError(f"Invalid events backend: {self.events}")
        if self.store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        if self.redis_timeout_seconds <= 0:
            raise ValueError("redis_timeout_seconds must be positive")
        if self.event_timeout_seconds <= 0:
            raise ValueError("event_timeout_seconds must be positive")
        if self.reaper_interval_seconds <= 0:
            raise ValueError("reaper_interval_seconds must be positive")
        if self.fail_open_remaining is not None and self.fail_open_remaining < 0:
            raise ValueError("fail_open_remaining cannot be negative")

        # Unknown classes are a deployment bug: fail at startup.
        registry = self.build_registry()
        registry.validate([self.default_class])
        registry.validate(self.route_classes.values())

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def build_registry(self) -> LimitClassRegistry:
        return LimitClassRegistry.from_mapping(self.limit_classes)
