"""Rate limit engine.

Turns (identifier, endpoint, limit_class) into an allow/deny Decision:
registry lookup, one atomic store increment, decision, event.

Fail-open policy: when the store is unreachable or slow, the request is
allowed and the degradation is logged at ERROR on the ``tierlimit.degraded``
logger, apart from the DEBUG/WARNING lines of normal decisions.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from tierlimit.backends.base import RateLimitBackend
from tierlimit.config import RateLimitConfig
from tierlimit.events.log import EventLog
from tierlimit.events.record import RateLimitEvent
from tierlimit.exceptions import RateLimitExceededError, StoreUnavailable
from tierlimit.registry import ClassName, LimitClassConfig, LimitClassRegistry
from tierlimit.result import Decision

logger = logging.getLogger(__name__)
degraded_logger = logging.getLogger("tierlimit.degraded")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitEngine:
    """Admission decisions against a shared counter store.

    The engine holds no counter state and takes no locks: the store's atomic
    increment is the only point of serialization for a key.

    Example:
        >>> engine = RateLimitEngine(LimitClassRegistry.default(), InMemoryBackend())
        >>> decision = await engine.check("user:42", "/api/checkout", "payment")
        >>> decision.allowed, decision.remaining
        (True, 2)
    """

    def __init__(
        self,
        registry: LimitClassRegistry,
        store: RateLimitBackend,
        event_log: Optional[EventLog] = None,
        enabled: bool = True,
        store_timeout_seconds: float = 0.25,
        fail_open_remaining: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize engine.

        Args:
            registry: Limit class registry
            store: Counter store
            event_log: Where admission events go (None disables events)
            enabled: When False, every check is allowed without touching the store
            store_timeout_seconds: Bound on one store round trip
            fail_open_remaining: Remaining reported while degraded
                (default: the class's max_requests)
            clock: Returns the current timezone-aware instant
        """
        self.registry = registry
        self.store = store
        self.event_log = event_log
        self.enabled = enabled
        self._store_timeout = store_timeout_seconds
        self._fail_open_remaining = fail_open_remaining
        self._clock = clock or utc_now
        self.degraded_count = 0

    async def initialize(self) -> None:
        await self.store.initialize()
        if self.event_log is not None:
            await self.event_log.initialize()

    def now(self) -> datetime:
        return self._clock()

    async def check(
        self, identifier: str, endpoint: str, limit_class: ClassName
    ) -> Decision:
        """Count one request and decide whether it may proceed.

        Raises:
            UnknownLimitClass: If limit_class is not registered
        """
        config = self.registry.get_config(limit_class)
        now = self.now()

        if not self.enabled:
            return self._unlimited(identifier, endpoint, config, now)

        try:
            state = await asyncio.wait_for(
                self.store.increment_and_check(
                    identifier,
                    endpoint,
                    config.name,
                    now,
                    config.max_requests,
                    config.window_seconds,
                ),
                timeout=self._store_timeout,
            )
        except asyncio.TimeoutError:
            return self._fail_open(
                identifier,
                endpoint,
                config,
                now,
                f"store timed out after {self._store_timeout}s",
            )
        except StoreUnavailable as e:
            return self._fail_open(identifier, endpoint, config, now, str(e))

        allowed = state.request_count <= state.max_requests
        decision = Decision(
            allowed=allowed,
            limit=state.max_requests,
            remaining=max(0, state.max_requests - state.request_count),
            reset_at=state.window_start + timedelta(seconds=config.window_seconds),
            identifier=identifier,
            endpoint=endpoint,
            limit_class=config.name,
        )

        if allowed:
            logger.debug(
                "Rate limit allowed: identifier=%s, endpoint=%s, class=%s, count=%d/%d",
                identifier,
                endpoint,
                config.name,
                state.request_count,
                state.max_requests,
            )
        else:
            logger.warning(
                "Rate limit exceeded: identifier=%s, endpoint=%s, class=%s, count=%d/%d",
                identifier,
                endpoint,
                config.name,
                state.request_count,
                state.max_requests,
            )

        if self.event_log is not None:
            await self.event_log.record(
                RateLimitEvent.create(
                    identifier=identifier,
                    endpoint=endpoint,
                    limit_class=config.name,
                    allowed=allowed,
                    request_count=state.request_count,
                    max_requests=state.max_requests,
                    created_at=now,
                )
            )

        return decision

    async def enforce(
        self, identifier: str, endpoint: str, limit_class: ClassName
    ) -> Decision:
        """check() for callers outside the HTTP gate.

        Raises:
            RateLimitExceededError: If the request is blocked
            UnknownLimitClass: If limit_class is not registered
        """
        decision = await self.check(identifier, endpoint, limit_class)
        if not decision.allowed:
            raise RateLimitExceededError(decision)
        return decision

    async def status(
        self, identifier: str, endpoint: str, limit_class: ClassName
    ) -> Decision:
        """Current quota for a key without counting a request."""
        config = self.registry.get_config(limit_class)
        now = self.now()

        if not self.enabled:
            return self._unlimited(identifier, endpoint, config, now)

        try:
            record = await asyncio.wait_for(
                self.store.get(identifier, endpoint, config.name),
                timeout=self._store_timeout,
            )
        except asyncio.TimeoutError:
            return self._fail_open(
                identifier,
                endpoint,
                config,
                now,
                f"store timed out after {self._store_timeout}s",
            )
        except StoreUnavailable as e:
            return self._fail_open(identifier, endpoint, config, now, str(e))

        window = timedelta(seconds=config.window_seconds)
        if record is None or now - record.window_start >= window:
            return self._unlimited(identifier, endpoint, config, now)

        remaining = max(0, record.max_requests - record.request_count)
        return Decision(
            allowed=remaining > 0,
            limit=record.max_requests,
            remaining=remaining,
            reset_at=record.window_start + window,
            identifier=identifier,
            endpoint=endpoint,
            limit_class=config.name,
        )

    async def reset(self, identifier: str, endpoint: str, limit_class: ClassName) -> bool:
        """Clear one counter (admin override).

        Raises:
            UnknownLimitClass: If limit_class is not registered
            StoreUnavailable: If the store cannot be reached
        """
        config = self.registry.get_config(limit_class)
        removed = await self.store.reset(identifier, endpoint, config.name)
        logger.info(
            "Rate limit reset: identifier=%s, endpoint=%s, class=%s, removed=%s",
            identifier,
            endpoint,
            config.name,
            removed,
        )
        return removed

    async def purge_stale(self) -> int:
        """Delete records older than the longest configured window."""
        cutoff = self.now() - timedelta(seconds=self.registry.longest_window())
        return await self.store.purge(cutoff)

    async def close(self) -> None:
        await self.store.close()
        if self.event_log is not None:
            await self.event_log.close()

    def _unlimited(
        self,
        identifier: str,
        endpoint: str,
        config: LimitClassConfig,
        now: datetime,
    ) -> Decision:
        return Decision(
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests,
            reset_at=now + timedelta(seconds=config.window_seconds),
            identifier=identifier,
            endpoint=endpoint,
            limit_class=config.name,
        )

    def _fail_open(
        self,
        identifier: str,
        endpoint: str,
        config: LimitClassConfig,
        now: datetime,
        reason: str,
    ) -> Decision:
        self.degraded_count += 1
        degraded_logger.error(
            "Rate limit store unavailable, failing open: identifier=%s, "
            "endpoint=%s, class=%s, reason=%s",
            identifier,
            endpoint,
            config.name,
            reason,
        )

        remaining = self._fail_open_remaining
        if remaining is None:
            remaining = config.max_requests

        return Decision(
            allowed=True,
            limit=config.max_requests,
            remaining=remaining,
            reset_at=now + timedelta(seconds=config.window_seconds),
            identifier=identifier,
            endpoint=endpoint,
            limit_class=config.name,
            degraded=True,
        )


def build_store(config: RateLimitConfig) -> RateLimitBackend:
    """Create the store selected by config.backend."""
    if config.backend == "redis":
        from tierlimit.backends.redis import RedisBackend

        return RedisBackend(
            redis_url=config.redis_url,
            key_prefix=config.redis_key_prefix,
            pool_size=config.redis_connection_pool_size,
            timeout_seconds=config.redis_timeout_seconds,
        )

    if config.backend == "database":
        from tierlimit.backends.database import DatabaseBackend

        return DatabaseBackend(database_url=config.database_url)

    from tierlimit.backends.memory import InMemoryBackend

    return InMemoryBackend()


def build_event_log(
    config: RateLimitConfig, shared_engine: Optional[Any] = None
) -> Optional[EventLog]:
    """Create the event log selected by config.events."""
    if config.events is None:
        return None

    if callable(config.events) and not isinstance(config.events, str):
        from tierlimit.events.backends.custom import CustomEventBackend

        backend = CustomEventBackend(store_func=config.events)
    elif config.events == "database":
        from tierlimit.events.backends.database import DatabaseEventBackend

        backend = DatabaseEventBackend(
            engine=shared_engine, database_url=config.database_url
        )
    else:
        from tierlimit.events.backends.logging import LoggingEventBackend

        backend = LoggingEventBackend()

    return EventLog(backend, timeout_seconds=config.event_timeout_seconds)


def build_engine(
    config: RateLimitConfig, clock: Optional[Clock] = None
) -> RateLimitEngine:
    """Wire registry, store and event log from a RateLimitConfig.

    When both the store and the event log live in the database, the event
    log borrows the store's SQLAlchemy engine; the store disposes it.
    """
    store = build_store(config)
    shared_engine = getattr(store, "engine", None)

    return RateLimitEngine(
        registry=config.build_registry(),
        store=store,
        event_log=build_event_log(config, shared_engine),
        enabled=config.enabled,
        store_timeout_seconds=config.store_timeout_seconds,
        fail_open_remaining=config.fail_open_remaining,
        clock=clock,
    )
