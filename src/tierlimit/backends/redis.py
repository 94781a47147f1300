"""Redis-backed fixed window store for production.

Every increment runs as one Lua script, so Redis serializes all increments
to a key and no two processes can read the same stale count.
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

import redis.asyncio as aioredis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError

from tierlimit.backends.base import RateLimitBackend
from tierlimit.exceptions import StoreUnavailable
from tierlimit.result import CounterState, RateLimitRecord, from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

# Keys outlive their window slightly so a late request still sees the
# expired window and resets it in place.
EXPIRY_GRACE_MS = 1000


def _escape(part: str) -> str:
    """Escape the key separator so distinct parts never collide."""
    return part.replace("\\", "\\\\").replace("|", "\\|")


class RedisBackend(RateLimitBackend):
    """Redis-backed fixed window store for production.

    One hash per (identifier, endpoint, limit_class) at
    ``{prefix}{limit_class}|{endpoint}|{identifier}``, with "|" and "\\" escaped
    inside each part. Fields:
    - count, max, window_start, last (epoch ms)
    - identifier, endpoint, limit_class (for inspection)

    The Lua script creates, increments or resets the hash and refreshes its
    TTL in one step. The TTL doubles as the stale record reaper.

    Example:
        >>> backend = RedisBackend(redis_url="redis://localhost:6379/0")
        >>> await backend.initialize()
        >>> state = await backend.increment_and_check(
        ...     "user:42", "/api/checkout", "payment", now, 3, 3600
        ... )
    """

    _INCREMENT_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local ttl_ms = tonumber(ARGV[4])

    local state = redis.call('HMGET', key, 'count', 'max', 'window_start')
    local count = tonumber(state[1])
    local max = tonumber(state[2])
    local window_start = tonumber(state[3])

    if count == nil or window_start == nil or (now - window_start) >= window_ms then
        -- New key or expired window: open a fresh window
        count = 1
        max = tonumber(ARGV[3])
        window_start = now
        redis.call('HSET', key,
            'count', 1,
            'max', ARGV[3],
            'window_start', ARGV[1],
            'last', ARGV[1],
            'identifier', ARGV[5],
            'endpoint', ARGV[6],
            'limit_class', ARGV[7])
    else
        count = redis.call('HINCRBY', key, 'count', 1)
        redis.call('HSET', key, 'last', ARGV[1])
    end

    redis.call('PEXPIRE', key, ttl_ms)
    return {count, max, window_start}
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: str = "tierlimit:rl:",
        pool_size: int = 50,
        timeout_seconds: float = 0.25,
        client: Optional[aioredis.Redis] = None,
    ):
        """Initialize Redis backend.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            key_prefix: Prefix for all rate limit keys (default: "tierlimit:rl:")
            pool_size: Connection pool size (default: 50)
            timeout_seconds: Socket timeout (default: 0.25)
            client: Pre-built client (must use decode_responses=True);
                takes precedence over redis_url
        """
        if client is None and not redis_url:
            raise ValueError("redis_url or client required for RedisBackend")

        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._pool_size = pool_size
        self._timeout = timeout_seconds

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[aioredis.Redis] = client
        self._owns_client = client is None
        self._script = None

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Remove credentials from Redis URL for safe logging."""
        try:
            parsed = urlparse(url)
            if parsed.username or parsed.password:
                safe_host = parsed.hostname or "localhost"
                safe_port = f":{parsed.port}" if parsed.port else ""
                return f"{parsed.scheme}://{safe_host}{safe_port}{parsed.path}"
            return url
        except ValueError:
            return "redis://***"

    def _key(self, identifier: str, endpoint: str, limit_class: str) -> str:
        parts = (_escape(limit_class), _escape(endpoint), _escape(identifier))
        return self._key_prefix + "|".join(parts)

    async def initialize(self) -> None:
        """Create the connection pool and register the Lua script.

        A failed ping is logged but not raised: the client reconnects on
        later calls, and each failing call raises StoreUnavailable.
        """
        if self._script is not None:
            return

        if self._client is None:
            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=self._pool_size,
                decode_responses=True,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
            )
            self._client = aioredis.Redis(connection_pool=self._pool)

        self._script = self._client.register_script(self._INCREMENT_SCRIPT)

        try:
            await self._client.ping()
            if self._redis_url:
                # SECURITY: Sanitize URL before logging to avoid credential leaks
                logger.info(
                    "RedisBackend initialized: %s", self._sanitize_url(self._redis_url)
                )
        except (RedisError, OSError) as e:
            logger.error("Redis unavailable at startup: %s", e)

    async def increment_and_check(
        self,
        identifier: str,
        endpoint: str,
        limit_class: str,
        now: datetime,
        max_requests: int,
        window_seconds: float,
    ) -> CounterState:
        if self._script is None:
            await self.initialize()

        window_ms = int(window_seconds * 1000)
        try:
            result = await self._script(
                keys=[self._key(identifier, endpoint, limit_class)],
                args=[
                    to_epoch_ms(now),
                    window_ms,
                    max_requests,
                    window_ms + EXPIRY_GRACE_MS,
                    identifier,
                    endpoint,
                    limit_class,
                ],
            )
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis increment failed: {e}", cause=e) from e

        return CounterState(
            request_count=int(result[0]),
            max_requests=int(result[1]),
            window_start=from_epoch_ms(result[2]),
        )

    async def get(
        self, identifier: str, endpoint: str, limit_class: str
    ) -> Optional[RateLimitRecord]:
        if self._script is None:
            await self.initialize()

        try:
            data = await self._client.hgetall(
                self._key(identifier, endpoint, limit_class)
            )
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis read failed: {e}", cause=e) from e

        if not data or "count" not in data:
            return None

        return RateLimitRecord(
            identifier=identifier,
            endpoint=endpoint,
            limit_class=limit_class,
            request_count=int(data["count"]),
            max_requests=int(data["max"]),
            window_start=from_epoch_ms(data["window_start"]),
            last_request_at=from_epoch_ms(data.get("last", data["window_start"])),
        )

    async def reset(self, identifier: str, endpoint: str, limit_class: str) -> bool:
        if self._script is None:
            await self.initialize()

        try:
            removed = await self._client.delete(
                self._key(identifier, endpoint, limit_class)
            )
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis reset failed: {e}", cause=e) from e

        return bool(removed)

    async def purge(self, older_than: datetime) -> int:
        """Nothing to purge: keys expire via PEXPIRE."""
        return 0

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
            self._client = None
            self._pool = None
        self._script = None
        logger.info("RedisBackend closed")
