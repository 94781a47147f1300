"""SQL-backed fixed window store.

Runs every increment as a single INSERT ... ON CONFLICT DO UPDATE ...
RETURNING statement. The database evaluates the window check and the
increment against the locked row, so concurrent writers in any number of
processes cannot lose updates. Supports PostgreSQL and SQLite.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import BigInteger, case, delete, literal, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine

from tierlimit.backends.base import RateLimitBackend
from tierlimit.exceptions import StoreUnavailable
from tierlimit.result import CounterState, RateLimitRecord, from_epoch_ms, to_epoch_ms
from tierlimit.tables import create_engine, create_tables, rate_limit_records

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DatabaseBackend(RateLimitBackend):
    """SQL-backed fixed window store.

    Example:
        >>> backend = DatabaseBackend("postgresql+asyncpg://app@db/app")
        >>> await backend.initialize()
        >>> state = await backend.increment_and_check(
        ...     "user:42", "/api/checkout", "payment", now, 3, 3600
        ... )
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
        create_schema: bool = True,
    ):
        """Initialize database backend.

        Args:
            database_url: SQLAlchemy async URL
            engine: Shared engine; takes precedence over database_url
            create_schema: Create rate_limit_records on initialize()
        """
        if engine is None and not database_url:
            raise ValueError("database_url or engine required for DatabaseBackend")

        self._engine = engine if engine is not None else create_engine(database_url)
        self._owns_engine = engine is None
        self._create_schema = create_schema
        self._initialized = False

        dialect = self._engine.dialect.name
        if dialect not in _INSERT_BY_DIALECT:
            raise ValueError(
                f"Unsupported dialect '{dialect}'. "
                f"Supported: {sorted(_INSERT_BY_DIALECT)}"
            )
        self._insert = _INSERT_BY_DIALECT[dialect]

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize(self) -> None:
        if self._initialized:
            return

        if self._create_schema:
            try:
                await create_tables(self._engine, rate_limit_records)
            except _UNAVAILABLE_ERRORS as e:
                logger.error("Database unavailable at startup: %s", e)
                return

        self._initialized = True
        logger.info("DatabaseBackend initialized (%s)", self._engine.dialect.name)

    def _upsert(
        self,
        identifier: str,
        endpoint: str,
        limit_class: str,
        now_ms: int,
        max_requests: int,
        window_ms: int,
    ) -> Any:
        table = rate_limit_records
        stmt = self._insert(table).values(
            identifier=identifier,
            endpoint=endpoint,
            limit_class=limit_class,
            request_count=1,
            max_requests=max_requests,
            window_start=now_ms,
            last_request_at=now_ms,
        )

        # SET expressions see the pre-update row.
        expired = (literal(now_ms, BigInteger) - table.c.window_start) >= window_ms

        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.identifier, table.c.endpoint, table.c.limit_class],
            set_={
                "request_count": case(
                    (expired, 1), else_=table.c.request_count + 1
                ),
                "max_requests": case(
                    (expired, stmt.excluded.max_requests),
                    else_=table.c.max_requests,
                ),
                "window_start": case(
                    (expired, stmt.excluded.window_start),
                    else_=table.c.window_start,
                ),
                "last_request_at": stmt.excluded.last_request_at,
            },
        )
        return stmt.returning(
            table.c.request_count, table.c.max_requests, table.c.window_start
        )

    async def increment_and_check(
        self,
        identifier: str,
        endpoint: str,
        limit_class: str,
        now: datetime,
        max_requests: int,
        window_seconds: float,
    ) -> CounterState:
        if not self._initialized:
            await self.initialize()

        stmt = self._upsert(
            identifier,
            endpoint,
            limit_class,
            to_epoch_ms(now),
            max_requests,
            int(window_seconds * 1000),
        )

        try:
            async with self._engine.begin() as conn:
                row = (await conn.execute(stmt)).one()
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Database increment failed: {e}", cause=e) from e

        return CounterState(
            request_count=int(row.request_count),
            max_requests=int(row.max_requests),
            window_start=from_epoch_ms(row.window_start),
        )

    async def get(
        self, identifier: str, endpoint: str, limit_class: str
    ) -> Optional[RateLimitRecord]:
        table = rate_limit_records
        stmt = select(table).where(
            table.c.identifier == identifier,
            table.c.endpoint == endpoint,
            table.c.limit_class == limit_class,
        )

        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Database read failed: {e}", cause=e) from e

        if row is None:
            return None

        return RateLimitRecord(
            identifier=row.identifier,
            endpoint=row.endpoint,
            limit_class=row.limit_class,
            request_count=row.request_count,
            max_requests=row.max_requests,
            window_start=from_epoch_ms(row.window_start),
            last_request_at=from_epoch_ms(row.last_request_at),
        )

    async def reset(self, identifier: str, endpoint: str, limit_class: str) -> bool:
        table = rate_limit_records
        stmt = delete(table).where(
            table.c.identifier == identifier,
            table.c.endpoint == endpoint,
            table.c.limit_class == limit_class,
        )

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Database reset failed: {e}", cause=e) from e

        return result.rowcount > 0

    async def purge(self, older_than: datetime) -> int:
        table = rate_limit_records
        stmt = delete(table).where(table.c.window_start < to_epoch_ms(older_than))

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailable(f"Database purge failed: {e}", cause=e) from e

        if result.rowcount:
            logger.info("Purged %d stale rate limit records", result.rowcount)

        return result.rowcount

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()
        self._initialized = False
