"""SQL database backend for rate limit events.

Appends events to the rate_limit_events table and supports querying for
monitoring and anomaly detection.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncEngine

from tierlimit.events.backends.base import EventBackend
from tierlimit.events.record import BLOCKED, RateLimitEvent
from tierlimit.result import from_epoch_ms, to_epoch_ms
from tierlimit.tables import create_engine, create_tables, rate_limit_events

logger = logging.getLogger(__name__)


class DatabaseEventBackend(EventBackend):
    """SQL database backend for rate limit events.

    Rows are only ever inserted; nothing in this package updates or deletes
    them. Retention is left to the operator.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
        create_schema: bool = True,
    ):
        """Initialize database event backend.

        Args:
            database_url: SQLAlchemy async URL
            engine: Shared engine; takes precedence over database_url
            create_schema: Create rate_limit_events on initialize()
        """
        if engine is None and not database_url:
            raise ValueError("database_url or engine required for DatabaseEventBackend")

        self._engine = engine if engine is not None else create_engine(database_url)
        self._owns_engine = engine is None
        self._create_schema = create_schema
        self._initialized = False

    async def initialize(self) -> None:
        """Create the events table if needed."""
        if self._initialized:
            return

        if self._create_schema:
            await create_tables(self._engine, rate_limit_events)

        self._initialized = True

    async def store(self, event: RateLimitEvent) -> None:
        """Append event to the database."""
        if not self._initialized:
            await self.initialize()

        async with self._engine.begin() as conn:
            await conn.execute(
                insert(rate_limit_events).values(
                    id=event.id,
                    identifier=event.identifier,
                    endpoint=event.endpoint,
                    limit_class=event.limit_class,
                    action=event.action,
                    request_count=event.request_count,
                    max_requests=event.max_requests,
                    created_at=to_epoch_ms(event.created_at),
                )
            )

    async def query(
        self,
        identifier: Optional[str] = None,
        endpoint: Optional[str] = None,
        limit_class: Optional[str] = None,
        action: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[RateLimitEvent]:
        """Query events from the database, newest first."""
        if not self._initialized:
            await self.initialize()

        table = rate_limit_events
        stmt = select(table)
        if identifier:
            stmt = stmt.where(table.c.identifier == identifier)
        if endpoint:
            stmt = stmt.where(table.c.endpoint == endpoint)
        if limit_class:
            stmt = stmt.where(table.c.limit_class == limit_class)
        if action:
            stmt = stmt.where(table.c.action == action)
        if start_time:
            stmt = stmt.where(table.c.created_at >= to_epoch_ms(start_time))
        if end_time:
            stmt = stmt.where(table.c.created_at <= to_epoch_ms(end_time))

        stmt = (
            stmt.order_by(table.c.created_at.desc(), table.c.id)
            .limit(limit)
            .offset(offset)
        )

        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()

        return [
            RateLimitEvent(
                id=row.id,
                identifier=row.identifier,
                endpoint=row.endpoint,
                limit_class=row.limit_class,
                action=row.action,
                request_count=row.request_count,
                max_requests=row.max_requests,
                created_at=from_epoch_ms(row.created_at),
            )
            for row in rows
        ]

    async def blocked_summary(
        self, since: Optional[datetime] = None, limit: int = 10
    ) -> List[Tuple[str, int]]:
        """Identifiers ordered by number of blocked decisions."""
        if not self._initialized:
            await self.initialize()

        table = rate_limit_events
        blocked_count = func.count().label("blocked_count")
        stmt = select(table.c.identifier, blocked_count).where(table.c.action == BLOCKED)
        if since:
            stmt = stmt.where(table.c.created_at >= to_epoch_ms(since))
        stmt = (
            stmt.group_by(table.c.identifier)
            .order_by(blocked_count.desc(), table.c.identifier)
            .limit(limit)
        )

        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()

        return [(row.identifier, int(row.blocked_count)) for row in rows]

    async def close(self) -> None:
        """Dispose the engine if this backend created it."""
        if self._owns_engine:
            await self._engine.dispose()
        self._initialized = False
