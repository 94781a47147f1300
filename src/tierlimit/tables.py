"""SQL schema for persisted rate limit state.

Two tables:
- rate_limit_records: one counter per (identifier, endpoint, limit_class)
- rate_limit_events: append-only admission decisions

Instants are stored as integer epoch milliseconds so window arithmetic runs
inside the database identically on PostgreSQL and SQLite.
"""

from typing import Optional

from sqlalchemy import BigInteger, Column, Index, Integer, MetaData, String, Table
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

metadata = MetaData()

rate_limit_records = Table(
    "rate_limit_records",
    metadata,
    Column("identifier", String(255), primary_key=True),
    Column("endpoint", String(512), primary_key=True),
    Column("limit_class", String(64), primary_key=True),
    Column("request_count", Integer, nullable=False),
    Column("max_requests", Integer, nullable=False),
    Column("window_start", BigInteger, nullable=False),
    Column("last_request_at", BigInteger, nullable=False),
    Index("ix_rate_limit_records_window_start", "window_start"),
)

rate_limit_events = Table(
    "rate_limit_events",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("identifier", String(255), nullable=False),
    Column("endpoint", String(512), nullable=False),
    Column("limit_class", String(64), nullable=False),
    Column("action", String(16), nullable=False),
    Column("request_count", Integer, nullable=False),
    Column("max_requests", Integer, nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Index("ix_rate_limit_events_identifier_created", "identifier", "created_at"),
    Index("ix_rate_limit_events_action_created", "action", "created_at"),
)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the rate limit tables.

    Args:
        database_url: SQLAlchemy async URL, e.g. postgresql+asyncpg://... or
            sqlite+aiosqlite:///rate_limits.db
        echo: If True, log all SQL statements
    """
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


async def create_tables(engine: AsyncEngine, table: Optional[Table] = None) -> None:
    """Create one table, or both when ``table`` is None."""
    async with engine.begin() as conn:
        if table is None:
            await conn.run_sync(metadata.create_all)
        else:
            await conn.run_sync(table.create, checkfirst=True)
