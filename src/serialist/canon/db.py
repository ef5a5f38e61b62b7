# src/serialist/canon/db.py
"""Database session creation, schema setup, and helpers."""

from __future__ import annotations

import hashlib
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import BigInteger, bindparam
from sqlalchemy import text as sa_text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql import func, select

from serialist.config import config
from serialist.core.logs import EventType, get_event_logger

event_logger = get_event_logger()

_ENGINE: AsyncEngine | None = None
_SESSION_FACTORY: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide async engine, creating it on first use."""
    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is None:
        _ENGINE = create_async_engine(config.database.postgres_url, pool_pre_ping=True)
        _SESSION_FACTORY = async_sessionmaker(
            bind=_ENGINE, class_=AsyncSession, expire_on_commit=False
        )
    return _ENGINE


@asynccontextmanager
async def get_pg() -> AsyncIterator[AsyncSession]:
    """Return a SQLAlchemy asynchronous session."""
    get_engine()
    assert _SESSION_FACTORY is not None
    try:
        async with _SESSION_FACTORY() as session:
            yield session
    except SQLAlchemyError as exc:
        event_logger.error(
            f"PostgreSQL session error: {exc}",
            event_type=EventType.DATABASE_OPERATION,
            component="db",
        )
        raise


async def commit_session(session: AsyncSession) -> None:
    """Explicitly commit the transaction on a connection."""
    start_time = time.time()
    await session.commit()
    event_logger.debug(
        "Session committed",
        event_type=EventType.DATABASE_OPERATION,
        component="db",
        duration=time.time() - start_time,
    )


def lock_key(name: str) -> int:
    """Stable signed 64-bit advisory lock key for ``name``."""
    return int.from_bytes(hashlib.sha256(name.encode()).digest()[:8], "big", signed=True)


@asynccontextmanager
async def advisory_lock(session: AsyncSession, lock_id: int) -> AsyncIterator[None]:
    """Acquire a PostgreSQL advisory lock.

    Uses explicit bigint casts to avoid psycopg/SQLAlchemy binding as NUMERIC.
    """
    stmt_lock = select(func.pg_advisory_lock(bindparam("id", type_=BigInteger))).params(
        id=int(lock_id)
    )
    await session.execute(stmt_lock)
    event_logger.debug(
        f"Acquired advisory lock {lock_id}",
        event_type=EventType.DATABASE_OPERATION,
        component="db",
    )
    try:
        yield
    finally:
        stmt_unlock = select(
            func.pg_advisory_unlock(bindparam("id", type_=BigInteger))
        ).params(id=int(lock_id))
        await session.execute(stmt_unlock)


async def create_schema() -> None:
    """Create the pgvector extension and every canon table if missing."""
    from serialist.models import Base
    from serialist.models import sqlalchemy_models  # noqa: F401  registers tables

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(sa_text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    event_logger.info(
        "Canon schema ensured",
        event_type=EventType.DATABASE_OPERATION,
        component="db",
        tables=sorted(Base.metadata.tables),
    )


async def dispose_engine() -> None:
    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None


__all__ = [
    "get_engine",
    "get_pg",
    "commit_session",
    "advisory_lock",
    "lock_key",
    "create_schema",
    "dispose_engine",
]
