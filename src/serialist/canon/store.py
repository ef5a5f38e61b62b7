# src/serialist/canon/store.py
"""Keyed relational store used by every tracker and the orchestrator.

``CanonStore`` is the narrow interface the rest of the engine depends on:
filtered reads, inserts, idempotent upserts keyed by a unique constraint,
counts, and a nearest-neighbour query over embedded memory chunks.  No
transaction spans more than one call; callers order reads before writes and
rely on upserts being idempotent.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy import text as sa_text
from sqlalchemy.dialects.postgresql import insert as pg_insert

from serialist.canon.db import advisory_lock, commit_session, get_pg, lock_key
from serialist.canon.filters import as_op
from serialist.core.logs import EventType, get_event_logger
from serialist.models import Base
from serialist.models import sqlalchemy_models  # noqa: F401  registers tables

event_logger = get_event_logger()

Row = dict[str, Any]
Where = Mapping[str, Any]


class CanonStore(ABC):
    """Abstract persistence collaborator.

    ``where`` maps column names to plain values (equality, ``None`` meaning
    IS NULL) or to operators from :mod:`serialist.canon.filters`.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @abstractmethod
    async def select(
        self,
        table: str,
        where: Where | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[Row]:
        """Return matching rows as plain dictionaries."""

    async def select_one(
        self,
        table: str,
        where: Where | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        columns: Sequence[str] | None = None,
    ) -> Row | None:
        rows = await self.select(
            table,
            where,
            order_by=order_by,
            descending=descending,
            limit=1,
            columns=columns,
        )
        return rows[0] if rows else None

    @abstractmethod
    async def count(self, table: str, where: Where | None = None) -> int: ...

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[Row]) -> None: ...

    @abstractmethod
    async def upsert(
        self, table: str, rows: Sequence[Row], conflict: Sequence[str]
    ) -> None:
        """Insert ``rows``, replacing non-key columns on a ``conflict`` match."""

    @abstractmethod
    async def update(self, table: str, values: Row, where: Where) -> int:
        """Update matching rows and return how many changed."""

    @abstractmethod
    async def delete(self, table: str, where: Where) -> int: ...

    @abstractmethod
    async def nearest_chunks(
        self,
        project_id: str,
        embedding: Sequence[float],
        *,
        threshold: float,
        limit: int,
        before_chapter: int | None = None,
    ) -> list[Row]:
        """Return embedded memory chunks ranked by cosine similarity.

        Each row carries ``chapter_number``, ``chunk_type``, ``content`` and
        ``similarity``; rows under ``threshold`` are excluded.
        """

    @asynccontextmanager
    async def project_lock(self, project_id: str) -> AsyncIterator[None]:
        """Serialize work on one project within this process."""
        lock = self._locks.setdefault(project_id, asyncio.Lock())
        async with lock:
            yield


def _vector_literal(embedding: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(v):.7g}" for v in embedding) + "]"


class PostgresStore(CanonStore):
    """``CanonStore`` backed by PostgreSQL through SQLAlchemy Core.

    Parameters
    ----------
    session_factory:
        Async context manager yielding an ``AsyncSession``; defaults to
        :func:`serialist.canon.db.get_pg`.
    """

    def __init__(self, session_factory: Any = None) -> None:
        super().__init__()
        self._session = session_factory or get_pg

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError as exc:
            raise ValueError(f"Unknown canon table: {name}") from exc

    @staticmethod
    def _clauses(table: Table, where: Where | None) -> list[Any]:
        return [as_op(cond).clause(table.c[col]) for col, cond in (where or {}).items()]

    async def select(
        self,
        table: str,
        where: Where | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[Row]:
        t = self._table(table)
        targets = [t.c[c] for c in columns] if columns else [t]
        stmt = select(*targets).where(*self._clauses(t, where))
        if order_by:
            col = t.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(row._mapping) for row in result]

    async def count(self, table: str, where: Where | None = None) -> int:
        t = self._table(table)
        stmt = select(func.count()).select_from(t).where(*self._clauses(t, where))
        async with self._session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def insert(self, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        t = self._table(table)
        async with self._session() as session:
            await session.execute(t.insert(), list(rows))
            await commit_session(session)

    async def upsert(
        self, table: str, rows: Sequence[Row], conflict: Sequence[str]
    ) -> None:
        if not rows:
            return
        t = self._table(table)
        stmt = pg_insert(t).values(list(rows))
        keys = set(rows[0])
        changed = {
            c.name: stmt.excluded[c.name]
            for c in t.columns
            if c.name in keys and c.name not in conflict
        }
        if changed:
            stmt = stmt.on_conflict_do_update(index_elements=list(conflict), set_=changed)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict))
        async with self._session() as session:
            await session.execute(stmt)
            await commit_session(session)
        event_logger.debug(
            f"Upserted {len(rows)} row(s) into {table}",
            event_type=EventType.DATABASE_OPERATION,
            component="store",
        )

    async def update(self, table: str, values: Row, where: Where) -> int:
        t = self._table(table)
        stmt = update(t).where(*self._clauses(t, where)).values(**values)
        async with self._session() as session:
            result = await session.execute(stmt)
            await commit_session(session)
            return int(result.rowcount or 0)

    async def delete(self, table: str, where: Where) -> int:
        t = self._table(table)
        stmt = delete(t).where(*self._clauses(t, where))
        async with self._session() as session:
            result = await session.execute(stmt)
            await commit_session(session)
            return int(result.rowcount or 0)

    async def nearest_chunks(
        self,
        project_id: str,
        embedding: Sequence[float],
        *,
        threshold: float,
        limit: int,
        before_chapter: int | None = None,
    ) -> list[Row]:
        before = "AND chapter_number < :before" if before_chapter is not None else ""
        query = sa_text(
            f"""
            SELECT chapter_number, chunk_type, content, meta,
                   1 - (embedding <=> CAST(:emb AS vector)) AS similarity
            FROM memory_chunks
            WHERE project_id = :pid
              AND embedding IS NOT NULL
              {before}
              AND 1 - (embedding <=> CAST(:emb AS vector)) >= :threshold
            ORDER BY embedding <=> CAST(:emb AS vector)
            LIMIT :limit
            """
        )
        params = {
            "emb": _vector_literal(embedding),
            "pid": project_id,
            "threshold": threshold,
            "limit": limit,
        }
        if before_chapter is not None:
            params["before"] = before_chapter
        async with self._session() as session:
            result = await session.execute(query, params)
            return [dict(row._mapping) for row in result]

    @asynccontextmanager
    async def project_lock(self, project_id: str) -> AsyncIterator[None]:
        """Hold a PostgreSQL advisory lock so runs on one project never overlap."""
        async with super().project_lock(project_id):
            async with self._session() as session:
                async with advisory_lock(session, lock_key(f"project:{project_id}")):
                    yield


__all__ = ["CanonStore", "PostgresStore", "Row", "Where"]
