"""In-memory doubles for the store, the completion client and the embedder."""

from __future__ import annotations

import copy
import json
import math
from collections.abc import Callable, Sequence
from itertools import count
from typing import Any

from serialist.canon.filters import row_matches
from serialist.canon.store import CanonStore, Row, Where
from serialist.core.embedding import Embedder
from serialist.core.llm import LLMClient
from serialist.models import Base
from serialist.models import sqlalchemy_models  # noqa: F401


def _defaults(table: str) -> dict[str, Any]:
    meta = Base.metadata.tables.get(table)
    if meta is None:
        return {}
    values: dict[str, Any] = {}
    for column in meta.columns:
        default = column.default
        if default is None:
            values[column.name] = None
        elif default.is_scalar:
            values[column.name] = default.arg
        elif default.is_callable:
            values[column.name] = default.arg(None)
        else:
            values[column.name] = None
    return values


class MemoryStore(CanonStore):
    """Dict-of-lists ``CanonStore`` with the same filter and upsert semantics."""

    def __init__(self) -> None:
        super().__init__()
        self.tables: dict[str, list[Row]] = {}
        self._ids: dict[str, count] = {}

    def rows(self, table: str) -> list[Row]:
        return self.tables.setdefault(table, [])

    def _new_row(self, table: str, row: Row) -> Row:
        full = {**_defaults(table), **copy.deepcopy(dict(row))}
        if "id" in full and full["id"] is None:
            full["id"] = next(self._ids.setdefault(table, count(1)))
        return full

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
        found = [r for r in self.rows(table) if row_matches(r, where)]
        if order_by:
            found.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        if limit:
            found = found[:limit]
        if columns:
            found = [{c: r.get(c) for c in columns} for r in found]
        return copy.deepcopy(found)

    async def count(self, table: str, where: Where | None = None) -> int:
        return sum(1 for r in self.rows(table) if row_matches(r, where))

    async def insert(self, table: str, rows: Sequence[Row]) -> None:
        self.rows(table).extend(self._new_row(table, r) for r in rows)

    async def upsert(self, table: str, rows: Sequence[Row], conflict: Sequence[str]) -> None:
        existing = self.rows(table)
        for row in rows:
            key = {c: row[c] for c in conflict}
            match = next((r for r in existing if row_matches(r, key)), None)
            if match is None:
                existing.append(self._new_row(table, row))
            else:
                match.update(copy.deepcopy(dict(row)))

    async def update(self, table: str, values: Row, where: Where) -> int:
        changed = 0
        for row in self.rows(table):
            if row_matches(row, where):
                row.update(copy.deepcopy(dict(values)))
                changed += 1
        return changed

    async def delete(self, table: str, where: Where) -> int:
        before = self.rows(table)
        kept = [r for r in before if not row_matches(r, where)]
        self.tables[table] = kept
        return len(before) - len(kept)

    async def nearest_chunks(
        self,
        project_id: str,
        embedding: Sequence[float],
        *,
        threshold: float,
        limit: int,
        before_chapter: int | None = None,
    ) -> list[Row]:
        def cosine(a: Sequence[float], b: Sequence[float]) -> float:
            dot = sum(x * y for x, y in zip(a, b))
            norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
            return dot / norm if norm else 0.0

        hits = []
        for row in self.rows("memory_chunks"):
            if row["project_id"] != project_id or row.get("embedding") is None:
                continue
            if before_chapter is not None and row["chapter_number"] >= before_chapter:
                continue
            similarity = cosine(row["embedding"], embedding)
            if similarity >= threshold:
                hits.append(
                    {
                        "chapter_number": row["chapter_number"],
                        "chunk_type": row["chunk_type"],
                        "content": row["content"],
                        "meta": row.get("meta") or {},
                        "similarity": similarity,
                    }
                )
        hits.sort(key=lambda h: h["similarity"], reverse=True)
        return hits[:limit]


Responder = Callable[[str, dict[str, Any]], Any]


def completion_response(content: str, finish_reason: str = "stop") -> dict[str, Any]:
    return {
        "choices": [{"message": {"content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 10},
    }


class FakeLLM(LLMClient):
    """Completion client that replays scripted responses.

    ``script`` is either a list consumed in order or a callable receiving the
    user prompt and the raw call kwargs. Each item may be a string, a dict or
    list (sent as JSON), a ``(content, finish_reason)`` tuple, or an exception
    instance to raise.
    """

    def __init__(self, script: Sequence[Any] | Responder = (), **kwargs: Any) -> None:
        kwargs.setdefault("api_base", "http://fake")
        kwargs.setdefault("api_key", "fake")
        kwargs.setdefault("retry_backoff", 0)
        kwargs.setdefault("retry_increment", 0)
        kwargs.setdefault("timeout", 5)
        super().__init__(**kwargs)
        self.script = script if callable(script) else list(script)
        self.calls: list[dict[str, Any]] = []

    @property
    def prompts(self) -> list[str]:
        return [c["messages"][-1]["content"] for c in self.calls]

    async def _acompletion(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        prompt = kwargs["messages"][-1]["content"]
        if callable(self.script):
            item = self.script(prompt, kwargs)
        elif self.script:
            item = self.script.pop(0)
        else:
            raise AssertionError(f"unexpected LLM call: {prompt[:80]!r}")
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, tuple):
            return completion_response(*item)
        if isinstance(item, (dict, list)):
            return completion_response(json.dumps(item))
        return completion_response(str(item))


class FakeEmbedder(Embedder):
    """Returns ``vectors[text]`` when given, otherwise one fixed vector."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dim: int = 4) -> None:
        super().__init__(model="fake", api_base="http://fake", api_key="fake", dim=dim)
        self.vectors = vectors or {}
        self.batches: list[list[str]] = []

    async def _aembedding(self, batch: list[str]) -> Any:
        self.batches.append(batch)
        return {"data": [{"embedding": self.vectors.get(t, [1.0] * self.dim)} for t in batch]}
