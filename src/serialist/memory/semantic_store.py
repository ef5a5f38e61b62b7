# src/serialist/memory/semantic_store.py
"""Long-range semantic memory over committed chapters.

Chapters are cut into typed chunks and embedded; retrieval pulls the most
similar chunks from outside the recent-chapter window so the writer can
recall events the rolling context has long since dropped.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from serialist.canon.filters import is_null
from serialist.canon.store import CanonStore
from serialist.core.embedding import Embedder
from serialist.core.llm import LLMClient
from serialist.core.logs import EventType, get_event_logger
from serialist.core.text import mentions, smart_truncate
from serialist.memory.base import CommittedChapter, Tracker
from serialist.models import ArcPlan, ChunkType, MemoryChunk, Project

event_logger = get_event_logger()

CHUNK_WORDS = 400
CHUNK_MAX_CHARS = 2000
MIN_PARAGRAPH_CHARS = 50
RECENT_WINDOW = 5
SIMILARITY_THRESHOLD = 0.65
TOP_K = 8
HIT_CHARS = 800
TOTAL_CHARS = 6000

TYPE_ORDER = (
    ChunkType.KEY_EVENT,
    ChunkType.PLOT_POINT,
    ChunkType.CHARACTER_EVENT,
    ChunkType.SCENE,
    ChunkType.WORLD_DETAIL,
)

TYPE_LABELS = {
    ChunkType.KEY_EVENT: "Key events",
    ChunkType.PLOT_POINT: "Plot points",
    ChunkType.CHARACTER_EVENT: "Character moments",
    ChunkType.SCENE: "Scenes",
    ChunkType.WORLD_DETAIL: "World details",
}

CHUNK_PATTERNS: tuple[tuple[ChunkType, re.Pattern[str]], ...] = (
    (
        ChunkType.PLOT_POINT,
        re.compile(
            r"\b(?:secret|revealed|discovered|truth|prophecy|plan|conspiracy|betray\w*|vow)\b",
            re.IGNORECASE,
        ),
    ),
    (
        ChunkType.CHARACTER_EVENT,
        re.compile(
            r"\b(?:died|killed|wounded|married|promised|confessed|swore|broke through|awakened)\b",
            re.IGNORECASE,
        ),
    ),
    (
        ChunkType.WORLD_DETAIL,
        re.compile(
            r"\b(?:city|sect|kingdom|realm|empire|mountain|temple|ruins|continent|clan)\b",
            re.IGNORECASE,
        ),
    ),
)


def classify(text: str) -> ChunkType:
    for chunk_type, pattern in CHUNK_PATTERNS:
        if len(pattern.findall(text)) >= 2:
            return chunk_type
    return ChunkType.SCENE


def chunk_chapter(
    content: str,
    chapter_number: int,
    title: str = "",
    summary: str = "",
    cast: Sequence[str] = (),
) -> list[dict[str, Any]]:
    """Split a chapter into chunk records (without embeddings).

    The summary, when present, becomes a ``key_event`` chunk; prose is packed
    paragraph by paragraph into chunks of roughly ``CHUNK_WORDS`` words.
    """
    chunks: list[dict[str, Any]] = []
    if summary:
        chunks.append(
            {
                "chapter_number": chapter_number,
                "chunk_type": ChunkType.KEY_EVENT.value,
                "content": f'Ch.{chapter_number} "{title}": {summary}'[:CHUNK_MAX_CHARS],
                "meta": {"characters": list(cast)},
            }
        )

    paragraphs = [p.strip() for p in re.split(r"\n\s*\n|\n", content) if len(p.strip()) >= MIN_PARAGRAPH_CHARS]
    buffer: list[str] = []
    words = 0

    def flush() -> None:
        nonlocal buffer, words
        if not buffer:
            return
        text = "\n".join(buffer)[:CHUNK_MAX_CHARS]
        chunks.append(
            {
                "chapter_number": chapter_number,
                "chunk_type": classify(text).value,
                "content": text,
                "meta": {"characters": [c for c in cast if mentions(text, c)]},
            }
        )
        buffer, words = [], 0

    for paragraph in paragraphs:
        buffer.append(paragraph)
        words += len(paragraph.split())
        if words >= CHUNK_WORDS:
            flush()
    flush()
    return chunks


class SemanticStore(Tracker):
    """Chunk, embed and recall committed prose."""

    name = "semantic_store"

    def __init__(
        self,
        store: CanonStore,
        embedder: Embedder,
        llm: LLMClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(store, llm, **kwargs)
        self.embedder = embedder

    async def on_chapter_committed(self, chapter: CommittedChapter) -> None:
        await self.ingest(chapter)
        await self.backfill_embeddings(chapter.project_id)

    async def ingest(self, chapter: CommittedChapter) -> int:
        """Replace the chapter's chunks; returns how many were stored."""
        summary = chapter.summary.summary if chapter.summary else ""
        chunks = chunk_chapter(
            chapter.content, chapter.chapter_number, chapter.title, summary, chapter.cast
        )
        if not chunks:
            return 0
        vectors = await self.embedder.embed_many([c["content"] for c in chunks])
        for chunk, vector in zip(chunks, vectors):
            chunk["project_id"] = chapter.project_id
            chunk["embedding"] = vector
        await self.store.delete(
            "memory_chunks",
            {"project_id": chapter.project_id, "chapter_number": chapter.chapter_number},
        )
        await self.store.insert("memory_chunks", chunks)
        missing = sum(1 for v in vectors if v is None)
        event_logger.debug(
            f"Stored {len(chunks)} memory chunk(s), {missing} awaiting embedding",
            event_type=EventType.TRACKER_UPDATE,
            component=self.name,
            project_id=chapter.project_id,
            chapter_number=chapter.chapter_number,
        )
        return len(chunks)

    async def backfill_embeddings(self, project_id: str, limit: int = 500) -> int:
        """Embed chunks stored while the embedding provider was unavailable."""
        rows = await self.store.select(
            "memory_chunks",
            {"project_id": project_id, "embedding": is_null()},
            order_by="chapter_number",
            limit=limit,
            columns=("id", "content"),
        )
        if not rows:
            return 0
        vectors = await self.embedder.embed_many([row["content"] for row in rows])
        filled = 0
        for row, vector in zip(rows, vectors):
            if vector is None:
                continue
            filled += await self.store.update("memory_chunks", {"embedding": vector}, {"id": row["id"]})
        return filled

    async def _query_text(self, project: Project, chapter_number: int, cast: Sequence[str]) -> str:
        parts = [f"Chapter {chapter_number} of {project.title}", project.protagonist_name]
        previous = await self.store.select_one(
            "chapter_summaries",
            {"project_id": project.id, "chapter_number": chapter_number - 1},
            columns=("summary", "cliffhanger"),
        )
        if previous:
            parts += [previous.get("cliffhanger") or "", (previous.get("summary") or "")[:500]]
        plan_row = await self.store.select_one(
            "arc_plans",
            {"project_id": project.id, "arc_number": project.arc_number(chapter_number, self.arc_size)},
        )
        if plan_row:
            plan = ArcPlan.model_validate(plan_row)
            parts += [plan.brief_for(chapter_number), plan.theme]
        parts += list(cast)
        return " ".join(p for p in parts if p)

    async def retrieve(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> list[MemoryChunk]:
        if chapter_number <= RECENT_WINDOW:
            return []
        vector = await self.embedder.embed(await self._query_text(project, chapter_number, cast))
        if vector is None:
            return []
        rows = await self.store.nearest_chunks(
            project.id,
            vector,
            threshold=SIMILARITY_THRESHOLD,
            limit=TOP_K,
            before_chapter=max(1, chapter_number - RECENT_WINDOW),
        )
        return [MemoryChunk.model_validate(row) for row in rows]

    async def context_fragment(
        self, project: Project, chapter_number: int, cast: Sequence[str] = ()
    ) -> str | None:
        hits = await self.retrieve(project, chapter_number, cast)
        if not hits:
            return None
        lines = ["=== LONG-RANGE MEMORY ==="]
        used = 0
        for chunk_type in TYPE_ORDER:
            group = [h for h in hits if h.chunk_type == chunk_type]
            if not group:
                continue
            lines.append(f"{TYPE_LABELS[chunk_type]}:")
            for hit in group:
                text = smart_truncate(hit.content, HIT_CHARS)
                if used + len(text) > TOTAL_CHARS:
                    break
                used += len(text)
                lines.append(f"- (ch.{hit.chapter_number}) {text}")
        return "\n".join(lines) if len(lines) > 1 else None


__all__ = ["SemanticStore", "chunk_chapter", "classify"]
