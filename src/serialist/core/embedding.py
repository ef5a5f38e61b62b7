# src/serialist/core/embedding.py
"""Embedding utilities with optional naive fallback."""

from __future__ import annotations

import hashlib
from typing import Any

from serialist.config import config
from serialist.core.logs import get_event_logger

event_logger = get_event_logger()


def hash_embedding(text: str, dims: int) -> list[float]:
    """Deterministic stand-in vector used when no embedding API is configured."""
    digest = hashlib.sha256(text.encode()).digest()
    vector = [(b - 128) / 128 for b in digest]
    repeats = -(-dims // len(vector))  # ceil division
    return (vector * repeats)[:dims]


class Embedder:
    """Batched text embedder backed by LiteLLM.

    Failed batches yield ``None`` entries so callers can store the text and
    fill the vector in later.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_base: str | None = None,
        api_key: str | None = None,
        dim: int | None = None,
        batch_size: int | None = None,
        max_chars: int | None = None,
    ) -> None:
        self.model = model or config.embedding.model
        self.api_base = (
            api_base
            if api_base is not None
            else config.embedding.api_base or config.llm.api_base
        )
        self.api_key = (
            api_key
            if api_key is not None
            else config.embedding.api_key or config.llm.api_key
        )
        self.dim = dim or config.embedding.dim
        self.batch_size = batch_size or config.embedding.batch_size
        self.max_chars = max_chars or config.embedding.max_chars

    async def _aembedding(self, batch: list[str]) -> Any:
        import litellm

        return await litellm.aembedding(
            model=self.model,
            input=batch,
            api_base=self.api_base,
            api_key=self.api_key,
        )

    async def embed_many(self, texts: list[str]) -> list[list[float] | None]:
        """Return one vector (or ``None``) per input text, in order.

        Parameters
        ----------
        texts:
            Texts to embed; each is cut to ``max_chars`` first.
        """
        sliced = [t[: self.max_chars] for t in texts]
        if not (self.api_base and self.api_key):
            return [hash_embedding(t, self.dim) for t in sliced]

        vectors: list[list[float] | None] = []
        for offset in range(0, len(sliced), self.batch_size):
            batch = sliced[offset : offset + self.batch_size]
            try:
                response = await self._aembedding(batch)
                batch_vectors = [list(item["embedding"]) for item in response["data"]]
            except Exception as exc:  # provider failures leave chunks unembedded
                event_logger.warning(
                    f"Embedding batch of {len(batch)} failed: {exc}",
                    component="embedding",
                )
                vectors.extend([None] * len(batch))
            else:
                vectors.extend(batch_vectors)
        return vectors

    async def embed(self, text: str) -> list[float] | None:
        """Return the embedding vector for ``text``."""
        return (await self.embed_many([text]))[0]


__all__ = ["Embedder", "hash_embedding"]
