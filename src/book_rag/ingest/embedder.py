"""Embedding abstractions, the OpenAI client, and a deterministic baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from book_rag.errors import EmbeddingError

_OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class Embedder(ABC):
    """Maps one text to a fixed-length vector."""

    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class OpenAIEmbedder(Embedder):
    """Embedding client backed by `langchain_openai.OpenAIEmbeddings`.

    Every call is a network round trip; nothing is cached. The wrapped client
    holds no per-call state, so concurrent `embed` calls are safe.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        client: Any | None = None,
        dimension: int | None = None,
    ) -> None:
        self.model = model
        if dimension is None:
            if model not in _OPENAI_DIMENSIONS:
                raise ValueError(
                    f"Unknown embedding model {model!r}; pass its vector dimension explicitly"
                )
            dimension = _OPENAI_DIMENSIONS[model]
        self.dimension = dimension
        if client is None:
            from langchain_openai import OpenAIEmbeddings

            client = OpenAIEmbeddings(model=model, api_key=api_key)
        self._client = client

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self._client.aembed_query(text)
        except Exception as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        if not isinstance(vector, list) or len(vector) != self.dimension:
            size = len(vector) if isinstance(vector, list) else type(vector).__name__
            raise EmbeddingError(
                f"Malformed embedding: expected {self.dimension} values, got {size}"
            )
        return [float(value) for value in vector]


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs without credentials and for tests.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
