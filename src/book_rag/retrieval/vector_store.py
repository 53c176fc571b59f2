"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import asyncio
import logging
import uuid
from math import sqrt
from typing import Any, Protocol

from book_rag.errors import StoreQueryError, StoreWriteError
from book_rag.types import ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)


class VectorStore(Protocol):
    """Minimal vector store contract for indexing and retrieval."""

    async def upsert(self, records: list[VectorRecord]) -> None:
        """Insert or replace records keyed by `record_id`."""

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        """Return the `top_k` nearest records, best first."""

    async def count(self) -> int:
        """Number of stored records."""


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local runs."""

    def __init__(self) -> None:
        self._store: dict[str, VectorRecord] = {}

    async def upsert(self, records: list[VectorRecord]) -> None:
        _validate_batch(records)
        for record in records:
            self._store[record.record_id] = VectorRecord(
                record_id=record.record_id,
                vector=list(record.vector),
                metadata=dict(record.metadata),
            )

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        if top_k < 1:
            raise StoreQueryError(f"top_k must be >= 1, got {top_k}")
        ranked = sorted(
            (
                ScoredRecord(record=record, score=_cosine_similarity(vector, record.vector))
                for record in self._store.values()
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return [
            ScoredRecord(record=item.record, score=item.score, rank=i + 1)
            for i, item in enumerate(ranked[:top_k])
        ]

    async def count(self) -> int:
        return len(self._store)

    def record_ids(self) -> list[str]:
        return sorted(self._store)


class FaissVectorStore:
    """FAISS adapter via LangChain community integration.

    FAISS itself only appends, so `upsert` deletes any ids already present
    before adding the batch. Query hits carry metadata but no vector.
    """

    def __init__(self) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _PrecomputedEmbeddings(Embeddings):
            # Vectors are always supplied by the caller.
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise NotImplementedError("FaissVectorStore only accepts precomputed vectors")

            def embed_query(self, text: str) -> list[float]:
                raise NotImplementedError("FaissVectorStore only accepts precomputed vectors")

        self._faiss_cls = FAISS
        self._embeddings = _PrecomputedEmbeddings()
        self._index: Any | None = None

    async def upsert(self, records: list[VectorRecord]) -> None:
        _validate_batch(records)
        if not records:
            return
        ids = [record.record_id for record in records]
        text_embeddings = [(record.text, list(record.vector)) for record in records]
        metadatas = [{**record.metadata, "record_id": record.record_id} for record in records]

        try:
            if self._index is None:
                self._index = self._faiss_cls.from_embeddings(
                    text_embeddings=text_embeddings,
                    embedding=self._embeddings,
                    metadatas=metadatas,
                    ids=ids,
                )
                return

            existing = set(self._index.index_to_docstore_id.values())
            stale = [record_id for record_id in ids if record_id in existing]
            if stale:
                self._index.delete(stale)
            self._index.add_embeddings(
                text_embeddings=text_embeddings,
                metadatas=metadatas,
                ids=ids,
            )
        except Exception as exc:
            raise StoreWriteError(f"FAISS upsert of {len(records)} records failed: {exc}") from exc

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        if self._index is None:
            return []
        try:
            docs_and_distances = self._index.similarity_search_with_score_by_vector(
                embedding=vector,
                k=top_k,
            )
        except Exception as exc:
            raise StoreQueryError(f"FAISS query failed: {exc}") from exc

        results: list[ScoredRecord] = []
        for rank, (doc, distance) in enumerate(docs_and_distances, start=1):
            # L2 distance, nearest first; map to a similarity in (0, 1].
            score = 1.0 / (1.0 + float(distance))
            metadata = dict(doc.metadata)
            metadata.setdefault("text", doc.page_content)
            record = VectorRecord(
                record_id=str(metadata.pop("record_id", f"faiss-{rank}")),
                vector=[],
                metadata=metadata,
            )
            results.append(ScoredRecord(record=record, score=float(score), rank=rank))
        return results

    async def count(self) -> int:
        if self._index is None:
            return 0
        return int(self._index.index.ntotal)


class QdrantVectorStore:
    """Remote vector store backed by Qdrant.

    Qdrant point ids must be UUIDs or integers, so each record id is mapped to
    a deterministic `uuid5`; the same record id always lands on the same point,
    which keeps writes idempotent. The original id travels in the payload.
    """

    def __init__(
        self,
        *,
        collection: str,
        dimension: int,
        url: str = "http://localhost:6333",
        api_key: str | None = None,
        client: Any | None = None,
        timeout: int = 30,
    ) -> None:
        if client is None:
            from qdrant_client import AsyncQdrantClient

            client = AsyncQdrantClient(url=url, api_key=api_key, timeout=timeout)
        self.client = client
        self.collection = collection
        self.dimension = dimension
        self._collection_ready = False
        self._collection_lock = asyncio.Lock()

    async def upsert(self, records: list[VectorRecord]) -> None:
        from qdrant_client.models import PointStruct, UpdateStatus

        _validate_batch(records, dimension=self.dimension)
        if not records:
            return
        points = [
            PointStruct(
                id=point_id(record.record_id),
                vector=list(record.vector),
                payload={**record.metadata, "record_id": record.record_id},
            )
            for record in records
        ]
        try:
            await self._ensure_collection()
            result = await self.client.upsert(
                collection_name=self.collection, points=points, wait=True
            )
        except StoreWriteError:
            raise
        except Exception as exc:
            raise StoreWriteError(f"Qdrant upsert of {len(points)} points failed: {exc}") from exc

        status = getattr(result, "status", None)
        if status is not None and status != UpdateStatus.COMPLETED:
            raise StoreWriteError(
                f"Qdrant upsert of {len(points)} points did not complete (status={status})"
            )

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        try:
            await self._ensure_collection()
            response = await self.client.query_points(
                collection_name=self.collection,
                query=vector,
                limit=top_k,
                with_payload=True,
            )
        except Exception as exc:
            raise StoreQueryError(f"Qdrant query failed: {exc}") from exc

        results: list[ScoredRecord] = []
        for rank, point in enumerate(response.points, start=1):
            payload = dict(getattr(point, "payload", None) or {})
            record = VectorRecord(
                record_id=str(payload.pop("record_id", point.id)),
                vector=[],
                metadata=payload,
            )
            results.append(ScoredRecord(record=record, score=float(point.score), rank=rank))
        return results

    async def count(self) -> int:
        try:
            await self._ensure_collection()
            result = await self.client.count(collection_name=self.collection, exact=True)
        except Exception as exc:
            raise StoreQueryError(f"Qdrant count failed: {exc}") from exc
        return int(result.count)

    async def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        from qdrant_client.models import Distance, VectorParams

        async with self._collection_lock:
            if self._collection_ready:
                return
            if not await self.client.collection_exists(self.collection):
                logger.info(
                    "Creating Qdrant collection %s (dim=%d)", self.collection, self.dimension
                )
                await self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
                )
            self._collection_ready = True


def point_id(record_id: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, record_id))


def _validate_batch(records: list[VectorRecord], *, dimension: int | None = None) -> None:
    seen: set[str] = set()
    for record in records:
        if not record.record_id:
            raise StoreWriteError("record_id must be non-empty")
        if record.record_id in seen:
            raise StoreWriteError(f"Duplicate record_id in batch: {record.record_id}")
        seen.add(record.record_id)
        if not record.vector:
            raise StoreWriteError(f"Record {record.record_id} has an empty vector")
        expected = dimension if dimension is not None else len(records[0].vector)
        if len(record.vector) != expected:
            raise StoreWriteError(
                f"Record {record.record_id} has dimension {len(record.vector)}, expected {expected}"
            )


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
