from __future__ import annotations

import asyncio

import pytest

from book_rag.config import ChunkingConfig, IndexingConfig
from book_rag.errors import EmbeddingError, StoreQueryError
from book_rag.generation.completion import CompletionClient
from book_rag.generation.responder import RetrievalAugmentedResponder
from book_rag.ingest.embedder import HashingEmbedder
from book_rag.ingest.indexer import IndexBuilder, IndexStatus
from book_rag.ingest.splitter import FixedWindowSplitter
from book_rag.retrieval.vector_store import InMemoryVectorStore
from book_rag.types import Document, ScoredRecord, VectorRecord


class StaticSource:
    """Document source returning fixed text; counts loads."""

    def __init__(self, text: str, source: str = "book.txt") -> None:
        self.text = text
        self.source = source
        self.loads = 0

    def load(self) -> Document:
        self.loads += 1
        return Document(source=self.source, content=self.text.encode("utf-8"), text=self.text)


class CountingEmbedder(HashingEmbedder):
    """Hashing embedder that yields to the loop, counts calls, and can fail."""

    def __init__(self, *, fail_on: str | None = None, delay: float = 0.0) -> None:
        super().__init__(dimension=64)
        self.calls = 0
        self.fail_on = fail_on
        self.delay = delay

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingError("provider unavailable")
        return await super().embed(text)


class RecordingStore(InMemoryVectorStore):
    """In-memory store that records upsert batches and can fail queries."""

    def __init__(self) -> None:
        super().__init__()
        self.upserts: list[list[str]] = []
        self.fail_queries = False

    async def upsert(self, records: list[VectorRecord]) -> None:
        self.upserts.append([record.record_id for record in records])
        await asyncio.sleep(0)
        await super().upsert(records)

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        if self.fail_queries:
            raise StoreQueryError("connection reset by peer")
        return await super().query(vector, top_k)


class RecordingCompletion(CompletionClient):
    def __init__(self, answer: str = "The answer.") -> None:
        self.answer = answer
        self.calls: list[dict[str, object]] = []

    async def complete(
        self,
        system_instruction: str,
        context: str,
        query: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        self.calls.append(
            {
                "system_instruction": system_instruction,
                "context": context,
                "query": query,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        return self.answer


BOOK_TEXT = " ".join(f"Sentence number {i} talks about topic {i % 7}." for i in range(400))


@pytest.fixture
def source() -> StaticSource:
    return StaticSource(BOOK_TEXT)


@pytest.fixture
def embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def completion() -> RecordingCompletion:
    return RecordingCompletion()


@pytest.fixture
def index_builder(
    source: StaticSource, embedder: CountingEmbedder, store: RecordingStore
) -> IndexBuilder:
    return IndexBuilder(
        source=source,
        splitter=FixedWindowSplitter(ChunkingConfig(chunk_size=1000, chunk_overlap=200)),
        embedder=embedder,
        vector_store=store,
        status=IndexStatus(),
        config=IndexingConfig(batch_size=10),
    )


@pytest.fixture
def responder(
    index_builder: IndexBuilder,
    embedder: CountingEmbedder,
    store: RecordingStore,
    completion: RecordingCompletion,
) -> RetrievalAugmentedResponder:
    return RetrievalAugmentedResponder(
        index_builder=index_builder,
        embedder=embedder,
        vector_store=store,
        completion=completion,
    )
