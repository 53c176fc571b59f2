"""One-time index build: extract -> split -> embed -> upsert."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from book_rag.config import IndexingConfig, TimeoutConfig
from book_rag.errors import EmbeddingError, IndexBuildError, PipelineError, Stage
from book_rag.ingest.embedder import Embedder
from book_rag.ingest.splitter import FixedWindowSplitter
from book_rag.obs.tracing import Timer
from book_rag.retrieval.concurrency import gather_bounded, with_timeout
from book_rag.retrieval.vector_store import VectorStore
from book_rag.types import Document, Passage, VectorRecord

logger = logging.getLogger(__name__)


class IndexState(str, Enum):
    NOT_STARTED = "not_started"
    BUILDING = "building"
    READY = "ready"
    FAILED = "failed"


class IndexStatus:
    """Lifecycle of the index for one process.

    Once `READY`, the state only changes through `reset()`. A failed build
    leaves the state `FAILED` so the next caller rebuilds from scratch.
    """

    def __init__(self) -> None:
        self._state = IndexState.NOT_STARTED
        self.last_error: str | None = None
        self.build_count = 0

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is IndexState.READY

    def mark_building(self) -> None:
        if self.is_ready:
            raise RuntimeError("index is already ready; call reset() first")
        self._state = IndexState.BUILDING
        self.build_count += 1

    def mark_ready(self) -> None:
        self._state = IndexState.READY
        self.last_error = None

    def mark_failed(self, error: BaseException) -> None:
        if self.is_ready:
            return
        self._state = IndexState.FAILED
        self.last_error = str(error)

    def reset(self) -> None:
        self._state = IndexState.NOT_STARTED
        self.last_error = None


class DocumentSource(Protocol):
    def load(self) -> Document:
        """Return the extracted document or raise `ExtractionError`."""


@dataclass(slots=True)
class IndexReport:
    """Summary of a completed (or skipped) index build."""

    passages: int
    batches: int
    elapsed_ms: float
    built: bool = True


class IndexBuilder:
    """Populates the vector store from the document once per process.

    Concurrent callers share one build: the first caller takes the lock and
    builds, the rest wait on the lock and return as soon as they see the index
    is ready. If the build failed, the next waiter retries it.

    Batches are uploaded strictly in order. Within a batch every passage is
    embedded concurrently, with fan-out bounded by the batch size.
    """

    def __init__(
        self,
        *,
        source: DocumentSource,
        splitter: FixedWindowSplitter,
        embedder: Embedder,
        vector_store: VectorStore,
        status: IndexStatus | None = None,
        config: IndexingConfig | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.source = source
        self.splitter = splitter
        self.embedder = embedder
        self.vector_store = vector_store
        self.status = status or IndexStatus()
        self.config = config or IndexingConfig()
        self.timeouts = timeouts or TimeoutConfig()
        self._lock = asyncio.Lock()

    async def ensure_index(self) -> IndexReport:
        """Build the index unless it is already ready."""

        if self.status.is_ready:
            return IndexReport(passages=0, batches=0, elapsed_ms=0.0, built=False)

        async with self._lock:
            if self.status.is_ready:
                return IndexReport(passages=0, batches=0, elapsed_ms=0.0, built=False)

            self.status.mark_building()
            try:
                report = await self._build()
            except BaseException as exc:
                self.status.mark_failed(exc)
                if isinstance(exc, Exception):
                    logger.error("Index build failed: %s", exc)
                    raise _wrap_build_error(exc) from exc
                raise

            self.status.mark_ready()
            logger.info(
                "Index ready: %d passages in %d batches (%.0f ms)",
                report.passages,
                report.batches,
                report.elapsed_ms,
            )
            return report

    async def _build(self) -> IndexReport:
        with Timer() as timer:
            logger.info("Processing document...")
            document = self.source.load()

            logger.info("Splitting text into passages...")
            passages = self.splitter.split_document(document)
            logger.info("Created %d passages", len(passages))

            batches = list(_batched(passages, self.config.batch_size))
            for number, batch in enumerate(batches, start=1):
                records = await self._embed_batch(batch, document.source)
                await with_timeout(
                    self.vector_store.upsert(records),
                    self.timeouts.store_seconds,
                    stage=Stage.INDEXING,
                )
                logger.info("Uploaded batch %d/%d", number, len(batches))

        return IndexReport(
            passages=len(passages), batches=len(batches), elapsed_ms=timer.elapsed_ms
        )

    async def _embed_batch(self, batch: list[Passage], source: str) -> list[VectorRecord]:
        async def _embed(passage: Passage) -> VectorRecord:
            try:
                vector = await with_timeout(
                    self.embedder.embed(passage.text),
                    self.timeouts.embed_seconds,
                    stage=Stage.INDEXING,
                )
            except EmbeddingError as exc:
                raise EmbeddingError(
                    f"{passage.record_id}: {exc.message}", stage=Stage.INDEXING
                ) from exc
            return VectorRecord(
                record_id=passage.record_id,
                vector=vector,
                metadata={"text": passage.text, "ordinal": passage.ordinal, "source": source},
            )

        return await gather_bounded(
            (_embed(passage) for passage in batch), limit=self.config.batch_size
        )


def _batched(passages: list[Passage], size: int) -> list[list[Passage]]:
    return [passages[i : i + size] for i in range(0, len(passages), size)]


def _wrap_build_error(exc: Exception) -> IndexBuildError:
    kind = type(exc).__name__
    message = exc.message if isinstance(exc, PipelineError) else str(exc)
    return IndexBuildError(f"{kind}: {message}", stage=Stage.INDEXING)
