"""Retrieval-augmented answering for a single query."""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from book_rag.config import CompletionConfig, RetrievalConfig, TimeoutConfig
from book_rag.errors import InvalidRequestError, PipelineError, Stage
from book_rag.generation.completion import SYSTEM_INSTRUCTION, CompletionClient
from book_rag.ingest.embedder import Embedder
from book_rag.ingest.indexer import IndexBuilder
from book_rag.obs.logging import log_latency
from book_rag.retrieval.concurrency import with_timeout
from book_rag.retrieval.vector_store import VectorStore
from book_rag.types import QueryContext, ScoredRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ResponderResult:
    answer: str
    context: QueryContext


class RetrievalAugmentedResponder:
    """Answers one question: index -> embed -> retrieve -> compose -> generate.

    Each step either succeeds or raises a `PipelineError` tagged with the
    failing `Stage`; no partial answer is returned. Query-path failures never
    touch the index status.
    """

    def __init__(
        self,
        *,
        index_builder: IndexBuilder,
        embedder: Embedder,
        vector_store: VectorStore,
        completion: CompletionClient,
        retrieval: RetrievalConfig | None = None,
        completion_config: CompletionConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ) -> None:
        self.index_builder = index_builder
        self.embedder = embedder
        self.vector_store = vector_store
        self.completion = completion
        self.retrieval = retrieval or RetrievalConfig()
        self.completion_config = completion_config or CompletionConfig()
        self.timeouts = timeouts or TimeoutConfig()
        self.system_instruction = system_instruction

    async def answer(self, query: str) -> str:
        result = await self.run(query)
        return result.answer

    @log_latency("rag_query")
    async def run(self, query: str) -> ResponderResult:
        if not isinstance(query, str) or not query.strip():
            raise InvalidRequestError("query must be a non-empty string", stage=Stage.VALIDATING)

        await self._stage(Stage.INDEXING, self.index_builder.ensure_index())

        ctx = QueryContext(query=query)
        ctx.embedding = await self._stage(
            Stage.EMBEDDING_QUERY,
            with_timeout(
                self.embedder.embed(query),
                self.timeouts.embed_seconds,
                stage=Stage.EMBEDDING_QUERY,
            ),
        )
        ctx.matches = await self._stage(
            Stage.RETRIEVING,
            with_timeout(
                self.vector_store.query(ctx.embedding, self.retrieval.top_k),
                self.timeouts.store_seconds,
                stage=Stage.RETRIEVING,
            ),
        )
        try:
            ctx.context = compose_context(ctx.matches)
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(
                f"{type(exc).__name__}: {exc}", stage=Stage.COMPOSING_CONTEXT
            ) from exc
        logger.debug("Composed context from %d passages", len(ctx.matches))

        answer = await self._stage(
            Stage.GENERATING,
            with_timeout(
                self.completion.complete(
                    self.system_instruction,
                    ctx.context,
                    query,
                    max_tokens=self.completion_config.max_tokens,
                    temperature=self.completion_config.temperature,
                ),
                self.timeouts.completion_seconds,
                stage=Stage.GENERATING,
            ),
        )
        return ResponderResult(answer=answer, context=ctx)

    @staticmethod
    async def _stage(stage: Stage, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = stage
            raise
        except Exception as exc:
            raise PipelineError(f"{type(exc).__name__}: {exc}", stage=stage) from exc


def compose_context(matches: list[ScoredRecord]) -> str:
    """Join passage texts with newlines, keeping the store's rank order.

    A hit without a string `text` payload cannot be placed in the context and
    fails the stage rather than contributing an empty line.
    """

    texts: list[str] = []
    for match in matches:
        text = match.record.metadata.get("text")
        if not isinstance(text, str):
            raise PipelineError(
                f"Passage {match.record.record_id} has no text payload",
                stage=Stage.COMPOSING_CONTEXT,
            )
        texts.append(text)
    return "\n".join(texts)
