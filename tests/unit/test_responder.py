import asyncio

import pytest
from conftest import CountingEmbedder, RecordingCompletion, RecordingStore

from book_rag.config import TimeoutConfig
from book_rag.errors import (
    CompletionError,
    InvalidRequestError,
    OperationTimeoutError,
    PipelineError,
    Stage,
    StoreQueryError,
)
from book_rag.generation.completion import SYSTEM_INSTRUCTION
from book_rag.generation.responder import RetrievalAugmentedResponder, compose_context
from book_rag.ingest.indexer import IndexState
from book_rag.types import ScoredRecord, VectorRecord


class _ReadyIndex:
    """Index builder stand-in for a store that is already populated."""

    def __init__(self) -> None:
        self.calls = 0

    async def ensure_index(self) -> None:
        self.calls += 1


async def test_single_record_store_returns_it_as_sole_context() -> None:
    embedder = CountingEmbedder()
    store = RecordingStore()
    await store.upsert(
        [
            VectorRecord(
                record_id="chunk_0",
                vector=await embedder.embed("Alpha is the first."),
                metadata={"text": "Alpha is the first."},
            )
        ]
    )
    completion = RecordingCompletion(answer="Alpha is the first letter.")
    responder = RetrievalAugmentedResponder(
        index_builder=_ReadyIndex(),
        embedder=embedder,
        vector_store=store,
        completion=completion,
    )

    result = await responder.run("What is Alpha?")

    assert result.answer == "Alpha is the first letter."
    assert result.context.context == "Alpha is the first."
    assert [m.record.record_id for m in result.context.matches] == ["chunk_0"]
    call = completion.calls[0]
    assert call["context"] == "Alpha is the first."
    assert call["query"] == "What is Alpha?"
    assert call["system_instruction"] == SYSTEM_INSTRUCTION
    assert call["max_tokens"] == 500
    assert call["temperature"] == 0.7


def test_context_preserves_rank_order_without_dedup() -> None:
    matches = [
        ScoredRecord(VectorRecord("chunk_9", [], {"text": "third best"}), 0.2, rank=1),
        ScoredRecord(VectorRecord("chunk_1", [], {"text": "second best"}), 0.5, rank=2),
        ScoredRecord(VectorRecord("chunk_4", [], {"text": "third best"}), 0.1, rank=3),
    ]

    assert compose_context(matches) == "third best\nsecond best\nthird best"


async def test_first_query_builds_index_then_answers(responder, index_builder, completion) -> None:
    answer = await responder.answer("What does topic 3 cover?")

    assert answer == completion.answer
    assert index_builder.status.state is IndexState.READY
    assert len(completion.calls[0]["context"].splitlines()) >= 5


async def test_concurrent_first_queries_trigger_one_build(responder, store, completion) -> None:
    answers = await asyncio.gather(
        responder.answer("What is topic 1?"), responder.answer("What is topic 2?")
    )

    assert answers == [completion.answer, completion.answer]
    upserted = [rid for batch in store.upserts for rid in batch]
    assert len(upserted) == len(set(upserted))
    assert await store.count() == len(upserted)


@pytest.mark.parametrize("query", ["", "   ", "\n\t"])
async def test_blank_query_is_rejected_before_any_work(responder, embedder, query) -> None:
    with pytest.raises(InvalidRequestError):
        await responder.answer(query)

    assert embedder.calls == 0
    assert responder.index_builder.status.state is IndexState.NOT_STARTED


async def test_query_failure_leaves_index_state_unchanged(responder, store, completion) -> None:
    await responder.answer("warm up")
    store.fail_queries = True

    with pytest.raises(StoreQueryError) as info:
        await responder.answer("What is topic 4?")

    assert info.value.stage is Stage.RETRIEVING
    assert "retrieving failed" in str(info.value)
    assert responder.index_builder.status.state is IndexState.READY
    assert len(completion.calls) == 1


async def test_completion_failure_is_tagged_with_generating_stage(index_builder, embedder, store) -> None:
    class _FailingCompletion(RecordingCompletion):
        async def complete(self, *args, **kwargs):
            raise CompletionError("rate limited")

    responder = RetrievalAugmentedResponder(
        index_builder=index_builder,
        embedder=embedder,
        vector_store=store,
        completion=_FailingCompletion(),
    )

    with pytest.raises(CompletionError) as info:
        await responder.answer("What is topic 5?")

    assert info.value.stage is Stage.GENERATING


async def test_unexpected_errors_are_wrapped_with_stage(index_builder, store, completion) -> None:
    class _BrokenEmbedder(CountingEmbedder):
        async def embed(self, text: str) -> list[float]:
            if text.startswith("Why"):
                raise KeyError("dimension")
            return await super().embed(text)

    responder = RetrievalAugmentedResponder(
        index_builder=index_builder,
        embedder=_BrokenEmbedder(),
        vector_store=store,
        completion=completion,
    )

    with pytest.raises(PipelineError) as info:
        await responder.answer("Why?")

    assert info.value.stage is Stage.EMBEDDING_QUERY
    assert completion.calls == []


class _SlowQueryStore(RecordingStore):
    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        await asyncio.sleep(1.0)
        return await super().query(vector, top_k)


class _FixedHitsStore(RecordingStore):
    def __init__(self, hits: list[ScoredRecord]) -> None:
        super().__init__()
        self.hits = hits

    async def query(self, vector: list[float], top_k: int) -> list[ScoredRecord]:
        return self.hits[:top_k]


async def test_slow_retrieval_times_out_with_retrieving_stage() -> None:
    completion = RecordingCompletion()
    responder = RetrievalAugmentedResponder(
        index_builder=_ReadyIndex(),
        embedder=CountingEmbedder(),
        vector_store=_SlowQueryStore(),
        completion=completion,
        timeouts=TimeoutConfig(store_seconds=0.01),
    )

    with pytest.raises(OperationTimeoutError) as info:
        await responder.answer("What is Alpha?")

    assert info.value.stage is Stage.RETRIEVING
    assert str(info.value).startswith("retrieving failed: timed out")
    assert completion.calls == []


async def test_hit_without_text_fails_composing_context_stage() -> None:
    hits = [
        ScoredRecord(VectorRecord("chunk_0", [], {"text": "Alpha is the first."}), 0.9, rank=1),
        ScoredRecord(VectorRecord("chunk_1", [], {"source": "book.pdf"}), 0.8, rank=2),
    ]
    completion = RecordingCompletion()
    responder = RetrievalAugmentedResponder(
        index_builder=_ReadyIndex(),
        embedder=CountingEmbedder(),
        vector_store=_FixedHitsStore(hits),
        completion=completion,
    )

    with pytest.raises(PipelineError) as info:
        await responder.answer("What is Alpha?")

    assert info.value.stage is Stage.COMPOSING_CONTEXT
    assert "chunk_1" in str(info.value)
    assert completion.calls == []
