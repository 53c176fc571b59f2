"""FastAPI entrypoint for chat/health/trace endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from book_rag.config import Settings, get_settings
from book_rag.errors import InvalidRequestError, OperationTimeoutError, PipelineError
from book_rag.generation.completion import (
    ChatCompletionClient,
    CompletionClient,
    ExtractiveCompletionClient,
)
from book_rag.generation.responder import RetrievalAugmentedResponder
from book_rag.ingest.embedder import Embedder, HashingEmbedder, OpenAIEmbedder
from book_rag.ingest.extractor import DocumentLoader
from book_rag.ingest.indexer import IndexBuilder, IndexStatus
from book_rag.ingest.splitter import FixedWindowSplitter
from book_rag.obs.logging import setup_logging
from book_rag.obs.tracing import Timer, TraceStore
from book_rag.retrieval.vector_store import (
    FaissVectorStore,
    InMemoryVectorStore,
    QdrantVectorStore,
    VectorStore,
)

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    query: str = ""


def _create_embedder(settings: Settings) -> Embedder:
    if not settings.openai_api_key:
        return HashingEmbedder()
    return OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
    )


def _create_completion(settings: Settings) -> CompletionClient:
    if not settings.openai_api_key:
        return ExtractiveCompletionClient()
    return ChatCompletionClient(api_key=settings.openai_api_key, model=settings.completion_model)


def _create_vector_store(settings: Settings, embedder: Embedder) -> VectorStore:
    if settings.vector_backend == "qdrant":
        return QdrantVectorStore(
            collection=settings.collection_name,
            dimension=embedder.dimension,
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
        )
    if settings.vector_backend == "faiss":
        return FaissVectorStore()
    return InMemoryVectorStore()


def build_responder(settings: Settings) -> RetrievalAugmentedResponder:
    """Wire the pipeline from settings; nothing touches the network here."""

    embedder = _create_embedder(settings)
    vector_store = _create_vector_store(settings, embedder)
    index_builder = IndexBuilder(
        source=DocumentLoader(settings.document_path),
        splitter=FixedWindowSplitter(settings.chunking),
        embedder=embedder,
        vector_store=vector_store,
        status=IndexStatus(),
        config=settings.indexing,
        timeouts=settings.timeouts,
    )
    return RetrievalAugmentedResponder(
        index_builder=index_builder,
        embedder=embedder,
        vector_store=vector_store,
        completion=_create_completion(settings),
        retrieval=settings.retrieval,
        completion_config=settings.completion_config(),
        timeouts=settings.timeouts,
    )


def _error_status(exc: PipelineError) -> int:
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, OperationTimeoutError) or isinstance(
        exc.__cause__, OperationTimeoutError
    ):
        return 504
    return 500


def create_app(
    responder: RetrievalAugmentedResponder | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    responder = responder or build_responder(settings)
    trace_store = TraceStore()
    llm_configured = isinstance(responder.completion, ChatCompletionClient)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if settings.warm_up_on_startup:
            try:
                await responder.index_builder.ensure_index()
            except PipelineError as exc:
                # Deferred: the first query retries the build.
                logger.warning("Index warm-up failed: %s", exc)
        yield

    app = FastAPI(title="Book RAG", version="0.1.0", lifespan=lifespan)
    app.state.responder = responder
    app.state.trace_store = trace_store

    @app.exception_handler(RequestValidationError)
    async def invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": f"invalid request: {exc.errors()}"}, status_code=400)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        status = responder.index_builder.status
        try:
            stored = await responder.vector_store.count()
        except PipelineError:
            stored = -1
        return {
            "status": "ok",
            "index_state": status.state.value,
            "index_error": status.last_error,
            "stored_records": stored,
            "llm_configured": llm_configured,
            "completion_mode": "chat" if llm_configured else "extractive",
        }

    @app.post("/api/chat")
    async def chat(request: ChatRequest) -> JSONResponse:
        with Timer() as timer:
            try:
                result = await responder.run(request.query)
            except PipelineError as exc:
                error = str(exc)
                failure = exc
            else:
                error = None
                failure = None

        if failure is not None:
            logger.error("Query failed: %s", error)
            trace_store.create_record(
                query=request.query,
                failed_stage=failure.stage.value if failure.stage else None,
                error=error,
                latency_ms=timer.elapsed_ms,
            )
            return JSONResponse({"error": error}, status_code=_error_status(failure))

        trace_store.create_record(
            query=request.query,
            answer=result.answer,
            context_ids=[match.record.record_id for match in result.context.matches],
            latency_ms=timer.elapsed_ms,
        )
        return JSONResponse({"answer": result.answer})

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


def _default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)
    return create_app(settings=settings)


app = _default_app()
