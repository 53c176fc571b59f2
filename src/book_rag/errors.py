"""Error hierarchy for the indexing and query pipeline.

Every error carries an optional `stage` naming the pipeline step that failed,
so the request boundary can report a single readable message.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Pipeline steps a request or build moves through."""

    VALIDATING = "validating"
    EXTRACTING = "extracting"
    SPLITTING = "splitting"
    INDEXING = "indexing"
    EMBEDDING_QUERY = "embedding query"
    RETRIEVING = "retrieving"
    COMPOSING_CONTEXT = "composing context"
    GENERATING = "generating answer"


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, *, stage: Stage | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        return f"{self.stage.value} failed: {self.message}"


class ExtractionError(PipelineError):
    """The document is missing, unreadable, or yields no text."""


class SplitError(PipelineError):
    """Splitting produced no passages."""


class EmbeddingError(PipelineError):
    """The embedding service failed or returned a malformed vector."""


class StoreWriteError(PipelineError):
    """A vector store upsert failed."""


class StoreQueryError(PipelineError):
    """A vector store similarity query failed."""


class CompletionError(PipelineError):
    """The completion service failed or returned no content."""


class IndexBuildError(PipelineError):
    """Wraps any failure raised while building the index."""


class InvalidRequestError(PipelineError):
    """The caller submitted an empty or malformed query."""


class OperationTimeoutError(PipelineError, TimeoutError):
    """A remote call exceeded its configured time limit."""
