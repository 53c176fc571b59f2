"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Document:
    """The single source document: raw bytes and extracted text."""

    source: str
    content: bytes
    text: str


@dataclass(frozen=True, slots=True)
class Passage:
    """A contiguous, possibly overlapping slice of the document text."""

    ordinal: int
    text: str

    @property
    def record_id(self) -> str:
        return f"chunk_{self.ordinal}"


@dataclass(slots=True)
class VectorRecord:
    """The persisted unit in a vector store."""

    record_id: str
    vector: list[float]
    metadata: dict[str, Any]

    @property
    def text(self) -> str:
        return str(self.metadata.get("text", ""))


@dataclass(slots=True)
class ScoredRecord:
    """A similarity-search hit with its score and 1-based rank."""

    record: VectorRecord
    score: float
    rank: int = 0


@dataclass(slots=True)
class QueryContext:
    """Request-scoped state for one question."""

    query: str
    embedding: list[float] = field(default_factory=list)
    matches: list[ScoredRecord] = field(default_factory=list)
    context: str = ""
