"""Fixed-window passage splitting with character overlap."""

from __future__ import annotations

from book_rag.config import ChunkingConfig
from book_rag.errors import SplitError, Stage
from book_rag.types import Document, Passage


class FixedWindowSplitter:
    """Splits text into overlapping windows of at most `chunk_size` characters.

    Passage `i` starts at `i * (chunk_size - chunk_overlap)`. Splitting stops
    at the first window that reaches the end of the text, so the sequence
    covers the whole input without gaps and the last passage may be shorter.
    Boundaries depend only on the text length and the config, which keeps
    ordinal-derived record ids stable across runs.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.chunk_overlap >= self.config.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")

    @property
    def stride(self) -> int:
        return self.config.chunk_size - self.config.chunk_overlap

    def split(self, text: str) -> list[Passage]:
        passages: list[Passage] = []
        start = 0
        while start < len(text):
            end = start + self.config.chunk_size
            passages.append(Passage(ordinal=len(passages), text=text[start:end]))
            if end >= len(text):
                break
            start += self.stride
        return passages

    def split_document(self, document: Document) -> list[Passage]:
        passages = self.split(document.text)
        if not passages:
            raise SplitError(
                f"Document {document.source} produced no passages", stage=Stage.SPLITTING
            )
        return passages
