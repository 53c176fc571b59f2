"""Text extraction from raw document bytes."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

import fitz

from book_rag.errors import ExtractionError, Stage
from book_rag.types import Document

logger = logging.getLogger(__name__)


class Extractor(ABC):
    """Base extractor interface used by the index builder."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def extract(self, content: bytes, *, source: str) -> str:
        """Convert raw bytes into plain text."""


class PdfExtractor(Extractor):
    """Extracts page text from PDF bytes with PyMuPDF, one page per line block."""

    extensions = (".pdf",)

    def extract(self, content: bytes, *, source: str) -> str:
        try:
            with fitz.open(stream=content, filetype="pdf") as doc:
                pages = [page.get_text("text") for page in doc]
        except Exception as exc:
            raise ExtractionError(
                f"Could not read PDF {source}: {exc}", stage=Stage.EXTRACTING
            ) from exc
        return "\n".join(pages)


class PlainTextExtractor(Extractor):
    """Decodes UTF-8 text and markdown documents."""

    extensions = (".txt", ".md", ".markdown")

    def extract(self, content: bytes, *, source: str) -> str:
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ExtractionError(
                f"Document {source} is not valid UTF-8 text", stage=Stage.EXTRACTING
            ) from exc


class ExtractorRegistry:
    """Maps file extension to extractor implementation."""

    def __init__(self, extractors: list[Extractor] | None = None) -> None:
        self._extractors: dict[str, Extractor] = {}
        for extractor in extractors or [PdfExtractor(), PlainTextExtractor()]:
            self.register(extractor)

    def register(self, extractor: Extractor) -> None:
        for extension in extractor.extensions:
            self._extractors[extension.lower()] = extractor

    def for_source(self, source: str) -> Extractor:
        suffix = Path(source).suffix.lower()
        extractor = self._extractors.get(suffix)
        if extractor is None:
            raise ExtractionError(
                f"No extractor registered for extension: {suffix or '<none>'}",
                stage=Stage.EXTRACTING,
            )
        return extractor

    def extract(self, content: bytes, *, source: str) -> Document:
        """Extract and validate text; empty bytes or empty text are failures."""

        if not content:
            raise ExtractionError(f"Document {source} is empty", stage=Stage.EXTRACTING)
        text = self.for_source(source).extract(content, source=source)
        if not text or not text.strip():
            raise ExtractionError(
                f"No extractable text found in {source}", stage=Stage.EXTRACTING
            )
        return Document(source=source, content=content, text=text)


class DocumentLoader:
    """Reads the configured document from disk and extracts its text."""

    def __init__(self, path: str | Path, registry: ExtractorRegistry | None = None) -> None:
        self.path = Path(path)
        self.registry = registry or ExtractorRegistry()

    def load(self) -> Document:
        if not self.path.is_file():
            raise ExtractionError(
                f"Document not found: {self.path}", stage=Stage.EXTRACTING
            )
        try:
            content = self.path.read_bytes()
        except OSError as exc:
            raise ExtractionError(
                f"Could not read {self.path}: {exc}", stage=Stage.EXTRACTING
            ) from exc

        document = self.registry.extract(content, source=str(self.path))
        logger.info("Extracted %d characters from %s", len(document.text), self.path)
        return document
