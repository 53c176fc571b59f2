"""Book RAG package."""

from .config import ChunkingConfig, IndexingConfig, RetrievalConfig, Settings

__all__ = ["ChunkingConfig", "IndexingConfig", "RetrievalConfig", "Settings"]
