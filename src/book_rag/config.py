"""Configuration models for the book RAG system."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures fixed-window character chunking."""

    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self


class IndexingConfig(BaseModel):
    """Configures batched embedding and upload during index builds."""

    batch_size: int = Field(default=100, ge=1)


class RetrievalConfig(BaseModel):
    top_k: int = Field(default=5, ge=1)


class CompletionConfig(BaseModel):
    """Configures the chat model used for answer synthesis."""

    model: str = "gpt-3.5-turbo"
    max_tokens: int = Field(default=500, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class TimeoutConfig(BaseModel):
    """Per-call timeouts in seconds. `None` disables the limit."""

    embed_seconds: float | None = Field(default=30.0, gt=0.0)
    store_seconds: float | None = Field(default=30.0, gt=0.0)
    completion_seconds: float | None = Field(default=60.0, gt=0.0)


class Settings(BaseSettings):
    """Environment-driven settings.

    Application options use the `BOOK_RAG_` prefix; provider credentials keep
    their conventional names (`OPENAI_API_KEY`, `QDRANT_URL`, `QDRANT_API_KEY`).
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOK_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    document_path: str = "data/book.pdf"
    vector_backend: Literal["memory", "faiss", "qdrant"] = "memory"
    collection_name: str = "book"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int | None = Field(default=None, ge=1)
    completion_model: str = "gpt-3.5-turbo"
    log_level: str = "INFO"
    warm_up_on_startup: bool = False

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "BOOK_RAG_OPENAI_API_KEY"),
    )
    qdrant_url: str = Field(
        default="http://localhost:6333",
        validation_alias=AliasChoices("QDRANT_URL", "BOOK_RAG_QDRANT_URL"),
    )
    qdrant_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("QDRANT_API_KEY", "BOOK_RAG_QDRANT_API_KEY"),
    )

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    def completion_config(self) -> CompletionConfig:
        return CompletionConfig(model=self.completion_model)


@lru_cache
def get_settings() -> Settings:
    return Settings()
