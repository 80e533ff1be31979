"""Embedding pipeline models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingResult(BaseModel):
    """A vector generated for one chunk (or a search query)."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    embedding: list[float] = Field(description="Unit-length embedding vector.")
    token_count: int = Field(ge=0, description="Estimated tokens (characters / 4).")
    processing_time_ms: float = Field(default=0.0, ge=0.0)


class EmbeddingFailure(BaseModel):
    """A chunk whose embedding failed inside a batch."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    error: str


class BatchEmbeddingResult(BaseModel):
    """Aggregate outcome of embedding a list of chunks.

    ``success_count`` always equals ``len(results)``; failed chunk ids
    appear only in ``errors``.
    """

    model_config = ConfigDict(frozen=True)

    results: list[EmbeddingResult] = Field(default_factory=list)
    errors: list[EmbeddingFailure] = Field(default_factory=list)
    success_count: int = Field(default=0, ge=0)
    total_processing_time_ms: float = Field(default=0.0, ge=0.0)


class ModelInfo(BaseModel):
    """Describes the loaded embedding model."""

    model_config = ConfigDict(frozen=True)

    model: str
    max_tokens: int
    dimensions: int
    is_ready: bool = False
