"""Vector storage and search models.

:class:`VectorRecordMetadata` is denormalised onto every stored vector so a
search hit can be shown without looking the document up again.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from knowledge_search.models.documents import DocumentChunk, DocumentMetadata
from knowledge_search.models.embedding import EmbeddingResult, ModelInfo


class VectorRecordMetadata(BaseModel):
    """Per-record metadata stored next to each vector."""

    model_config = ConfigDict(frozen=True)

    document_filename: str
    document_type: str
    word_count: int = Field(ge=0)
    start_position: int = Field(ge=0)
    end_position: int = Field(ge=0)
    created_at: str = Field(description="ISO-8601 creation timestamp.")


class VectorRecord(BaseModel):
    """One stored vector: a successfully embedded chunk plus its metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    chunk_id: str
    chunk_index: int = Field(ge=0)
    text: str
    vector: list[float]
    metadata: VectorRecordMetadata


class SearchOptions(BaseModel):
    """Parameters for a nearest-neighbour query."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=10, gt=0)
    min_score: float = Field(default=0.0, ge=0.0, le=1.0)
    document_ids: list[str] | None = None
    include_metadata: bool = True


class SearchResult(BaseModel):
    """A raw vector search hit, ordered by ``score`` descending."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_filename: str
    text: str
    score: float = Field(ge=0.0, le=1.0, description="Cosine similarity.")
    chunk_index: int = Field(ge=0)
    metadata: dict[str, Any] | None = None


class EnhancedSearchResult(SearchResult):
    """A search hit with a query-focused snippet and a relevance label."""

    snippet: str = ""
    relevance_reason: str = ""


class SearchResponse(BaseModel):
    """Search outcome that keeps "failed" apart from "no matches"."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: list[EnhancedSearchResult] = Field(default_factory=list)
    success: bool = True
    error: str | None = None


class DocumentSummary(BaseModel):
    """One row of the stored-document listing."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    filename: str
    file_type: str
    chunk_count: int = Field(ge=0)
    created_at: str


class StorageStats(BaseModel):
    """Aggregate statistics about the vector store."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = 0
    total_chunks: int = 0
    total_vectors: int = 0
    database_size_kb: int = 0
    last_updated: datetime


class ServiceStats(StorageStats):
    """Storage statistics plus embedding model state."""

    embedding_model: ModelInfo
    is_ready: bool = False


class ProcessingOutcome(BaseModel):
    """Result of ingesting one document.

    ``success`` is False when extraction failed, no vectors were produced,
    or storage failed; ``error`` then carries the user-facing message and
    ``metadata.error_message`` repeats it.
    """

    model_config = ConfigDict(frozen=True)

    metadata: DocumentMetadata
    chunks: list[DocumentChunk] = Field(default_factory=list)
    embeddings: list[EmbeddingResult] = Field(default_factory=list)
    failed_chunk_ids: list[str] = Field(default_factory=list)
    success: bool
    error: str | None = None
    processing_time_ms: float = Field(default=0.0, ge=0.0)

    @property
    def success_rate(self) -> float:
        """Percentage of chunks that produced a stored vector."""
        if not self.chunks:
            return 0.0
        return len(self.embeddings) / len(self.chunks) * 100.0
