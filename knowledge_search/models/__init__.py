"""knowledge-search domain models -- re-exports all public model classes.

    - documents.py -- file types, document metadata, chunks, ingest status
    - embedding.py -- embedding results and batch aggregates
    - search.py    -- vector records, search options/results, stats
"""

from __future__ import annotations

from knowledge_search.models.documents import (
    SUPPORTED_MEDIA_TYPES,
    ChunkValidation,
    DocumentChunk,
    DocumentMetadata,
    ExtractionResult,
    FileType,
    ProcessingStatus,
    file_type_from_filename,
    guess_media_type,
)
from knowledge_search.models.embedding import (
    BatchEmbeddingResult,
    EmbeddingFailure,
    EmbeddingResult,
    ModelInfo,
)
from knowledge_search.models.search import (
    DocumentSummary,
    EnhancedSearchResult,
    ProcessingOutcome,
    SearchOptions,
    SearchResponse,
    SearchResult,
    ServiceStats,
    StorageStats,
    VectorRecord,
    VectorRecordMetadata,
)

__all__ = [
    "SUPPORTED_MEDIA_TYPES",
    "BatchEmbeddingResult",
    "ChunkValidation",
    "DocumentChunk",
    "DocumentMetadata",
    "DocumentSummary",
    "EmbeddingFailure",
    "EmbeddingResult",
    "EnhancedSearchResult",
    "ExtractionResult",
    "FileType",
    "ModelInfo",
    "ProcessingOutcome",
    "ProcessingStatus",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "ServiceStats",
    "StorageStats",
    "VectorRecord",
    "VectorRecordMetadata",
    "file_type_from_filename",
    "guess_media_type",
]
