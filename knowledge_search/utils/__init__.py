"""Utility modules for knowledge-search.

- **errors** -- Domain exception hierarchy rooted at KnowledgeSearchError.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **relevance** -- Maps similarity scores to human-readable relevance bands.
"""

from knowledge_search.utils.errors import (
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    InitializationError,
    KnowledgeSearchError,
    StorageError,
    ValidationError,
    WorkerError,
    WorkerTerminatedError,
    WorkerTimeoutError,
)
from knowledge_search.utils.logging import configure_logging, get_logger
from knowledge_search.utils.relevance import RelevanceBand, relevance_band

__all__ = [
    "ConfigurationError",
    "EmbeddingError",
    "ExtractionError",
    "InitializationError",
    "KnowledgeSearchError",
    "RelevanceBand",
    "StorageError",
    "ValidationError",
    "WorkerError",
    "WorkerTerminatedError",
    "WorkerTimeoutError",
    "configure_logging",
    "get_logger",
    "relevance_band",
]
