"""Abstract interfaces for every swappable collaborator.

Business logic depends only on these ABCs; concrete adapters live in
``knowledge_search/providers/`` and ``knowledge_search/services/`` and are
wired together in :mod:`knowledge_search.main`.

    Interface              ->  Implementations
    -----------------------------------------------------------------
    IEmbeddingProvider     ->  FastEmbedEmbeddingProvider,
                               SentenceTransformerEmbeddingProvider
    IEmbeddingService      ->  EmbeddingPipeline (in-process),
                               EmbeddingWorkerManager (isolated thread)
    IVectorStoreProvider   ->  ChromaDBProvider
    ITextExtractor         ->  LocalTextExtractor
"""

from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.interfaces.embedding_service import IEmbeddingService, ProgressCallback
from knowledge_search.interfaces.text_extractor import ITextExtractor
from knowledge_search.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IEmbeddingProvider",
    "IEmbeddingService",
    "ITextExtractor",
    "IVectorStoreProvider",
    "ProgressCallback",
]
