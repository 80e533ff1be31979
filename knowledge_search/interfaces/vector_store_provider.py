"""Abstract base class for vector storage and similarity search.

Every operation is async and initializes the store implicitly on first
use.  Scores returned by :meth:`search` are similarities where larger means
closer, in [0.0, 1.0].
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_search.models.documents import DocumentChunk, DocumentMetadata
from knowledge_search.models.embedding import EmbeddingResult
from knowledge_search.models.search import (
    DocumentSummary,
    SearchOptions,
    SearchResult,
    StorageStats,
)


# Concrete implementation:
#   ChromaDBProvider -- local persistent ChromaDB, cosine space
# Located in: knowledge_search/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for the vector store backing document search."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open or create the backing collection.  Idempotent.

        Raises
        ------
        knowledge_search.utils.errors.StorageError
            If the engine cannot be reached.
        """

    @abstractmethod
    async def store_embeddings(
        self,
        chunks: list[DocumentChunk],
        embeddings: list[EmbeddingResult],
        document: DocumentMetadata,
    ) -> int:
        """Store one record per chunk that has a matching embedding.

        Chunks are joined to embeddings by chunk id; chunks without an
        embedding are dropped.

        Returns
        -------
        int
            Number of records inserted.

        Raises
        ------
        knowledge_search.utils.errors.StorageError
            If no record would be inserted or the bulk insert fails.
        """

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Return up to ``options.limit`` hits scoring at least ``options.min_score``."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> int:
        """Delete every record of a document.  Unknown ids are a no-op.

        Returns
        -------
        int
            Number of records removed.
        """

    @abstractmethod
    async def list_documents(self) -> list[DocumentSummary]:
        """Return one summary per stored document, newest first."""

    @abstractmethod
    async def get_stats(self) -> StorageStats:
        """Return aggregate counts and an estimated footprint."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Remove every record."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return ``True`` once :meth:`initialize` has succeeded."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"chromadb"``."""
