"""Contract shared by the in-process embedding pipeline and the worker manager.

The search service only sees this interface, so it can embed either
directly on the event loop's thread pool (tests, small corpora) or through
the isolated worker thread (default).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from knowledge_search.models.documents import DocumentChunk
from knowledge_search.models.embedding import BatchEmbeddingResult, EmbeddingResult, ModelInfo

# (stage, progress percent 0..100, optional details)
ProgressCallback = Callable[[str, float, str | None], None]


class IEmbeddingService(ABC):
    """Turns chunks and queries into vectors with per-item failure tolerance."""

    @abstractmethod
    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Prepare the backend.  Idempotent; concurrent callers share one attempt."""

    @abstractmethod
    async def embed_one(self, text: str, chunk_id: str) -> EmbeddingResult:
        """Embed a single text.

        Raises
        ------
        knowledge_search.utils.errors.EmbeddingError
            If the backend fails for this text.
        """

    @abstractmethod
    async def embed_batch(
        self,
        chunks: list[DocumentChunk],
        on_progress: ProgressCallback | None = None,
    ) -> BatchEmbeddingResult:
        """Embed many chunks.  Per-chunk failures are collected, never raised."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return ``True`` once :meth:`initialize` has completed."""

    @abstractmethod
    def get_model_info(self) -> ModelInfo:
        """Describe the embedding model."""

    async def shutdown(self) -> None:
        """Release resources.  No-op unless overridden."""
