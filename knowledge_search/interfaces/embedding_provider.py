"""Abstract base class for local text-embedding backends.

An embedding backend is a black box mapping text to a fixed-length float
vector.  It must be deterministic for identical input and its dimension
must stay constant for the provider's lifetime, since every vector in the
store shares it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   FastEmbedEmbeddingProvider            -- ONNX Runtime, default
#   SentenceTransformerEmbeddingProvider  -- PyTorch, optional extra
# Located in: knowledge_search/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for embedding backends driven by the embedding pipeline."""

    @abstractmethod
    async def initialize(self) -> None:
        """Load the model.  Must be safe to call more than once.

        Raises
        ------
        knowledge_search.utils.errors.InitializationError
            If the model cannot be loaded.
        """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Text strings, each already truncated to :meth:`get_max_tokens`.

        Returns
        -------
        list[list[float]]
            One vector per input, positionally aligned with *texts*.

        Raises
        ------
        knowledge_search.utils.errors.EmbeddingError
            If inference fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of produced vectors (e.g. ``384``)."""

    @abstractmethod
    def get_max_tokens(self) -> int:
        """Return the model's maximum input length in tokens."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier, e.g. ``"sentence-transformers/all-MiniLM-L6-v2"``."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for logs, e.g. ``"fastembed_all-MiniLM-L6-v2"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backing library is installed."""
