"""Local embedding backends (no network calls after the first model download)."""

from knowledge_search.providers.embedding.fastembed_embedding_provider import (
    FastEmbedEmbeddingProvider,
)
from knowledge_search.providers.embedding.sentence_transformer_embedding_provider import (
    SentenceTransformerEmbeddingProvider,
)

__all__ = ["FastEmbedEmbeddingProvider", "SentenceTransformerEmbeddingProvider"]
