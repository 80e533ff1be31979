"""Vector store adapters."""

from knowledge_search.providers.vector_store.chromadb_provider import ChromaDBProvider

__all__ = ["ChromaDBProvider"]
