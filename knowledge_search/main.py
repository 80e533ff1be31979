"""Composition root: builds a fully wired :class:`KnowledgeSearchService`.

The service is constructed once per process and passed to whoever needs
it; nothing here is a module-level singleton.

    Settings
      -> IEmbeddingProvider   (fastembed, else sentence-transformers)
      -> IEmbeddingService    (EmbeddingWorkerManager, or EmbeddingPipeline
                               when USE_WORKER=false)
      -> ChromaDBProvider     (dimension taken from the embedding provider)
      -> LocalTextExtractor   (TextChunker with the configured window)
      -> KnowledgeSearchService

Imports of heavy optional backends are deferred into the builders.
"""

from __future__ import annotations

import structlog

from knowledge_search.config.settings import Settings
from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.interfaces.embedding_service import IEmbeddingService
from knowledge_search.models.embedding import ModelInfo
from knowledge_search.pipeline.progress_tracker import ProgressTracker
from knowledge_search.services.chunker import TextChunker
from knowledge_search.services.embedding_pipeline import EmbeddingPipeline
from knowledge_search.services.embedding_worker import EmbeddingWorkerManager
from knowledge_search.services.knowledge_search_service import KnowledgeSearchService
from knowledge_search.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_ORDER = ("fastembed", "sentence_transformer")


def _make_provider(name: str, app_settings: Settings) -> IEmbeddingProvider:
    if name == "fastembed":
        from knowledge_search.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        return FastEmbedEmbeddingProvider(
            model_name=app_settings.embedding_model,
            max_tokens=app_settings.embedding_max_tokens,
        )
    if name == "sentence_transformer":
        from knowledge_search.providers.embedding.sentence_transformer_embedding_provider import (
            SentenceTransformerEmbeddingProvider,
        )

        return SentenceTransformerEmbeddingProvider(
            model_name=app_settings.embedding_model,
            max_tokens=app_settings.embedding_max_tokens,
        )
    raise ConfigurationError(message=f"Unknown embedding provider '{name}'")


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Return the configured embedding provider, falling back to the other
    local backend when its library is not installed.

    Raises:
        ConfigurationError: If no local backend is installed.
    """
    preferred = app_settings.embedding_provider
    if preferred not in _PROVIDER_ORDER:
        raise ConfigurationError(
            message=(
                f"Unknown embedding provider '{preferred}'. "
                f"Choose one of: {', '.join(_PROVIDER_ORDER)}"
            )
        )
    candidates = [preferred] + [p for p in _PROVIDER_ORDER if p != preferred]

    for name in candidates:
        provider = _make_provider(name, app_settings)
        if provider.is_available():
            if name != preferred:
                logger.warning("embedding_provider_fallback", requested=preferred, using=name)
            return provider

    raise ConfigurationError(
        message="No embedding backend installed. Install 'fastembed' or 'sentence-transformers'."
    )


def build_embedding_service(
    app_settings: Settings,
    provider: IEmbeddingProvider | None = None,
) -> IEmbeddingService:
    """Wrap the provider in a pipeline, isolated in a worker thread unless
    ``use_worker`` is off."""
    provider = provider or build_embedding_provider(app_settings)

    def pipeline_factory() -> EmbeddingPipeline:
        return EmbeddingPipeline(
            provider,
            batch_size=app_settings.embedding_batch_size,
            batch_delay_seconds=app_settings.embedding_batch_delay_seconds,
        )

    if not app_settings.use_worker:
        return pipeline_factory()

    return EmbeddingWorkerManager(
        pipeline_factory,
        request_timeout_seconds=app_settings.worker_request_timeout_seconds,
        model_info=ModelInfo(
            model=provider.get_model_name(),
            max_tokens=provider.get_max_tokens(),
            dimensions=provider.get_dimension(),
        ),
    )


def build_knowledge_search_service(
    app_settings: Settings | None = None,
    progress_tracker: ProgressTracker | None = None,
) -> KnowledgeSearchService:
    """Assemble the service from settings."""
    from knowledge_search.providers.extraction.local_text_extractor import LocalTextExtractor
    from knowledge_search.providers.vector_store.chromadb_provider import ChromaDBProvider

    app_settings = app_settings or Settings()
    provider = build_embedding_provider(app_settings)

    chunker = TextChunker(
        max_words_per_chunk=app_settings.chunk_max_words,
        overlap_words=app_settings.chunk_overlap_words,
        min_chunk_words=app_settings.chunk_min_words,
    )
    service = KnowledgeSearchService(
        embedding_service=build_embedding_service(app_settings, provider),
        vector_store=ChromaDBProvider(
            dimension=provider.get_dimension(),
            persist_directory=app_settings.chromadb_persist_dir,
            collection_name=app_settings.chromadb_collection,
        ),
        text_extractor=LocalTextExtractor(
            chunker,
            max_file_size_bytes=app_settings.max_file_size_bytes,
        ),
        settings=app_settings,
        progress_tracker=progress_tracker,
    )
    logger.info(
        "service_built",
        embedding=provider.get_provider_name(),
        worker=app_settings.use_worker,
        store="chromadb",
        persist_dir=app_settings.chromadb_persist_dir,
    )
    return service
