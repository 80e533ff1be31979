"""Top-level knowledge search service.

Ties the ingest path and the query path together:

    ingest:  bytes -> ITextExtractor -> chunks -> IEmbeddingService.embed_batch
                   -> IVectorStoreProvider.store_embeddings
    query:   text  -> IEmbeddingService.embed_one -> IVectorStoreProvider.search
                   -> snippet + relevance label

Lifecycle is an explicit state value, ``_Uninitialized -> _Initializing(task)
-> _Ready``.  Concurrent callers during ``_Initializing`` await the same
task; if it fails the state drops back to ``_Uninitialized`` and every
waiter receives the same :class:`InitializationError`.

``process_document`` never raises: every failure is reported as a
:class:`ProcessingOutcome` with ``success=False`` and a user-facing error,
while diagnostics go to the log.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from knowledge_search.config.settings import Settings
from knowledge_search.interfaces.embedding_service import IEmbeddingService, ProgressCallback
from knowledge_search.interfaces.text_extractor import ITextExtractor
from knowledge_search.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_search.models.documents import (
    DocumentMetadata,
    ProcessingStatus,
    file_type_from_filename,
    guess_media_type,
)
from knowledge_search.models.search import (
    DocumentSummary,
    EnhancedSearchResult,
    ProcessingOutcome,
    SearchOptions,
    SearchResponse,
    SearchResult,
    ServiceStats,
)
from knowledge_search.pipeline.progress_tracker import ProgressTracker, report_progress
from knowledge_search.utils.errors import InitializationError, KnowledgeSearchError
from knowledge_search.utils.relevance import relevance_band

logger = structlog.get_logger(logger_name=__name__)

SNIPPET_WINDOW_WORDS = 20
SNIPPET_WORDS = 25
SNIPPET_MAX_LENGTH = 150

# Embedding progress (0-100 from the pipeline) is mapped into this range.
_EMBED_PROGRESS_START = 30.0
_EMBED_PROGRESS_END = 70.0


# ---------------------------------------------------------------------------
# Lifecycle states
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class _Uninitialized:
    pass


@dataclass(frozen=True)
class _Initializing:
    task: asyncio.Task[None]


@dataclass(frozen=True)
class _Ready:
    pass


_State = _Uninitialized | _Initializing | _Ready


# ---------------------------------------------------------------------------
# Query-time enrichment helpers
# ---------------------------------------------------------------------------
def generate_snippet(text: str, query: str, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    """Pick the passage of *text* that shows the most query terms.

    Every 20-word window is scored by how many distinct lowercase query
    terms occur in it; the first best window anchors a 25-word snippet,
    cut to *max_length* characters with a trailing ``...`` and prefixed
    with ``...`` when it does not start at the first word.
    """
    words = text.split()
    terms = list(dict.fromkeys(query.lower().split()))

    best_start = 0
    best_score = 0
    for start in range(max(0, len(words) - SNIPPET_WINDOW_WORDS)):
        window = " ".join(words[start : start + SNIPPET_WINDOW_WORDS]).lower()
        score = sum(1 for term in terms if term in window)
        if score > best_score:
            best_score = score
            best_start = start

    snippet = " ".join(words[best_start : best_start + SNIPPET_WORDS])
    if len(snippet) > max_length:
        snippet = snippet[:max_length] + "..."
    if best_start > 0:
        snippet = "..." + snippet
    return snippet


def enhance_result(result: SearchResult, query: str) -> EnhancedSearchResult:
    return EnhancedSearchResult(
        **result.model_dump(),
        snippet=generate_snippet(result.text, query),
        relevance_reason=relevance_band(result.score).value,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class KnowledgeSearchService:
    """Document ingestion and semantic search over local collaborators.

    Parameters
    ----------
    embedding_service:
        Embeds chunks and queries (in-process pipeline or worker manager).
    vector_store:
        Stores and searches vectors.
    text_extractor:
        Turns uploaded bytes into chunked text.
    settings:
        Supplies search defaults; a default :class:`Settings` is used when
        omitted.
    progress_tracker:
        Receives the ingest status projection.  A private one is created
        when omitted.
    """

    def __init__(
        self,
        embedding_service: IEmbeddingService,
        vector_store: IVectorStoreProvider,
        text_extractor: ITextExtractor,
        settings: Settings | None = None,
        progress_tracker: ProgressTracker | None = None,
    ) -> None:
        self._embedding = embedding_service
        self._store = vector_store
        self._extractor = text_extractor
        self._settings = settings or Settings()
        self._tracker = progress_tracker or ProgressTracker()
        self._state: _State = _Uninitialized()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        """Bring up the embedding model and the vector store.  Idempotent."""
        state = self._state
        if isinstance(state, _Ready):
            return
        if isinstance(state, _Uninitialized):
            task = asyncio.ensure_future(self._initialize(on_progress))
            state = _Initializing(task)
            self._state = state
        await asyncio.shield(state.task)

    async def _initialize(self, on_progress: ProgressCallback | None) -> None:
        start = time.monotonic()
        try:
            report_progress(on_progress, "Initializing AI models...", 10)
            await self._embedding.initialize()
            report_progress(on_progress, "AI models loaded", 50)
            await self._store.initialize()
            report_progress(on_progress, "Vector database ready", 80)
        except Exception as exc:
            self._state = _Uninitialized()
            logger.error("service_init_failed", error=str(exc))
            if isinstance(exc, InitializationError):
                raise
            raise InitializationError(
                message=f"Failed to initialize knowledge search: {exc}",
            ) from exc

        self._state = _Ready()
        report_progress(on_progress, "System ready", 100)
        logger.info(
            "service_ready",
            model=self._embedding.get_model_info().model,
            store=self._store.get_provider_name(),
            elapsed_ms=round((time.monotonic() - start) * 1000, 1),
        )

    def is_ready(self) -> bool:
        return isinstance(self._state, _Ready)

    @property
    def processing_status(self) -> ProcessingStatus:
        return self._tracker.status

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._tracker

    async def shutdown(self) -> None:
        await self._embedding.shutdown()
        self._state = _Uninitialized()

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def process_file(
        self,
        path: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessingOutcome:
        """Read a file from disk and :meth:`process_document` it."""
        file_path = Path(path)
        try:
            data = await asyncio.to_thread(file_path.read_bytes)
        except OSError as exc:
            logger.error("file_read_failed", path=str(file_path), error=str(exc))
            return self._failed_outcome(file_path.name, 0, f"Could not read file: {exc}", 0.0)
        return await self.process_document(
            data,
            file_path.name,
            guess_media_type(file_path.name),
            on_progress,
        )

    async def process_document(
        self,
        data: bytes,
        filename: str,
        media_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessingOutcome:
        """Extract, chunk, embed and store one document.

        Stages reported through *on_progress*: extraction (0-20), embedding
        (30-70, with the success ratio), storage (80-100).
        """
        start = time.monotonic()
        log = logger.bind(filename=filename)
        await self._tracker.start(filename)
        try:
            await self.initialize()

            await self._tracker.update("Processing document...", 0, "Extracting text", on_progress)
            extraction = await self._extractor.extract(data, filename, media_type)
            if not extraction.success:
                log.warning("document_extraction_failed", error=extraction.error)
                return ProcessingOutcome(
                    metadata=extraction.metadata,
                    success=False,
                    error=extraction.error,
                    processing_time_ms=_elapsed_ms(start),
                )

            chunks = extraction.chunks
            await self._tracker.update(
                "Text extracted successfully", 20, f"{len(chunks)} chunks created", on_progress
            )

            await self._tracker.update(
                "Generating embeddings...", _EMBED_PROGRESS_START, None, on_progress
            )

            def _on_embed_progress(stage: str, progress: float, details: str | None) -> None:
                span = _EMBED_PROGRESS_END - _EMBED_PROGRESS_START
                self._tracker.update_nowait(
                    stage, _EMBED_PROGRESS_START + progress / 100 * span, details, on_progress
                )

            batch = await self._embedding.embed_batch(chunks, on_progress=_on_embed_progress)
            total = len(chunks)
            rate = batch.success_count / total * 100 if total else 0.0
            await self._tracker.update(
                "Embeddings generated",
                _EMBED_PROGRESS_END,
                f"{batch.success_count}/{total} chunks ({rate:.0f}%)",
                on_progress,
            )
            failed_ids = [f.chunk_id for f in batch.errors]

            if batch.success_count == 0:
                error = "Failed to generate embeddings for any chunk"
                log.error("document_embedding_failed", chunks=total)
                return ProcessingOutcome(
                    metadata=extraction.metadata.model_copy(update={"error_message": error}),
                    chunks=chunks,
                    failed_chunk_ids=failed_ids,
                    success=False,
                    error=error,
                    processing_time_ms=_elapsed_ms(start),
                )

            await self._tracker.update(
                "Storing in vector database...", 80, "Indexing for search", on_progress
            )
            await self._store.store_embeddings(chunks, batch.results, extraction.metadata)
            await self._tracker.update(
                "Storage complete", 100, "Document ready for search", on_progress
            )

            metadata = extraction.metadata.model_copy(
                update={
                    "chunk_count": len(chunks),
                    "last_indexed": datetime.now(tz=timezone.utc),  # noqa: UP017
                }
            )
            elapsed = _elapsed_ms(start)
            log.info(
                "document_processed",
                document_id=metadata.id,
                chunks=total,
                embedded=batch.success_count,
                failed=len(failed_ids),
                elapsed_ms=round(elapsed, 1),
            )
            return ProcessingOutcome(
                metadata=metadata,
                chunks=chunks,
                embeddings=batch.results,
                failed_chunk_ids=failed_ids,
                success=True,
                processing_time_ms=elapsed,
            )

        except Exception as exc:
            log.exception("document_processing_failed", error=str(exc))
            message = exc.message if isinstance(exc, KnowledgeSearchError) else str(exc)
            return self._failed_outcome(filename, len(data), message, _elapsed_ms(start))
        finally:
            await self._tracker.finish()

    @staticmethod
    def _failed_outcome(
        filename: str,
        size: int,
        error: str,
        elapsed_ms: float,
    ) -> ProcessingOutcome:
        metadata = DocumentMetadata(
            id=f"error_{_now_ms()}",
            filename=filename,
            file_size=size,
            file_type=file_type_from_filename(filename),
            error_message=error,
        )
        return ProcessingOutcome(
            metadata=metadata,
            success=False,
            error=error,
            processing_time_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[EnhancedSearchResult]:
        """Semantic search.  Blank queries return ``[]`` without any backend call.

        Raises:
            KnowledgeSearchError: If embedding or the vector search fails.
                Use :meth:`search_safe` for a non-raising variant.
        """
        if not query or not query.strip():
            return []

        await self.initialize()
        options = self._with_search_defaults(options)

        start = time.monotonic()
        query_embedding = await self._embedding.embed_one(query.strip(), f"query_{_now_ms()}")
        hits = await self._store.search(query_embedding.embedding, options)
        results = [enhance_result(hit, query) for hit in hits]

        logger.info(
            "search_complete",
            query_length=len(query),
            results=len(results),
            top_score=results[0].score if results else 0.0,
            elapsed_ms=round(_elapsed_ms(start), 1),
        )
        return results

    def _with_search_defaults(self, options: SearchOptions | None) -> SearchOptions:
        """Fill limit and min_score from settings unless the caller set them."""
        defaults = {
            "limit": self._settings.search_default_limit,
            "min_score": self._settings.search_default_min_score,
        }
        if options is None:
            return SearchOptions(**defaults)
        missing = {k: v for k, v in defaults.items() if k not in options.model_fields_set}
        return options.model_copy(update=missing) if missing else options

    async def search_safe(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        """Like :meth:`search` but reports failure in the response."""
        try:
            results = await self.search(query, options)
        except Exception as exc:
            logger.exception("search_failed", error=str(exc))
            message = exc.message if isinstance(exc, KnowledgeSearchError) else str(exc)
            return SearchResponse(query=query, success=False, error=f"Search failed: {message}")
        return SearchResponse(query=query, results=results)

    # ------------------------------------------------------------------
    # Document management
    # ------------------------------------------------------------------

    async def get_documents(self) -> list[DocumentSummary]:
        await self.initialize()
        return await self._store.list_documents()

    async def delete_document(self, document_id: str) -> int:
        await self.initialize()
        deleted = await self._store.delete_document(document_id)
        logger.info("document_deleted", document_id=document_id, records=deleted)
        return deleted

    async def get_stats(self) -> ServiceStats:
        await self.initialize()
        storage = await self._store.get_stats()
        return ServiceStats(
            **storage.model_dump(),
            embedding_model=self._embedding.get_model_info(),
            is_ready=self.is_ready(),
        )

    async def clear_all(self) -> None:
        await self.initialize()
        await self._store.clear_all()
        logger.info("all_documents_cleared")


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000
