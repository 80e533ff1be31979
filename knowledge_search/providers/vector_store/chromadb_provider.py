"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement
:class:`IVectorStoreProvider`.  The collection uses cosine space, so the
engine reports a *distance* in [0, 2] where smaller is closer.  Scores we
return are similarities, ``1 - distance`` clamped to [0, 1], which makes
``min_score`` filtering "larger is better".

All chromadb calls are blocking and run through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# ChromaDB ships PostHog telemetry; disable it before the import so a
# mismatched posthog client cannot break collection calls.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog
from chromadb.utils.embedding_functions import register_embedding_function

from knowledge_search.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_search.models.documents import DocumentChunk, DocumentMetadata
from knowledge_search.models.embedding import EmbeddingResult
from knowledge_search.models.search import (
    DocumentSummary,
    SearchOptions,
    SearchResult,
    StorageStats,
    VectorRecord,
    VectorRecordMetadata,
)
from knowledge_search.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

# Rough per-record footprint (text + vector + metadata) for size estimates.
AVG_RECORD_SIZE_BYTES = 2000
_PAGE_SIZE = 5000
_PLACEHOLDER_ID = "sample"


@register_embedding_function
class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default model.

    Every vector we store or query with is computed by the embedding
    pipeline, so the collection's own embedding function is never called.
    Registered so a persisted collection config can be loaded by name.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise StorageError(
            message=(
                "knowledge-search stores pre-computed embeddings; "
                "ChromaDB's built-in embedding should never be called."
            ),
            provider_name="chromadb",
        )

    @staticmethod
    def name() -> str:
        return "noop_precomputed"

    def get_config(self) -> dict[str, Any]:
        return {}

    @staticmethod
    def build_from_config(config: dict[str, Any]) -> _NoopEmbeddingFunction:
        return _NoopEmbeddingFunction()


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store backed by a local persistent ChromaDB collection.

    Parameters
    ----------
    dimension:
        Vector length produced by the embedding backend.  Used for the
        placeholder record and checked against existing data.
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_name:
        Collection holding every document's records.
    """

    def __init__(
        self,
        dimension: int,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "document_embeddings",
    ) -> None:
        self._dimension = dimension
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client: Any = None
        self._collection: Any = None
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._collection is not None:
            return
        async with self._init_lock:
            if self._collection is not None:
                return
            try:
                self._collection = await asyncio.to_thread(self._open_collection)
            except StorageError:
                raise
            except Exception as exc:
                logger.error("chromadb_init_failed", error=str(exc))
                raise StorageError(
                    message=f"Vector storage initialization failed: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    def _open_collection(self) -> Any:
        Path(self._persist_directory).mkdir(parents=True, exist_ok=True)
        self._client = chromadb.PersistentClient(
            path=self._persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )

        existing = {getattr(c, "name", c) for c in self._client.list_collections()}
        created = self._collection_name not in existing

        # Collections persisted by other chromadb versions may refuse a
        # different embedding function; reopen without one in that case.
        try:
            collection = self._client.get_or_create_collection(
                name=self._collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            collection = self._client.get_or_create_collection(
                name=self._collection_name,
                metadata={"hnsw:space": "cosine"},
            )

        if created:
            self._seed_schema(collection)
            logger.info("chromadb_collection_created", collection=self._collection_name)
        else:
            self._validate_dimension(collection)
            logger.info(
                "chromadb_collection_opened",
                collection=self._collection_name,
                records=collection.count(),
            )
        return collection

    def _seed_schema(self, collection: Any) -> None:
        """Insert and remove one placeholder so the index dimension is fixed."""
        placeholder = [0.0] * self._dimension
        placeholder[0] = 1.0
        collection.add(
            ids=[_PLACEHOLDER_ID],
            embeddings=[placeholder],
            documents=["sample text"],
            metadatas=[
                {
                    "document_id": _PLACEHOLDER_ID,
                    "chunk_id": _PLACEHOLDER_ID,
                    "chunk_index": 0,
                    "document_filename": "sample.txt",
                    "document_type": "txt",
                    "word_count": 2,
                    "start_position": 0,
                    "end_position": 11,
                    "created_at": _now_iso(),
                }
            ],
        )
        collection.delete(ids=[_PLACEHOLDER_ID])

    def _validate_dimension(self, collection: Any) -> None:
        if collection.count() == 0:
            return
        sample = collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return
        stored = len(embeddings[0])
        if stored != self._dimension:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored,
                expected_dim=self._dimension,
            )
            raise StorageError(
                message=(
                    f"Embedding dimension mismatch: collection '{self._collection_name}' "
                    f"holds {stored}-dim vectors but the embedding model produces "
                    f"{self._dimension}-dim vectors."
                ),
                provider_name=self.get_provider_name(),
            )

    def is_ready(self) -> bool:
        return self._collection is not None

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store_embeddings(
        self,
        chunks: list[DocumentChunk],
        embeddings: list[EmbeddingResult],
        document: DocumentMetadata,
    ) -> int:
        await self.initialize()

        vectors = {e.chunk_id: e.embedding for e in embeddings}
        created_at = _now_iso()
        records = [
            VectorRecord(
                id=str(uuid.uuid4()),
                document_id=chunk.document_id,
                chunk_id=chunk.id,
                chunk_index=chunk.chunk_index,
                text=chunk.text,
                vector=vectors[chunk.id],
                metadata=VectorRecordMetadata(
                    document_filename=document.filename,
                    document_type=document.file_type.value,
                    word_count=chunk.word_count,
                    start_position=chunk.start_position,
                    end_position=chunk.end_position,
                    created_at=created_at,
                ),
            )
            for chunk in chunks
            if chunk.id in vectors
        ]

        if not records:
            raise StorageError(
                message="No valid embeddings to store",
                provider_name=self.get_provider_name(),
            )

        try:
            await asyncio.to_thread(
                self._collection.add,
                ids=[r.id for r in records],
                embeddings=[r.vector for r in records],
                documents=[r.text for r in records],
                metadatas=[_record_to_metadata(r) for r in records],
            )
        except Exception as exc:
            raise StorageError(
                message=f"Embedding storage failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "chromadb_store_embeddings",
            document_id=document.id,
            filename=document.filename,
            stored=len(records),
            dropped=len(chunks) - len(records),
        )
        return len(records)

    async def delete_document(self, document_id: str) -> int:
        await self.initialize()
        try:
            return await asyncio.to_thread(self._delete_where, {"document_id": document_id})
        except Exception as exc:
            raise StorageError(
                message=f"Document vector deletion failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _delete_where(self, where: dict[str, Any]) -> int:
        existing = self._collection.get(where=where, include=[])
        count = len(existing["ids"]) if existing["ids"] else 0
        if count:
            self._collection.delete(where=where)
        logger.info("chromadb_delete_document", where=where, deleted_count=count)
        return count

    async def clear_all(self) -> None:
        await self.initialize()
        try:
            removed = await asyncio.to_thread(self._delete_all)
        except Exception as exc:
            raise StorageError(
                message=f"Clearing vector storage failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_clear_all", deleted_count=removed)

    def _delete_all(self) -> int:
        removed = 0
        while True:
            page = self._collection.get(include=[], limit=_PAGE_SIZE)
            ids = page["ids"] or []
            if not ids:
                return removed
            self._collection.delete(ids=ids)
            removed += len(ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        query_vector: list[float],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        await self.initialize()
        options = options or SearchOptions()
        try:
            raw = await asyncio.to_thread(self._query, query_vector, options)
        except Exception as exc:
            raise StorageError(
                message=f"Vector search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        results = sorted(
            (
                _hit_to_result(doc_id, text, meta, distance, options.include_metadata)
                for doc_id, text, meta, distance in raw
            ),
            key=lambda r: r.score,
            reverse=True,
        )
        filtered = [r for r in results if r.score >= options.min_score]

        logger.info(
            "chromadb_search",
            candidates=len(results),
            results_count=len(filtered),
            min_score=options.min_score,
            top_score=filtered[0].score if filtered else 0.0,
        )
        return filtered

    def _query(
        self,
        query_vector: list[float],
        options: SearchOptions,
    ) -> list[tuple[str, str, dict[str, Any], float]]:
        total = self._collection.count()
        if total == 0:
            return []

        kwargs: dict[str, Any] = {
            "query_embeddings": [query_vector],
            "n_results": min(options.limit, total),
            "include": ["documents", "metadatas", "distances"],
        }
        if options.document_ids:
            kwargs["where"] = {"document_id": {"$in": list(options.document_ids)}}

        results = self._collection.query(**kwargs)
        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(ids)
        return list(zip(ids, documents, metadatas, distances, strict=True))

    async def list_documents(self) -> list[DocumentSummary]:
        await self.initialize()
        try:
            metadatas = await asyncio.to_thread(self._all_metadata)
        except Exception as exc:
            raise StorageError(
                message=f"Document listing failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        summaries: dict[str, dict[str, Any]] = {}
        for meta in metadatas:
            doc_id = meta.get("document_id", "")
            created_at = meta.get("created_at", "")
            entry = summaries.get(doc_id)
            if entry is None:
                summaries[doc_id] = {
                    "document_id": doc_id,
                    "filename": meta.get("document_filename", ""),
                    "file_type": meta.get("document_type", ""),
                    "chunk_count": 1,
                    "created_at": created_at,
                }
            else:
                entry["chunk_count"] += 1
                if created_at < entry["created_at"]:
                    entry["created_at"] = created_at

        return sorted(
            (DocumentSummary(**s) for s in summaries.values()),
            key=lambda s: s.created_at,
            reverse=True,
        )

    async def get_stats(self) -> StorageStats:
        await self.initialize()
        try:
            total = await asyncio.to_thread(self._collection.count)
            metadatas = await asyncio.to_thread(self._all_metadata) if total else []
        except Exception as exc:
            raise StorageError(
                message=f"Storage stats failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        return StorageStats(
            total_documents=len({m.get("document_id") for m in metadatas}),
            total_chunks=total,
            total_vectors=total,
            database_size_kb=round(total * AVG_RECORD_SIZE_BYTES / 1024),
            last_updated=datetime.now(tz=timezone.utc),  # noqa: UP017
        )

    def _all_metadata(self) -> list[dict[str, Any]]:
        """Fetch every record's metadata in pages to stay under SQLite's
        bind-parameter limit."""
        collected: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = self._collection.get(include=["metadatas"], limit=_PAGE_SIZE, offset=offset)
            metadatas = page["metadatas"] or []
            collected.extend(metadatas)
            if len(metadatas) < _PAGE_SIZE:
                return collected
            offset += _PAGE_SIZE


# ---------------------------------------------------------------------------
# Record <-> chromadb row mapping
# ---------------------------------------------------------------------------

def _record_to_metadata(record: VectorRecord) -> dict[str, Any]:
    """Flatten a record into chromadb's scalar-only metadata dict."""
    return {
        "document_id": record.document_id,
        "chunk_id": record.chunk_id,
        "chunk_index": record.chunk_index,
        **record.metadata.model_dump(),
    }


def _hit_to_result(
    record_id: str,
    text: str,
    meta: dict[str, Any],
    distance: float,
    include_metadata: bool,
) -> SearchResult:
    similarity = max(0.0, min(1.0, 1.0 - distance))
    metadata = None
    if include_metadata:
        metadata = {
            key: meta[key]
            for key in VectorRecordMetadata.model_fields
            if key in meta
        }
    return SearchResult(
        chunk_id=meta.get("chunk_id", record_id),
        document_id=meta.get("document_id", ""),
        document_filename=meta.get("document_filename", ""),
        text=text or "",
        score=similarity,
        chunk_index=int(meta.get("chunk_index", 0)),
        metadata=metadata,
    )


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017
