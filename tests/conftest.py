"""Shared pytest fixtures for the knowledge-search test suite."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog

from knowledge_search.config.settings import Settings
from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_search.models.documents import DocumentChunk, DocumentMetadata, FileType
from knowledge_search.models.embedding import EmbeddingResult
from knowledge_search.models.search import (
    DocumentSummary,
    SearchOptions,
    SearchResult,
    StorageStats,
)
from knowledge_search.utils.errors import EmbeddingError, InitializationError, StorageError

# ---------------------------------------------------------------------------
# Sample text
# ---------------------------------------------------------------------------

ML_TEXT = (
    "Machine learning is a field of artificial intelligence. Machine learning "
    "models learn patterns from training data, and deep learning uses neural "
    "networks with many layers to improve machine learning accuracy."
)

COOKING_TEXT = (
    "Cooking pasta requires boiling salted water. Add the pasta, stir "
    "occasionally, and drain it when tender. Serve with tomato sauce and "
    "fresh basil from the garden."
)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo configure_logging after each test.

    The CLI binds the sys.stderr that pytest is capturing and caches its
    loggers, so the next test would log to a closed stream.
    """
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing every on-disk path at a temp directory."""
    return Settings(
        use_worker=False,
        embedding_batch_delay_seconds=0.0,
        chromadb_persist_dir=str(tmp_path / "chromadb"),
        chromadb_collection="test_documents",
        search_default_min_score=0.0,
    )


# ---------------------------------------------------------------------------
# Embedding fixtures
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 64
_TOKEN = re.compile(r"\w+")


def _bag_of_words_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Deterministic bag-of-words vector: each lowercase word is hashed into
    a bucket.  Texts sharing words get a high cosine similarity, so ranking
    tests behave like a (very small) semantic model.

    Bucket 0 carries a small constant so an empty text still has a usable
    direction.
    """
    values = [0.0] * dim
    values[0] = 0.1
    for word in _TOKEN.findall(text.lower()):
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        bucket = 1 + int.from_bytes(digest[:4], "little") % (dim - 1)
        values[bucket] += 1.0
    magnitude = math.sqrt(sum(v * v for v in values))
    return [v / magnitude for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests.

    Parameters
    ----------
    fail_on:
        Any text containing one of these markers raises ``EmbeddingError``.
    init_failures:
        Number of ``initialize`` calls that fail before one succeeds.
    delay_seconds:
        Sleep inside ``embed_single`` to simulate a slow model.
    max_tokens:
        Reported input budget.
    """

    def __init__(
        self,
        fail_on: set[str] | None = None,
        init_failures: int = 0,
        delay_seconds: float = 0.0,
        max_tokens: int = 384,
    ) -> None:
        self.fail_on = fail_on or set()
        self.init_failures = init_failures
        self.delay_seconds = delay_seconds
        self.max_tokens = max_tokens
        self.init_calls = 0
        self.embedded: list[str] = []

    async def initialize(self) -> None:
        self.init_calls += 1
        # Yield so concurrent callers really overlap.
        await asyncio.sleep(0.01)
        if self.init_failures > 0:
            self.init_failures -= 1
            raise InitializationError(message="model load failed", provider_name="mock-embedding")

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingError(message="simulated failure", provider_name="mock-embedding")
        self.embedded.append(text)
        return _bag_of_words_vector(text)

    def get_dimension(self) -> int:
        return _EMBEDDING_DIM

    def get_max_tokens(self) -> int:
        return self.max_tokens

    def get_model_name(self) -> str:
        return "mock-bag-of-words"

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


# ---------------------------------------------------------------------------
# Vector store fixtures
# ---------------------------------------------------------------------------


class MockVectorStore(IVectorStoreProvider):
    """In-memory vector store backed by a simple dict.

    Scores are cosine similarities clamped to [0, 1], matching the
    ChromaDB provider's contract.
    """

    def __init__(self, fail_on_init: bool = False) -> None:
        self._records: dict[str, tuple[DocumentChunk, list[float], DocumentMetadata, str]] = {}
        self._ready = False
        self.fail_on_init = fail_on_init
        self.init_calls = 0

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.fail_on_init:
            raise StorageError(message="store unavailable", provider_name="mock-store")
        self._ready = True

    async def store_embeddings(
        self,
        chunks: list[DocumentChunk],
        embeddings: list[EmbeddingResult],
        document: DocumentMetadata,
    ) -> int:
        vectors = {e.chunk_id: e.embedding for e in embeddings}
        created_at = datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017
        stored = 0
        for chunk in chunks:
            if chunk.id in vectors:
                self._records[chunk.id] = (chunk, vectors[chunk.id], document, created_at)
                stored += 1
        if not stored:
            raise StorageError(message="No valid embeddings to store", provider_name="mock-store")
        return stored

    async def search(
        self,
        query_vector: list[float],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        scored: list[SearchResult] = []
        for chunk, vector, document, _ in self._records.values():
            if options.document_ids and chunk.document_id not in options.document_ids:
                continue
            dot = sum(a * b for a, b in zip(query_vector, vector, strict=True))
            score = max(0.0, min(1.0, dot))
            scored.append(
                SearchResult(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    document_filename=document.filename,
                    text=chunk.text,
                    score=score,
                    chunk_index=chunk.chunk_index,
                    metadata={"document_type": document.file_type.value}
                    if options.include_metadata
                    else None,
                )
            )
        scored.sort(key=lambda r: r.score, reverse=True)
        return [r for r in scored[: options.limit] if r.score >= options.min_score]

    async def delete_document(self, document_id: str) -> int:
        doomed = [cid for cid, rec in self._records.items() if rec[0].document_id == document_id]
        for cid in doomed:
            del self._records[cid]
        return len(doomed)

    async def list_documents(self) -> list[DocumentSummary]:
        summaries: dict[str, DocumentSummary] = {}
        for chunk, _, document, created_at in self._records.values():
            existing = summaries.get(chunk.document_id)
            summaries[chunk.document_id] = DocumentSummary(
                document_id=chunk.document_id,
                filename=document.filename,
                file_type=document.file_type.value,
                chunk_count=(existing.chunk_count if existing else 0) + 1,
                created_at=created_at,
            )
        return list(summaries.values())

    async def get_stats(self) -> StorageStats:
        total = len(self._records)
        return StorageStats(
            total_documents=len({rec[0].document_id for rec in self._records.values()}),
            total_chunks=total,
            total_vectors=total,
            database_size_kb=round(total * 2000 / 1024),
            last_updated=datetime.now(tz=timezone.utc),  # noqa: UP017
        )

    async def clear_all(self) -> None:
        self._records.clear()

    def is_ready(self) -> bool:
        return self._ready

    def get_provider_name(self) -> str:
        return "mock-store"


@pytest.fixture
def mock_vector_store() -> MockVectorStore:
    return MockVectorStore()


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


def make_chunk(
    index: int = 0,
    text: str = "sample chunk text",
    document_id: str = "doc-1",
    chunk_id: str | None = None,
) -> DocumentChunk:
    return DocumentChunk(
        id=chunk_id or f"{document_id}-chunk-{index}",
        document_id=document_id,
        chunk_index=index,
        text=text,
        word_count=len(text.split()),
        start_position=0,
        end_position=len(text),
    )


def make_metadata(
    document_id: str = "doc-1",
    filename: str = "notes.txt",
    file_type: FileType = FileType.TXT,
) -> DocumentMetadata:
    return DocumentMetadata(id=document_id, filename=filename, file_size=100, file_type=file_type)
