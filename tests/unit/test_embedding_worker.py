"""Unit tests for the embedding worker thread and its caller-side manager.

Each test starts a real background thread running an EmbeddingPipeline
over the deterministic mock provider, and always terminates it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from knowledge_search.services.embedding_pipeline import EmbeddingPipeline
from knowledge_search.services.embedding_worker import (
    NOT_INITIALIZED_MESSAGE,
    EmbeddingWorker,
    EmbeddingWorkerManager,
    RequestType,
    ResponseType,
    WorkerRequest,
    WorkerResponse,
)
from knowledge_search.utils.errors import (
    EmbeddingError,
    InitializationError,
    WorkerError,
    WorkerTerminatedError,
    WorkerTimeoutError,
)
from tests.conftest import MockEmbeddingProvider, make_chunk


def _factory(provider: MockEmbeddingProvider) -> Callable[[], EmbeddingPipeline]:
    return lambda: EmbeddingPipeline(provider, batch_size=5, batch_delay_seconds=0.0)


def _manager(
    provider: MockEmbeddingProvider | None = None, timeout: float = 10.0
) -> EmbeddingWorkerManager:
    return EmbeddingWorkerManager(
        _factory(provider or MockEmbeddingProvider()),
        request_timeout_seconds=timeout,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_reports_model_info(self) -> None:
        manager = _manager()
        progress: list[str] = []
        try:
            await manager.initialize(on_progress=lambda s, p, d: progress.append(s))

            assert manager.is_ready()
            info = manager.get_model_info()
            assert info.model == "mock-bag-of-words"
            assert info.dimensions == 64
            assert info.is_ready
            assert progress[0] == "Starting AI model..."
            assert progress[-1] == "AI model ready"
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_concurrent_initialize_starts_one_worker(self) -> None:
        provider = MockEmbeddingProvider()
        manager = _manager(provider)
        try:
            await asyncio.gather(*(manager.initialize() for _ in range(4)))

            assert manager.is_ready()
            assert provider.init_calls == 1
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_failed_initialize_raises_and_can_retry(self) -> None:
        provider = MockEmbeddingProvider(init_failures=1)
        manager = _manager(provider)
        try:
            with pytest.raises(InitializationError):
                await manager.initialize()
            assert not manager.is_ready()

            await manager.initialize()
            assert manager.is_ready()
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_requests_before_initialize_are_rejected(self) -> None:
        manager = _manager()

        with pytest.raises(WorkerError, match="not initialized"):
            await manager.generate_embedding("text", "c1")

    @pytest.mark.asyncio
    async def test_status_without_worker(self) -> None:
        status = await _manager().get_status()
        assert status == {"is_ready": False, "model_info": None}

    @pytest.mark.asyncio
    async def test_status_from_worker(self) -> None:
        manager = _manager()
        try:
            await manager.initialize()
            status = await manager.get_status()

            assert status["is_ready"] is True
            assert status["model_info"]["model"] == "mock-bag-of-words"
        finally:
            manager.terminate()


class TestRequests:
    @pytest.mark.asyncio
    async def test_single_embedding_round_trip(self) -> None:
        manager = _manager()
        try:
            await manager.initialize()
            result = await manager.embed_one("machine learning", "query-1")

            assert result.chunk_id == "query-1"
            assert len(result.embedding) == 64
            assert manager.pending_count() == 0
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_concurrent_requests_are_correlated(self) -> None:
        manager = _manager()
        try:
            await manager.initialize()
            texts = [f"text number {i}" for i in range(8)]
            results = await asyncio.gather(
                *(manager.generate_embedding(t, f"c{i}") for i, t in enumerate(texts))
            )

            assert [r.chunk_id for r in results] == [f"c{i}" for i in range(8)]
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_single_failure_maps_to_embedding_error(self) -> None:
        manager = _manager(MockEmbeddingProvider(fail_on={"FAIL"}))
        try:
            await manager.initialize()
            with pytest.raises(EmbeddingError):
                await manager.generate_embedding("please FAIL", "c1")
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_batch_reports_progress_and_failures(self) -> None:
        manager = _manager(MockEmbeddingProvider(fail_on={"FAIL"}))
        progress: list[tuple[float, str | None]] = []
        chunks = [make_chunk(i, "FAIL" if i == 2 else f"text {i}") for i in range(12)]
        try:
            await manager.initialize()
            batch = await manager.generate_batch_embeddings(
                chunks, on_progress=lambda s, p, d: progress.append((p, d))
            )

            assert batch.success_count == 11
            assert [f.chunk_id for f in batch.errors] == ["doc-1-chunk-2"]
            assert [p for p, _ in progress] == [42.0, 83.0, 100.0]
            assert progress[-1][1] == "Processing 12/12 chunks"
        finally:
            manager.terminate()


class TestFailureModes:
    @pytest.mark.asyncio
    async def test_request_times_out(self) -> None:
        manager = _manager(MockEmbeddingProvider(delay_seconds=5.0), timeout=0.2)
        try:
            await manager.initialize()
            with pytest.raises(WorkerTimeoutError):
                await manager.generate_embedding("slow", "c1")
            assert manager.pending_count() == 0
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_terminate_rejects_pending(self) -> None:
        manager = _manager(MockEmbeddingProvider(delay_seconds=5.0))
        await manager.initialize()

        pending = asyncio.ensure_future(manager.generate_embedding("slow", "c1"))
        await asyncio.sleep(0.05)
        assert manager.pending_count() == 1

        manager.terminate()

        with pytest.raises(WorkerTerminatedError):
            await pending
        assert manager.pending_count() == 0
        assert not manager.is_ready()

    @pytest.mark.asyncio
    async def test_worker_crash_rejects_pending(self) -> None:
        manager = _manager(MockEmbeddingProvider(delay_seconds=5.0))
        await manager.initialize()
        worker = manager._worker

        pending = asyncio.ensure_future(manager.generate_embedding("slow", "c1"))
        await asyncio.sleep(0.05)
        manager._on_worker_failure(RuntimeError("segfault"))

        try:
            with pytest.raises(WorkerTerminatedError, match="segfault"):
                await pending
            assert not manager.is_ready()
        finally:
            worker.stop()

    @pytest.mark.asyncio
    async def test_embed_restarts_worker_after_crash(self) -> None:
        provider = MockEmbeddingProvider()
        manager = _manager(provider)
        try:
            await manager.initialize()
            crashed = manager._worker
            manager._on_worker_failure(RuntimeError("segfault"))
            crashed.stop()

            result = await manager.embed_one("back again", "c1")
            batch = await manager.embed_batch([make_chunk(i, f"t {i}") for i in range(3)])

            assert result.chunk_id == "c1"
            assert batch.success_count == 3
            assert manager.is_ready()
            assert manager._worker is not crashed
            assert provider.init_calls == 2
        finally:
            manager.terminate()

    @pytest.mark.asyncio
    async def test_unknown_response_id_is_dropped(self) -> None:
        manager = _manager()
        try:
            await manager.initialize()
            manager._on_response(
                WorkerResponse(id=9999, type=ResponseType.SINGLE_RESULT, payload={})
            )
            assert manager.pending_count() == 0

            # The manager keeps serving after the stray message.
            result = await manager.generate_embedding("still works", "c1")
            assert result.chunk_id == "c1"
        finally:
            manager.terminate()


class TestWorkerHandle:
    """EmbeddingWorker.handle builds responses without a running thread."""

    @pytest.mark.asyncio
    async def test_generate_before_initialize_is_an_error_response(self) -> None:
        factory = _factory(MockEmbeddingProvider())
        worker = EmbeddingWorker(factory, post=lambda r: None)
        worker._pipeline = factory()

        response = await worker.handle(
            WorkerRequest(
                id=1,
                type=RequestType.GENERATE_SINGLE,
                payload={"text": "hello", "chunk_id": "c1"},
            )
        )

        assert response.id == 1
        assert response.type is ResponseType.SINGLE_ERROR
        assert response.payload["error"] == NOT_INITIALIZED_MESSAGE

    @pytest.mark.asyncio
    async def test_initialize_then_batch(self) -> None:
        posted: list[WorkerResponse] = []
        factory = _factory(MockEmbeddingProvider())
        worker = EmbeddingWorker(factory, post=posted.append)
        worker._pipeline = factory()

        init = await worker.handle(WorkerRequest(id=1, type=RequestType.INITIALIZE))
        batch = await worker.handle(
            WorkerRequest(
                id=2,
                type=RequestType.GENERATE_BATCH,
                payload={"chunks": [make_chunk(i, f"t {i}").model_dump() for i in range(3)]},
            )
        )

        assert init.type is ResponseType.INITIALIZED
        assert init.payload["success"] is True
        assert batch.type is ResponseType.BATCH_RESULT
        assert batch.payload["success_count"] == 3
        assert [r.type for r in posted] == [ResponseType.PROGRESS]
        assert posted[0].id is None
