"""Isolated embedding execution context.

Model inference is CPU-heavy.  :class:`EmbeddingWorker` runs an
:class:`EmbeddingPipeline` on a dedicated background thread with its own
asyncio event loop, and :class:`EmbeddingWorkerManager` talks to it from
the caller's loop through a correlated request/response channel:

    caller loop                                   worker thread / loop
    -----------                                   --------------------
    manager._send()  --WorkerRequest(id=n)-->     worker inbox
                                                  pipeline.embed_batch()
    manager._on_response() <--PROGRESS--          (uncorrelated, per group)
    manager._on_response() <--WorkerResponse(id=n)--

Requests and responses are plain pydantic models whose payloads are
``model_dump()`` dicts, so no mutable object is ever shared across the
thread boundary.

The manager keeps a pending table keyed by correlation id.  Every entry
carries a timeout; expiry evicts the entry and fails the caller with
:class:`WorkerTimeoutError`.  Responses for ids no longer in the table
(late or unknown) are logged and dropped.  If the worker thread dies, or
:meth:`EmbeddingWorkerManager.terminate` is called, every pending request
fails and the table is cleared.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from knowledge_search.interfaces.embedding_service import IEmbeddingService, ProgressCallback
from knowledge_search.models.documents import DocumentChunk
from knowledge_search.models.embedding import BatchEmbeddingResult, EmbeddingResult, ModelInfo
from knowledge_search.pipeline.progress_tracker import report_progress
from knowledge_search.services.embedding_pipeline import EmbeddingPipeline
from knowledge_search.utils.errors import (
    EmbeddingError,
    InitializationError,
    KnowledgeSearchError,
    WorkerError,
    WorkerTerminatedError,
    WorkerTimeoutError,
)

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 300.0
_JOIN_TIMEOUT_SECONDS = 5.0
NOT_INITIALIZED_MESSAGE = "Embedding service not initialized"


# ---------------------------------------------------------------------------
# Wire protocol
# ---------------------------------------------------------------------------
class RequestType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    INITIALIZE = "INITIALIZE"
    GENERATE_SINGLE = "GENERATE_SINGLE"
    GENERATE_BATCH = "GENERATE_BATCH"
    GET_STATUS = "GET_STATUS"


class ResponseType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    INITIALIZED = "INITIALIZED"
    INITIALIZATION_ERROR = "INITIALIZATION_ERROR"
    SINGLE_RESULT = "SINGLE_RESULT"
    SINGLE_ERROR = "SINGLE_ERROR"
    BATCH_RESULT = "BATCH_RESULT"
    BATCH_ERROR = "BATCH_ERROR"
    STATUS = "STATUS"
    PROGRESS = "PROGRESS"


# Error response -> exception raised in the caller.
_ERROR_RESPONSES: dict[ResponseType, type[KnowledgeSearchError]] = {
    ResponseType.INITIALIZATION_ERROR: InitializationError,
    ResponseType.SINGLE_ERROR: EmbeddingError,
    ResponseType.BATCH_ERROR: EmbeddingError,
}

# Request -> (success response, error response).  STATUS has no error form.
_RESPONSE_TYPES: dict[RequestType, tuple[ResponseType, ResponseType | None]] = {
    RequestType.INITIALIZE: (ResponseType.INITIALIZED, ResponseType.INITIALIZATION_ERROR),
    RequestType.GENERATE_SINGLE: (ResponseType.SINGLE_RESULT, ResponseType.SINGLE_ERROR),
    RequestType.GENERATE_BATCH: (ResponseType.BATCH_RESULT, ResponseType.BATCH_ERROR),
    RequestType.GET_STATUS: (ResponseType.STATUS, None),
}


class WorkerRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    type: RequestType
    payload: dict[str, Any] = Field(default_factory=dict)


class WorkerResponse(BaseModel):
    """A worker message.  ``id`` is None only for PROGRESS."""

    model_config = ConfigDict(frozen=True)

    type: ResponseType
    payload: dict[str, Any] = Field(default_factory=dict)
    id: int | None = None


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------
class EmbeddingWorker:
    """Serves embedding requests on a background thread.

    Parameters
    ----------
    pipeline_factory:
        Builds the :class:`EmbeddingPipeline` inside the worker thread so
        its asyncio state belongs to the worker loop.
    post:
        Thread-safe sink for outgoing :class:`WorkerResponse` messages.
    on_crash:
        Called from the worker thread if its loop dies unexpectedly.
    """

    def __init__(
        self,
        pipeline_factory: Callable[[], EmbeddingPipeline],
        post: Callable[[WorkerResponse], None],
        on_crash: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._post = post
        self._on_crash = on_crash
        self._pipeline: EmbeddingPipeline | None = None
        self._initialized = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue[WorkerRequest | None] | None = None
        self._started = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name="embedding-worker",
            daemon=True,
        )

    # -- thread control (called from the owning thread) --------------------

    def start(self) -> None:
        self._thread.start()
        self._started.wait()

    def submit(self, request: WorkerRequest) -> None:
        """Queue *request* for the worker loop.  Safe from any thread."""
        if self._loop is None or self._inbox is None or self._loop.is_closed():
            raise WorkerTerminatedError(message="Worker not available")
        self._loop.call_soon_threadsafe(self._inbox.put_nowait, request)

    def stop(self, timeout: float = _JOIN_TIMEOUT_SECONDS) -> None:
        """Ask the loop to exit and wait for the thread."""
        loop = self._loop
        if loop is not None and self._inbox is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(self._inbox.put_nowait, None)
            except RuntimeError:
                # Loop closed between the check and the call.
                pass
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("embedding_worker_join_timeout", timeout_s=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    # -- worker thread ------------------------------------------------------

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            self._inbox = asyncio.Queue()
            self._started.set()
            loop.run_until_complete(self._serve())
        except Exception as exc:
            logger.exception("embedding_worker_crashed", error=str(exc))
            if self._on_crash is not None:
                self._on_crash(exc)
        finally:
            self._started.set()
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()
                logger.debug("embedding_worker_stopped")

    async def _serve(self) -> None:
        assert self._inbox is not None
        self._pipeline = self._pipeline_factory()
        in_flight: set[asyncio.Task[None]] = set()
        while True:
            request = await self._inbox.get()
            if request is None:
                break
            task = asyncio.ensure_future(self._dispatch(request))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

    async def _dispatch(self, request: WorkerRequest) -> None:
        self._post(await self.handle(request))

    async def handle(self, request: WorkerRequest) -> WorkerResponse:
        """Run one request and build its response.  Never raises for
        operation failures; they become the matching ``*_ERROR`` type."""
        success_type, error_type = _RESPONSE_TYPES[request.type]
        try:
            payload = await self._execute(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "embedding_worker_request_failed",
                request_id=request.id,
                request_type=request.type.value,
                error=str(exc),
            )
            if error_type is None:
                return WorkerResponse(
                    id=request.id,
                    type=success_type,
                    payload={"is_ready": False, "model_info": None, "error": _message(exc)},
                )
            return WorkerResponse(id=request.id, type=error_type, payload={"error": _message(exc)})
        return WorkerResponse(id=request.id, type=success_type, payload=payload)

    async def _execute(self, request: WorkerRequest) -> dict[str, Any]:
        pipeline = self._require_pipeline()

        if request.type is RequestType.INITIALIZE:
            await pipeline.initialize()
            self._initialized = True
            return {"success": True, "model_info": pipeline.get_model_info().model_dump()}

        if request.type is RequestType.GET_STATUS:
            return {
                "is_ready": self._initialized and pipeline.is_ready(),
                "model_info": pipeline.get_model_info().model_dump(),
            }

        if not self._initialized:
            raise InitializationError(message=NOT_INITIALIZED_MESSAGE)

        if request.type is RequestType.GENERATE_SINGLE:
            result = await pipeline.embed_one(
                request.payload["text"],
                request.payload["chunk_id"],
            )
            return result.model_dump()

        if request.type is RequestType.GENERATE_BATCH:
            chunks = [DocumentChunk.model_validate(c) for c in request.payload["chunks"]]
            batch = await pipeline.embed_batch(chunks, on_progress=self._post_progress)
            return batch.model_dump()

        raise WorkerError(message=f"Unknown request type: {request.type}")

    def _post_progress(self, stage: str, progress: float, details: str | None) -> None:
        self._post(
            WorkerResponse(
                type=ResponseType.PROGRESS,
                payload={"stage": stage, "progress": round(progress), "details": details},
            )
        )

    def _require_pipeline(self) -> EmbeddingPipeline:
        if self._pipeline is None:
            raise WorkerError(message="Embedding worker has no pipeline")
        return self._pipeline


def _message(exc: BaseException) -> str:
    if isinstance(exc, KnowledgeSearchError):
        return exc.message
    return str(exc)


# ---------------------------------------------------------------------------
# Caller side
# ---------------------------------------------------------------------------
@dataclass
class _PendingRequest:
    future: asyncio.Future[WorkerResponse]
    timer: asyncio.TimerHandle
    request_type: RequestType


class EmbeddingWorkerManager(IEmbeddingService):
    """Caller-side handle on an :class:`EmbeddingWorker`.

    All public coroutines must be awaited from the same event loop.
    Implements :class:`IEmbeddingService`, so the search service can use
    it interchangeably with an in-process :class:`EmbeddingPipeline`.

    Parameters
    ----------
    pipeline_factory:
        Passed to the worker; builds the pipeline on the worker thread.
    request_timeout_seconds:
        Per-request deadline (default 300 s).
    model_info:
        Reported by :meth:`get_model_info` until the worker has answered
        INITIALIZE with its own.
    """

    def __init__(
        self,
        pipeline_factory: Callable[[], EmbeddingPipeline],
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        model_info: ModelInfo | None = None,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._timeout = request_timeout_seconds
        self._model_info = model_info or ModelInfo(model="unknown", max_tokens=0, dimensions=0)
        self._worker: EmbeddingWorker | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, _PendingRequest] = {}
        self._initialized = False
        self._init_task: asyncio.Task[None] | None = None
        self._init_progress: ProgressCallback | None = None
        self._batch_progress: ProgressCallback | None = None

    # ------------------------------------------------------------------
    # IEmbeddingService
    # ------------------------------------------------------------------

    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        if self.is_ready():
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._start(on_progress))
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if self._init_task is task and task.done():
                self._init_task = None

    async def embed_one(self, text: str, chunk_id: str) -> EmbeddingResult:
        # Restarts the worker after a crash.
        await self.initialize()
        return await self.generate_embedding(text, chunk_id)

    async def embed_batch(
        self,
        chunks: list[DocumentChunk],
        on_progress: ProgressCallback | None = None,
    ) -> BatchEmbeddingResult:
        await self.initialize()
        return await self.generate_batch_embeddings(chunks, on_progress)

    def is_ready(self) -> bool:
        return self._initialized and self._worker is not None

    def get_model_info(self) -> ModelInfo:
        return self._model_info.model_copy(update={"is_ready": self.is_ready()})

    async def shutdown(self) -> None:
        self.terminate()

    # ------------------------------------------------------------------
    # Worker operations
    # ------------------------------------------------------------------

    async def generate_embedding(self, text: str, chunk_id: str) -> EmbeddingResult:
        self._require_ready()
        response = await self._send(
            RequestType.GENERATE_SINGLE,
            {"text": text, "chunk_id": chunk_id},
        )
        return EmbeddingResult.model_validate(response.payload)

    async def generate_batch_embeddings(
        self,
        chunks: list[DocumentChunk],
        on_progress: ProgressCallback | None = None,
    ) -> BatchEmbeddingResult:
        self._require_ready()
        self._batch_progress = on_progress
        try:
            response = await self._send(
                RequestType.GENERATE_BATCH,
                {"chunks": [c.model_dump() for c in chunks]},
            )
        finally:
            self._batch_progress = None
        return BatchEmbeddingResult.model_validate(response.payload)

    async def get_status(self) -> dict[str, Any]:
        """Ask the worker for readiness and model info."""
        if self._worker is None:
            return {"is_ready": False, "model_info": None}
        response = await self._send(RequestType.GET_STATUS)
        return response.payload

    def pending_count(self) -> int:
        return len(self._pending)

    def terminate(self) -> None:
        """Stop the worker thread and fail every pending request.

        Blocks until the thread exits (bounded by a join timeout).
        """
        worker, self._worker = self._worker, None
        self._initialized = False
        if worker is not None:
            worker.stop()
            logger.info("embedding_worker_terminated")
        self._reject_all(WorkerTerminatedError())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _start(self, on_progress: ProgressCallback | None) -> None:
        self._loop = asyncio.get_running_loop()
        self._init_progress = on_progress
        report_progress(on_progress, "Starting AI model...", 0)
        try:
            if self._worker is None or not self._worker.is_alive():
                self._worker = EmbeddingWorker(
                    self._pipeline_factory,
                    post=self._post_from_worker,
                    on_crash=self._crash_from_worker,
                )
                await asyncio.to_thread(self._worker.start)

            response = await self._send(RequestType.INITIALIZE)
            self._model_info = ModelInfo.model_validate(response.payload["model_info"])
            self._initialized = True
            report_progress(on_progress, "AI model ready", 100, "Embedding service initialized")
            logger.info("embedding_worker_ready", model=self._model_info.model)
        except Exception as exc:
            self.terminate()
            if isinstance(exc, InitializationError):
                raise
            raise InitializationError(
                message=f"Failed to initialize embedding worker: {_message(exc)}"
            ) from exc
        finally:
            self._init_progress = None

    def _require_ready(self) -> None:
        if not self.is_ready():
            raise WorkerError(message="Embedding worker not initialized")

    async def _send(
        self,
        request_type: RequestType,
        payload: dict[str, Any] | None = None,
    ) -> WorkerResponse:
        if self._worker is None or self._loop is None:
            raise WorkerTerminatedError(message="Worker not available")

        request_id = next(self._ids)
        future: asyncio.Future[WorkerResponse] = self._loop.create_future()
        timer = self._loop.call_later(self._timeout, self._expire, request_id)
        self._pending[request_id] = _PendingRequest(future, timer, request_type)

        try:
            self._worker.submit(
                WorkerRequest(id=request_id, type=request_type, payload=payload or {})
            )
        except WorkerError as exc:
            self._settle(request_id, exc)

        return await future

    def _post_from_worker(self, response: WorkerResponse) -> None:
        """Worker thread -> caller loop hop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._on_response, response)
        except RuntimeError:
            logger.debug("worker_response_after_loop_closed", response_type=response.type.value)

    def _crash_from_worker(self, exc: BaseException) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._on_worker_failure, exc)

    def _on_response(self, response: WorkerResponse) -> None:
        if response.type is ResponseType.PROGRESS:
            callback = self._batch_progress or self._init_progress
            report_progress(
                callback,
                response.payload.get("stage", ""),
                float(response.payload.get("progress", 0)),
                response.payload.get("details"),
            )
            return

        if response.id is None or response.id not in self._pending:
            logger.warning(
                "worker_response_unknown_id",
                request_id=response.id,
                response_type=response.type.value,
            )
            return

        expected_success, expected_error = _RESPONSE_TYPES[self._pending[response.id].request_type]
        if response.type is expected_success:
            self._settle(response.id, response)
        elif response.type is expected_error:
            error_cls = _ERROR_RESPONSES[response.type]
            message = response.payload.get("error", "Unknown error")
            self._settle(response.id, error_cls(message=message))
        else:
            self._settle(
                response.id,
                WorkerError(message=f"Unexpected response type: {response.type.value}"),
            )

    def _settle(self, request_id: int, outcome: WorkerResponse | BaseException) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        pending.timer.cancel()
        if pending.future.done():
            return
        if isinstance(outcome, BaseException):
            pending.future.set_exception(outcome)
        else:
            pending.future.set_result(outcome)

    def _expire(self, request_id: int) -> None:
        if request_id in self._pending:
            logger.warning("worker_request_timeout", request_id=request_id, timeout_s=self._timeout)
            self._settle(request_id, WorkerTimeoutError())

    def _on_worker_failure(self, exc: BaseException) -> None:
        logger.error("embedding_worker_failed", error=str(exc), pending=len(self._pending))
        self._worker = None
        self._initialized = False
        self._reject_all(WorkerTerminatedError(message=f"Embedding worker failed: {exc}"))

    def _reject_all(self, error: WorkerError) -> None:
        for request_id in list(self._pending):
            self._settle(request_id, type(error)(message=error.message))
