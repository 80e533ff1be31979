"""Batch embedding orchestration over an :class:`IEmbeddingProvider`.

The pipeline owns three policies the raw backend does not:

1. **Lazy, race-safe initialization** -- the first caller starts loading
   the model; concurrent callers await the same task; a failed attempt
   is forgotten so the next call retries.
2. **Input shaping** -- text is truncated to the model's input budget
   (about four characters per token) at the last whole word, and output
   vectors are L2-normalised and dimension-checked.
3. **Bounded batching** -- chunks are embedded in fixed-size groups.
   Items inside a group run concurrently; groups run strictly one after
   another with a short pause in between.  A failing chunk is recorded as
   an :class:`EmbeddingFailure` and never aborts the batch.
"""

from __future__ import annotations

import asyncio
import math
import time

import numpy as np
import structlog

from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.interfaces.embedding_service import IEmbeddingService, ProgressCallback
from knowledge_search.models.documents import DocumentChunk
from knowledge_search.models.embedding import (
    BatchEmbeddingResult,
    EmbeddingFailure,
    EmbeddingResult,
    ModelInfo,
)
from knowledge_search.pipeline.progress_tracker import report_progress
from knowledge_search.utils.errors import EmbeddingError, InitializationError

logger = structlog.get_logger(logger_name=__name__)

CHARS_PER_TOKEN = 4
EMBEDDING_STAGE = "Generating embeddings"


def truncate_text(text: str, max_tokens: int) -> str:
    """Cut *text* to ``max_tokens * 4`` characters, backing up to the last space."""
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    return truncated[:last_space] if last_space > 0 else truncated


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class EmbeddingPipeline(IEmbeddingService):
    """In-process embedding service.

    Parameters
    ----------
    provider:
        The embedding backend.
    batch_size:
        Chunks embedded concurrently per group (default 5).
    batch_delay_seconds:
        Pause between groups (default 0.1).  Not applied after the last.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        batch_size: int = 5,
        batch_delay_seconds: float = 0.1,
    ) -> None:
        self._provider = provider
        self._batch_size = max(batch_size, 1)
        self._batch_delay = batch_delay_seconds
        self._ready = False
        self._init_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, on_progress: ProgressCallback | None = None) -> None:
        if self._ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            # Only the first waiter to observe the failure clears the slot.
            if self._init_task is task:
                self._init_task = None
            raise

    async def _load(self) -> None:
        start = time.monotonic()
        try:
            await self._provider.initialize()
        except InitializationError:
            logger.error("embedding_init_failed", provider=self._provider.get_provider_name())
            raise
        except Exception as exc:
            logger.error(
                "embedding_init_failed",
                provider=self._provider.get_provider_name(),
                error=str(exc),
            )
            raise InitializationError(
                message=f"Embedding service initialization failed: {exc}",
                provider_name=self._provider.get_provider_name(),
            ) from exc
        self._ready = True
        logger.info(
            "embedding_pipeline_ready",
            provider=self._provider.get_provider_name(),
            dimension=self._provider.get_dimension(),
            elapsed_ms=round((time.monotonic() - start) * 1000, 1),
        )

    def is_ready(self) -> bool:
        return self._ready

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(
            model=self._provider.get_model_name(),
            max_tokens=self._provider.get_max_tokens(),
            dimensions=self._provider.get_dimension(),
            is_ready=self._ready,
        )

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed_one(self, text: str, chunk_id: str) -> EmbeddingResult:
        await self.initialize()
        start = time.monotonic()
        truncated = truncate_text(text, self._provider.get_max_tokens())

        try:
            raw = await self._provider.embed_single(truncated)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                message=f"Embedding generation failed: {exc}",
                provider_name=self._provider.get_provider_name(),
            ) from exc

        vector = self._normalise(raw, chunk_id)
        return EmbeddingResult(
            chunk_id=chunk_id,
            embedding=vector,
            token_count=estimate_tokens(truncated),
            processing_time_ms=(time.monotonic() - start) * 1000,
        )

    async def embed_batch(
        self,
        chunks: list[DocumentChunk],
        on_progress: ProgressCallback | None = None,
    ) -> BatchEmbeddingResult:
        await self.initialize()
        start = time.monotonic()
        results: list[EmbeddingResult] = []
        errors: list[EmbeddingFailure] = []
        total = len(chunks)

        for offset in range(0, total, self._batch_size):
            group = chunks[offset : offset + self._batch_size]
            outcomes = await asyncio.gather(
                *(self.embed_one(chunk.text, chunk.id) for chunk in group),
                return_exceptions=True,
            )

            for chunk, outcome in zip(group, outcomes, strict=True):
                if isinstance(outcome, EmbeddingResult):
                    results.append(outcome)
                elif isinstance(outcome, Exception):
                    logger.warning("chunk_embedding_failed", chunk_id=chunk.id, error=str(outcome))
                    errors.append(EmbeddingFailure(chunk_id=chunk.id, error=str(outcome)))
                else:
                    # CancelledError and friends are not per-chunk failures.
                    raise outcome

            done = min(offset + self._batch_size, total)
            logger.debug("embedding_batch_group", done=done, total=total, failed=len(errors))
            report_progress(
                on_progress,
                EMBEDDING_STAGE,
                done / total * 100,
                f"Processing {done}/{total} chunks",
            )

            if done < total and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "embedding_batch_complete",
            total=total,
            succeeded=len(results),
            failed=len(errors),
            elapsed_ms=round(elapsed_ms, 1),
        )
        return BatchEmbeddingResult(
            results=results,
            errors=errors,
            success_count=len(results),
            total_processing_time_ms=elapsed_ms,
        )

    def _normalise(self, raw: list[float], chunk_id: str) -> list[float]:
        expected = self._provider.get_dimension()
        vector = np.asarray(raw, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != expected:
            raise EmbeddingError(
                message=(
                    f"Embedding for chunk {chunk_id} has dimension {vector.size}, "
                    f"expected {expected}"
                ),
                provider_name=self._provider.get_provider_name(),
            )
        norm = float(np.linalg.norm(vector))
        if norm == 0.0 or not math.isfinite(norm):
            raise EmbeddingError(
                message=f"Embedding for chunk {chunk_id} is not a usable vector",
                provider_name=self._provider.get_provider_name(),
            )
        return (vector / norm).tolist()
