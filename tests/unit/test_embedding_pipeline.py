"""Unit tests for EmbeddingPipeline: init, truncation, normalisation, batching."""

from __future__ import annotations

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.services.embedding_pipeline import (
    EMBEDDING_STAGE,
    EmbeddingPipeline,
    estimate_tokens,
    truncate_text,
)
from knowledge_search.utils.errors import EmbeddingError, InitializationError
from tests.conftest import MockEmbeddingProvider, _bag_of_words_vector, make_chunk


def _pipeline(provider: IEmbeddingProvider, batch_size: int = 5) -> EmbeddingPipeline:
    return EmbeddingPipeline(provider, batch_size=batch_size, batch_delay_seconds=0.0)


def _raw_provider(vector: list[float], dimension: int, max_tokens: int = 384) -> MagicMock:
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.initialize = AsyncMock(return_value=None)
    mock.embed_single = AsyncMock(return_value=vector)
    mock.get_dimension.return_value = dimension
    mock.get_max_tokens.return_value = max_tokens
    mock.get_model_name.return_value = "raw-mock"
    mock.get_provider_name.return_value = "raw-mock"
    return mock


class _TimedProvider(MockEmbeddingProvider):
    """Sleeps a per-text delay and records when each call starts and ends."""

    def __init__(self, delays: dict[str, float]) -> None:
        super().__init__()
        self.delays = delays
        self.events: list[tuple[str, str]] = []

    async def embed_single(self, text: str) -> list[float]:
        self.events.append(("start", text))
        await asyncio.sleep(self.delays.get(text, 0.0))
        self.events.append(("finish", text))
        return _bag_of_words_vector(text)


class TestTextShaping:
    def test_truncate_backs_up_to_last_space(self) -> None:
        assert truncate_text("hello world foo", 2) == "hello"

    def test_truncate_leaves_short_text(self) -> None:
        assert truncate_text("short", 10) == "short"

    def test_truncate_without_space_cuts_hard(self) -> None:
        assert truncate_text("a" * 20, 2) == "a" * 8

    def test_estimate_tokens_rounds_up(self) -> None:
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0


class TestInitialization:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self) -> None:
        provider = MockEmbeddingProvider()
        pipeline = _pipeline(provider)

        await asyncio.gather(*(pipeline.initialize() for _ in range(5)))

        assert provider.init_calls == 1
        assert pipeline.is_ready()

    @pytest.mark.asyncio
    async def test_failed_init_is_retried_on_next_call(self) -> None:
        provider = MockEmbeddingProvider(init_failures=1)
        pipeline = _pipeline(provider)

        with pytest.raises(InitializationError):
            await pipeline.initialize()
        assert not pipeline.is_ready()

        await pipeline.initialize()
        assert pipeline.is_ready()
        assert provider.init_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_waiters_all_see_failure(self) -> None:
        provider = MockEmbeddingProvider(init_failures=1)
        pipeline = _pipeline(provider)

        outcomes = await asyncio.gather(
            *(pipeline.initialize() for _ in range(3)), return_exceptions=True
        )

        assert all(isinstance(o, InitializationError) for o in outcomes)
        assert provider.init_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_init_error_is_wrapped(self) -> None:
        provider = _raw_provider([1.0, 0.0], dimension=2)
        provider.initialize = AsyncMock(side_effect=RuntimeError("no model"))
        pipeline = _pipeline(provider)

        with pytest.raises(InitializationError, match="no model"):
            await pipeline.initialize()

    def test_model_info(self) -> None:
        info = _pipeline(MockEmbeddingProvider()).get_model_info()

        assert info.model == "mock-bag-of-words"
        assert info.dimensions == 64
        assert info.max_tokens == 384
        assert info.is_ready is False


class TestEmbedOne:
    @pytest.mark.asyncio
    async def test_vector_is_unit_length(self) -> None:
        provider = _raw_provider([3.0, 4.0], dimension=2)
        result = await _pipeline(provider).embed_one("some text", "c1")

        assert result.chunk_id == "c1"
        assert result.embedding == pytest.approx([0.6, 0.8])
        assert math.isclose(sum(v * v for v in result.embedding), 1.0)
        assert result.token_count == estimate_tokens("some text")

    @pytest.mark.asyncio
    async def test_input_is_truncated_to_model_budget(self) -> None:
        provider = _raw_provider([1.0, 0.0], dimension=2, max_tokens=2)
        await _pipeline(provider).embed_one("hello world foo", "c1")

        provider.embed_single.assert_awaited_once_with("hello")

    @pytest.mark.asyncio
    async def test_dimension_mismatch_raises(self) -> None:
        provider = _raw_provider([1.0, 0.0], dimension=3)

        with pytest.raises(EmbeddingError, match="expected 3"):
            await _pipeline(provider).embed_one("text", "c1")

    @pytest.mark.asyncio
    async def test_zero_vector_raises(self) -> None:
        provider = _raw_provider([0.0, 0.0], dimension=2)

        with pytest.raises(EmbeddingError):
            await _pipeline(provider).embed_one("text", "c1")

    @pytest.mark.asyncio
    async def test_backend_exception_becomes_embedding_error(self) -> None:
        provider = _raw_provider([1.0, 0.0], dimension=2)
        provider.embed_single = AsyncMock(side_effect=RuntimeError("onnx crashed"))

        with pytest.raises(EmbeddingError, match="onnx crashed"):
            await _pipeline(provider).embed_one("text", "c1")


class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_failed_chunks_are_recorded_not_raised(self) -> None:
        provider = MockEmbeddingProvider(fail_on={"FAIL"})
        chunks = [
            make_chunk(i, f"chunk {i} FAIL" if i in (3, 7) else f"chunk {i} text")
            for i in range(10)
        ]

        batch = await _pipeline(provider).embed_batch(chunks)

        assert batch.success_count == 8
        assert len(batch.results) == 8
        assert {f.chunk_id for f in batch.errors} == {"doc-1-chunk-3", "doc-1-chunk-7"}
        assert all(f.error for f in batch.errors)

    @pytest.mark.asyncio
    async def test_progress_reported_per_group(self) -> None:
        calls: list[tuple[str, float, str | None]] = []
        chunks = [make_chunk(i, f"text {i}") for i in range(12)]

        await _pipeline(MockEmbeddingProvider()).embed_batch(
            chunks, on_progress=lambda s, p, d: calls.append((s, p, d))
        )

        assert [c[2] for c in calls] == [
            "Processing 5/12 chunks",
            "Processing 10/12 chunks",
            "Processing 12/12 chunks",
        ]
        assert {c[0] for c in calls} == {EMBEDDING_STAGE}
        assert calls[-1][1] == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_broken_progress_callback_does_not_abort(self) -> None:
        def _explode(stage: str, progress: float, details: str | None) -> None:
            raise RuntimeError("listener bug")

        chunks = [make_chunk(i, f"text {i}") for i in range(3)]
        batch = await _pipeline(MockEmbeddingProvider()).embed_batch(chunks, on_progress=_explode)

        assert batch.success_count == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        batch = await _pipeline(MockEmbeddingProvider()).embed_batch([])

        assert batch.success_count == 0
        assert batch.results == []
        assert batch.errors == []

    @pytest.mark.asyncio
    async def test_delay_only_between_groups(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sleeps: list[float] = []
        real_sleep = asyncio.sleep

        async def _recording_sleep(delay: float, *args, **kwargs):  # noqa: ANN002, ANN003
            if delay == 0.25:
                sleeps.append(delay)
            return await real_sleep(0, *args, **kwargs)

        monkeypatch.setattr(asyncio, "sleep", _recording_sleep)
        pipeline = EmbeddingPipeline(
            MockEmbeddingProvider(), batch_size=5, batch_delay_seconds=0.25
        )
        await pipeline.embed_batch([make_chunk(i, f"text {i}") for i in range(11)])

        # Three groups -> two pauses.
        assert sleeps == [0.25, 0.25]


class TestGroupOrdering:
    @pytest.mark.asyncio
    async def test_next_group_waits_for_every_call_of_the_previous(self) -> None:
        texts = [f"text number {i}" for i in range(10)]
        # First group finishes in reverse order of submission.
        delays = {texts[i]: 0.05 - i * 0.01 for i in range(5)}
        provider = _TimedProvider(delays)
        chunks = [make_chunk(i, t) for i, t in enumerate(texts)]

        await _pipeline(provider).embed_batch(chunks)

        position = {event: i for i, event in enumerate(provider.events)}
        last_first_group_finish = max(position[("finish", t)] for t in texts[:5])
        first_second_group_start = min(position[("start", t)] for t in texts[5:])
        assert last_first_group_finish < first_second_group_start

        finish_order = [t for kind, t in provider.events if kind == "finish"][:5]
        assert finish_order == list(reversed(texts[:5]))

    @pytest.mark.asyncio
    async def test_results_follow_chunk_ids_when_calls_finish_out_of_order(self) -> None:
        texts = [f"distinct words {i} {'x' * i}" for i in range(5)]
        delays = {t: 0.05 - i * 0.01 for i, t in enumerate(texts)}
        chunks = [make_chunk(i, t) for i, t in enumerate(texts)]

        batch = await _pipeline(_TimedProvider(delays)).embed_batch(chunks)

        assert [r.chunk_id for r in batch.results] == [c.id for c in chunks]
        for chunk, result in zip(chunks, batch.results, strict=True):
            assert result.embedding == pytest.approx(_bag_of_words_vector(chunk.text))
