"""Unit tests for the pydantic data models."""

from __future__ import annotations

import pydantic
import pytest

from knowledge_search.models.documents import (
    FileType,
    ProcessingStatus,
    file_type_from_filename,
)
from knowledge_search.models.embedding import EmbeddingResult
from knowledge_search.models.search import ProcessingOutcome, SearchOptions, SearchResult
from tests.conftest import make_chunk, make_metadata


class TestFileType:
    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("paper.pdf", FileType.PDF),
            ("Report.DOCX", FileType.DOCX),
            ("README.md", FileType.MD),
            ("notes.markdown", FileType.MD),
            ("notes.txt", FileType.TXT),
            ("no_extension", FileType.TXT),
        ],
    )
    def test_from_filename(self, filename: str, expected: FileType) -> None:
        assert file_type_from_filename(filename) is expected


class TestValidation:
    def test_score_must_be_in_unit_range(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            SearchResult(
                chunk_id="c",
                document_id="d",
                document_filename="f",
                text="t",
                score=1.5,
                chunk_index=0,
            )

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            SearchOptions(limit=0)

    def test_progress_must_be_percentage(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            ProcessingStatus(progress=101)

    def test_search_option_defaults(self) -> None:
        options = SearchOptions()
        assert options.limit == 10
        assert options.min_score == 0.0
        assert options.document_ids is None
        assert options.include_metadata is True


class TestProcessingOutcome:
    def test_success_rate(self) -> None:
        chunks = [make_chunk(i) for i in range(4)]
        embeddings = [
            EmbeddingResult(chunk_id=c.id, embedding=[1.0], token_count=1) for c in chunks[:3]
        ]
        outcome = ProcessingOutcome(
            metadata=make_metadata(), chunks=chunks, embeddings=embeddings, success=True
        )
        assert outcome.success_rate == 75.0

    def test_success_rate_without_chunks(self) -> None:
        outcome = ProcessingOutcome(metadata=make_metadata(), success=False, error="x")
        assert outcome.success_rate == 0.0
