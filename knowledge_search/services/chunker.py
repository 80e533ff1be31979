"""Word-window text chunking with fixed overlap.

Splits extracted document text into :class:`DocumentChunk` objects of at
most ``max_words_per_chunk`` words.  Consecutive windows share
``overlap_words`` words so a passage that straddles a boundary is fully
contained in at least one chunk.

Positions are character offsets into the original text.  A chunk's span
runs from its first word up to the start of the word that follows the
window (or the end of the last word for the final window), and its text
is that span stripped of surrounding whitespace.
"""

from __future__ import annotations

import re
import uuid

import structlog

from knowledge_search.models.documents import ChunkValidation, DocumentChunk
from knowledge_search.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_WORD_PATTERN = re.compile(r"\b\w+\b")

# A chunk may share at most this fraction of its text with the next one.
_MAX_OVERLAP_RATIO = 0.5


class TextChunker:
    """Splits text into overlapping fixed-size word windows.

    Parameters
    ----------
    max_words_per_chunk:
        Window size in words (default 500).
    overlap_words:
        Words shared by consecutive windows (default 50).
    min_chunk_words:
        Texts with at most this many words become a single chunk
        (default 50).
    """

    def __init__(
        self,
        max_words_per_chunk: int = 500,
        overlap_words: int = 50,
        min_chunk_words: int = 50,
    ) -> None:
        if max_words_per_chunk <= 0:
            raise ConfigurationError(message="max_words_per_chunk must be positive")
        if overlap_words < 0 or min_chunk_words < 0:
            raise ConfigurationError(
                message="overlap_words and min_chunk_words must not be negative"
            )
        self._max_words = max_words_per_chunk
        self._overlap = overlap_words
        self._min_words = min_chunk_words

    @property
    def min_chunk_words(self) -> int:
        return self._min_words

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, document_id: str) -> list[DocumentChunk]:
        """Split *text* into ordered, overlapping chunks.

        Parameters
        ----------
        text:
            Full extracted text of the document.
        document_id:
            Owning document, copied onto every chunk.

        Returns
        -------
        list[DocumentChunk]
            Chunks indexed ``0..N-1``.  Short (or empty) text yields a
            single chunk covering the whole input.
        """
        words = [(m.start(), m.end()) for m in _WORD_PATTERN.finditer(text)]
        total = len(words)

        if total <= self._min_words:
            return [
                DocumentChunk(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    chunk_index=0,
                    text=text.strip(),
                    word_count=total,
                    start_position=0,
                    end_position=len(text),
                )
            ]

        step = max(self._max_words - self._overlap, 1)
        chunks: list[DocumentChunk] = []
        current = 0

        while current < total:
            end = min(current + self._max_words, total)
            start_position = words[current][0]
            end_position = words[end][0] if end < total else words[-1][1]

            chunks.append(
                DocumentChunk(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    chunk_index=len(chunks),
                    text=text[start_position:end_position].strip(),
                    word_count=end - current,
                    start_position=start_position,
                    end_position=end_position,
                )
            )

            if end >= total:
                break
            current += step

        logger.debug(
            "chunking_complete",
            document_id=document_id,
            num_chunks=len(chunks),
            total_words=total,
        )
        return chunks

    def validate(self, chunks: list[DocumentChunk]) -> ChunkValidation:
        """Check *chunks* against this chunker's minimum size."""
        return validate_chunks(chunks, min_chunk_words=self._min_words)


def validate_chunks(chunks: list[DocumentChunk], min_chunk_words: int = 50) -> ChunkValidation:
    """Collect every problem found in a chunk sequence.

    Checks for empty text, undersized chunks (the final chunk is exempt),
    indices that do not match sequence position, and overlaps larger than
    half of the earlier chunk's text.  All problems are reported rather
    than stopping at the first one.
    """
    errors: list[str] = []

    empty = sum(1 for c in chunks if not c.text.strip())
    if empty:
        errors.append(f"Found {empty} empty chunks")

    tiny = sum(1 for c in chunks[:-1] if c.word_count < min_chunk_words)
    if tiny:
        errors.append(f"Found {tiny} chunks smaller than {min_chunk_words} words")

    for position, chunk in enumerate(chunks):
        if chunk.chunk_index != position:
            errors.append(
                f"Chunk index mismatch at position {position}: "
                f"expected {position}, got {chunk.chunk_index}"
            )

    for i, (current, following) in enumerate(zip(chunks, chunks[1:], strict=False)):
        overlap = current.end_position - following.start_position
        if overlap > 0 and overlap > len(current.text) * _MAX_OVERLAP_RATIO:
            errors.append(
                f"Excessive overlap between chunks {i} and {i + 1}: {overlap} characters"
            )

    return ChunkValidation(is_valid=not errors, errors=errors)
