"""Abstract base class for the document text-extraction collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_search.models.documents import ExtractionResult


class ITextExtractor(ABC):
    """Turns uploaded file bytes into chunked text.

    Validation (media type, size ceiling) happens before any parsing.
    Failures are reported as ``ExtractionResult(success=False)`` with a
    user-facing ``error``; implementations do not raise for bad input.
    """

    @abstractmethod
    async def extract(self, data: bytes, filename: str, media_type: str) -> ExtractionResult:
        """Extract and chunk the text of one document.

        Parameters
        ----------
        data:
            Raw file bytes.
        filename:
            Original filename, kept in metadata.
        media_type:
            Declared MIME type, e.g. ``"application/pdf"``.
        """

    @abstractmethod
    def supported_media_types(self) -> list[str]:
        """Return the MIME types this extractor accepts."""
