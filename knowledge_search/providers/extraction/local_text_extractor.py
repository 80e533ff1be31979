"""Local text extraction for PDF, DOCX, plain-text and Markdown files.

PDF pages are read with PyMuPDF (``fitz``) and joined with newlines.  DOCX
paragraphs are read with python-docx.  Text and Markdown are decoded as
UTF-8 and kept verbatim (Markdown syntax is not stripped).

Every file is validated before parsing: the declared media type must be
supported and the size must be within the ceiling.  Extraction runs in a
worker thread since both parsers are blocking.
"""

from __future__ import annotations

import asyncio
import io
import uuid

import structlog

from knowledge_search.interfaces.text_extractor import ITextExtractor
from knowledge_search.models.documents import (
    SUPPORTED_MEDIA_TYPES,
    DocumentMetadata,
    ExtractionResult,
    FileType,
    file_type_from_filename,
)
from knowledge_search.services.chunker import TextChunker
from knowledge_search.utils.errors import ExtractionError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
MIN_TEXT_LENGTH = 10
NO_TEXT_MESSAGE = "No readable text content found in file"


class LocalTextExtractor(ITextExtractor):
    """Extracts text from uploaded bytes and chunks it.

    Parameters
    ----------
    chunker:
        Splits the extracted text into :class:`DocumentChunk` objects.
    max_file_size_bytes:
        Upload ceiling (default 50 MB).
    """

    def __init__(
        self,
        chunker: TextChunker,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
    ) -> None:
        self._chunker = chunker
        self._max_bytes = max_file_size_bytes

    def supported_media_types(self) -> list[str]:
        return list(SUPPORTED_MEDIA_TYPES)

    def validate(self, data: bytes, media_type: str) -> FileType:
        """Return the file type for *media_type* or raise :class:`ValidationError`."""
        file_type = SUPPORTED_MEDIA_TYPES.get(media_type)
        if file_type is None:
            raise ValidationError(
                message=f"Unsupported file type: {media_type}. Supported types: PDF, DOCX, TXT, MD"
            )
        if len(data) > self._max_bytes:
            raise ValidationError(
                message=(
                    f"File too large: {len(data) / 1024 / 1024:.1f}MB. "
                    f"Maximum size: {self._max_bytes / 1024 / 1024:g}MB"
                )
            )
        return file_type

    async def extract(self, data: bytes, filename: str, media_type: str) -> ExtractionResult:
        try:
            file_type = self.validate(data, media_type)
        except ValidationError as exc:
            logger.warning(
                "file_rejected", filename=filename, media_type=media_type, error=exc.message
            )
            return _failed(filename, len(data), file_type_from_filename(filename), exc.message)

        try:
            text = await asyncio.to_thread(_extract_text, data, file_type)
            if len(text) < MIN_TEXT_LENGTH:
                raise ExtractionError(message=NO_TEXT_MESSAGE)
        except Exception as exc:
            message = exc.message if isinstance(exc, ExtractionError) else str(exc)
            logger.error(
                "text_extraction_failed",
                filename=filename,
                file_type=file_type.value,
                error=message,
            )
            return _failed(filename, len(data), file_type, message)

        document_id = str(uuid.uuid4())
        chunks = self._chunker.chunk(text, document_id)
        metadata = DocumentMetadata(
            id=document_id,
            filename=filename,
            file_size=len(data),
            file_type=file_type,
            chunk_count=len(chunks),
        )
        logger.info(
            "text_extracted",
            filename=filename,
            file_type=file_type.value,
            characters=len(text),
            chunks=len(chunks),
        )
        return ExtractionResult(
            success=True,
            metadata=metadata,
            chunks=chunks,
            extracted_text=text,
        )


def _failed(filename: str, size: int, file_type: FileType, error: str) -> ExtractionResult:
    return ExtractionResult(
        success=False,
        metadata=DocumentMetadata(
            id=str(uuid.uuid4()),
            filename=filename,
            file_size=size,
            file_type=file_type,
            error_message=error,
        ),
        error=error,
    )


# ---------------------------------------------------------------------------
# Format readers (blocking; called via asyncio.to_thread)
# ---------------------------------------------------------------------------

def _extract_text(data: bytes, file_type: FileType) -> str:
    if file_type is FileType.PDF:
        return _read_pdf(data)
    if file_type is FileType.DOCX:
        return _read_docx(data)
    return data.decode("utf-8", errors="replace").strip()


def _read_pdf(data: bytes) -> str:
    import fitz  # PyMuPDF

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ExtractionError(
            message=f"PDF extraction failed: {exc}",
            provider_name="pymupdf",
        ) from exc
    try:
        pages = [page.get_text("text") for page in doc]
    finally:
        doc.close()
    return "\n".join(pages).strip()


def _read_docx(data: bytes) -> str:
    from docx import Document

    try:
        doc = Document(io.BytesIO(data))
    except Exception as exc:
        raise ExtractionError(
            message=f"DOCX extraction failed: {exc}",
            provider_name="python-docx",
        ) from exc
    return "\n".join(p.text for p in doc.paragraphs if p.text.strip()).strip()
