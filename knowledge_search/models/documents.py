"""Document-side models: file types, document metadata, chunks, and
ingest results.

All models are frozen.  Re-processing a file produces a new
:class:`DocumentMetadata` via ``model_copy(update={...})`` rather than
mutating the old one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# FileType: the closed set of document formats we can extract.
# ---------------------------------------------------------------------------
class FileType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"


# Declared media type -> FileType.  Anything else is rejected before extraction.
SUPPORTED_MEDIA_TYPES: dict[str, FileType] = {
    "application/pdf": FileType.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": FileType.DOCX,
    "text/plain": FileType.TXT,
    "text/markdown": FileType.MD,
    "text/x-markdown": FileType.MD,
}

_EXTENSION_TYPES: dict[str, FileType] = {
    ".pdf": FileType.PDF,
    ".docx": FileType.DOCX,
    ".md": FileType.MD,
    ".markdown": FileType.MD,
    ".txt": FileType.TXT,
}

_MEDIA_TYPE_BY_FILE_TYPE: dict[FileType, str] = {
    FileType.PDF: "application/pdf",
    FileType.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    FileType.TXT: "text/plain",
    FileType.MD: "text/markdown",
}


def file_type_from_filename(filename: str) -> FileType:
    """Infer a :class:`FileType` from a filename extension (default ``txt``)."""
    return _EXTENSION_TYPES.get(PurePath(filename).suffix.lower(), FileType.TXT)


def guess_media_type(filename: str) -> str:
    """Return the declared media type for a filename (``application/octet-stream`` if unknown)."""
    suffix = PurePath(filename).suffix.lower()
    if suffix not in _EXTENSION_TYPES:
        return "application/octet-stream"
    return _MEDIA_TYPE_BY_FILE_TYPE[_EXTENSION_TYPES[suffix]]


# ---------------------------------------------------------------------------
# DocumentMetadata
# ---------------------------------------------------------------------------
class DocumentMetadata(BaseModel):
    """Metadata for one processed (or failed) document."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique document identifier.")
    filename: str
    file_size: int = Field(ge=0, description="Size of the uploaded file in bytes.")
    file_type: FileType
    uploaded_at: datetime = Field(default_factory=_utcnow)
    last_indexed: datetime = Field(default_factory=_utcnow)
    chunk_count: int = Field(default=0, ge=0)
    error_message: str | None = None


# ---------------------------------------------------------------------------
# DocumentChunk: the unit of embedding and retrieval.
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """A positioned window of a document's extracted text.

    ``start_position`` / ``end_position`` are character offsets into the
    extracted text.  Indices are contiguous from 0 in creation order.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique chunk identifier.")
    document_id: str
    chunk_index: int = Field(ge=0)
    text: str
    word_count: int = Field(ge=0)
    start_position: int = Field(ge=0)
    end_position: int = Field(ge=0)


class ChunkValidation(BaseModel):
    """Outcome of a post-hoc chunk sequence check."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Extraction and processing results
# ---------------------------------------------------------------------------
class ExtractionResult(BaseModel):
    """Output of the text-extraction collaborator."""

    model_config = ConfigDict(frozen=True)

    success: bool
    metadata: DocumentMetadata
    chunks: list[DocumentChunk] = Field(default_factory=list)
    extracted_text: str = ""
    error: str | None = None


class ProcessingStatus(BaseModel):
    """Transient progress projection for the ingest currently running."""

    model_config = ConfigDict(frozen=True)

    stage: str = ""
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    is_processing: bool = False
    current_file: str | None = None
