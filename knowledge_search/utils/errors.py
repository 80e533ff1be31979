"""Custom exception hierarchy for knowledge-search.

All application exceptions inherit from :class:`KnowledgeSearchError`, which
carries an optional ``provider_name`` so handlers can tell which backend
(e.g. "chromadb", "fastembed", "pymupdf") caused the failure.

    KnowledgeSearchError  (base -- catch-all)
    +-- ValidationError        (unsupported media type, oversized file)
    +-- ExtractionError        (text extraction failed)
    +-- EmbeddingError         (a single embedding call failed)
    +-- StorageError           (vector engine failure)
    +-- InitializationError    (model or store setup failed)
    +-- ConfigurationError     (invalid settings)
    +-- WorkerError            (isolated embedding worker failure)
        +-- WorkerTimeoutError     (request exceeded its deadline)
        +-- WorkerTerminatedError  (worker stopped with requests pending)

Per-chunk :class:`EmbeddingError` instances are collected by the batch
pipeline and never abort a batch; the others end the current operation.
"""


class KnowledgeSearchError(Exception):
    """Base exception for all knowledge-search errors.

    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[chromadb] Failed to open collection``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class ValidationError(KnowledgeSearchError):
    """Raised when a file is rejected before any processing (type or size)."""

    def __init__(
        self,
        message: str = "File validation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionError(KnowledgeSearchError):
    """Raised when text cannot be extracted from a document."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(KnowledgeSearchError):
    """Raised when the embedding backend fails for a single text."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageError(KnowledgeSearchError):
    """Raised when the vector engine cannot be reached or rejects a write."""

    def __init__(
        self,
        message: str = "Vector storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Lifecycle errors
# ---------------------------------------------------------------------------

class InitializationError(KnowledgeSearchError):
    """Raised when backend setup fails.  Shared init state is reset so a
    later call can retry."""

    def __init__(
        self,
        message: str = "Initialization failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeSearchError):
    """Raised when settings are missing or out of range."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding worker errors
# ---------------------------------------------------------------------------

class WorkerError(KnowledgeSearchError):
    """Raised when the isolated embedding worker fails."""

    def __init__(
        self,
        message: str = "Embedding worker error",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class WorkerTimeoutError(WorkerError):
    """Raised when a worker request is not answered before its deadline."""

    def __init__(
        self,
        message: str = "Worker request timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class WorkerTerminatedError(WorkerError):
    """Raised for requests still pending when the worker is terminated or dies."""

    def __init__(
        self,
        message: str = "Worker terminated",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
