"""Application settings loaded from environment variables via pydantic-settings.

Two sources are read, highest priority first:

  1. Environment variables, e.g. ``CHUNK_MAX_WORDS=400``
  2. A ``.env`` file in the working directory

Field names map to upper-case env vars automatically.  Defaults apply when
neither source sets a value.  ``config/config.yaml`` can layer further
defaults underneath both; see :mod:`knowledge_search.config.loader`.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """knowledge-search settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Embedding ===
    # "fastembed" (ONNX, no PyTorch) or "sentence_transformer".
    embedding_provider: str = "fastembed"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_max_tokens: int = Field(default=384, gt=0)
    embedding_batch_size: int = Field(default=5, gt=0)
    embedding_batch_delay_seconds: float = Field(default=0.1, ge=0.0)

    # === Embedding worker ===
    use_worker: bool = True
    worker_request_timeout_seconds: float = Field(default=300.0, gt=0.0)

    # === Chunking ===
    chunk_max_words: int = Field(default=500, gt=0)
    chunk_overlap_words: int = Field(default=50, ge=0)
    chunk_min_words: int = Field(default=50, ge=0)

    # === Extraction ===
    max_file_size_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    # === Vector store ===
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "document_embeddings"

    # === Search defaults ===
    search_default_limit: int = Field(default=10, gt=0)
    search_default_min_score: float = Field(default=0.3, ge=0.0, le=1.0)

    # === App ===
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_chunk_window(self) -> "Settings":
        if self.chunk_overlap_words >= self.chunk_max_words:
            raise ValueError(
                "chunk_overlap_words must be smaller than chunk_max_words"
            )
        return self
