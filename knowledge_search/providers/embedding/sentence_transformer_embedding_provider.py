"""Local sentence-transformers embedding provider.

Alternative to the fastembed default for machines that already have
PyTorch.  Installed through the ``sentence-transformers`` extra.
"""

from __future__ import annotations

import asyncio
import threading

import structlog

from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.utils.errors import EmbeddingError, InitializationError

logger = structlog.get_logger(logger_name=__name__)

_MODEL_DIMENSIONS: dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "BAAI/bge-small-en-v1.5": 384,
}

_DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class SentenceTransformerEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by a local sentence-transformers model."""

    def __init__(self, model_name: str | None = None, max_tokens: int = 384) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model_name, 384)
        self._max_tokens = max_tokens
        self._model = None
        self._load_lock = threading.Lock()

    def _load_model(self) -> None:
        with self._load_lock:
            if self._model is not None:
                return
            try:
                from sentence_transformers import SentenceTransformer

                logger.info("loading_sentence_transformer", model=self._model_name)
                self._model = SentenceTransformer(self._model_name)
                self._model.max_seq_length = self._max_tokens
                # Trust the loaded model over the lookup table.
                self._dimension = self._model.get_sentence_embedding_dimension() or self._dimension
                logger.info(
                    "sentence_transformer_loaded",
                    model=self._model_name,
                    dimension=self._dimension,
                )
            except Exception as exc:
                raise InitializationError(
                    message=(
                        f"Failed to load sentence-transformers model "
                        f"'{self._model_name}': {exc}"
                    ),
                    provider_name=self.get_provider_name(),
                ) from exc

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        vectors = self._model.encode(
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vectors.tolist()

    async def initialize(self) -> None:
        await asyncio.to_thread(self._load_model)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._encode_sync, texts)
        except InitializationError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                message=f"Sentence-transformers embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_max_tokens(self) -> int:
        return self._max_tokens

    def get_model_name(self) -> str:
        return self._model_name

    def get_provider_name(self) -> str:
        return f"sentence_transformer_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if sentence-transformers is installed."""
        try:
            import sentence_transformers  # noqa: F401

            return True
        except ImportError:
            return False
