"""Local ONNX-based embedding provider using fastembed.

Wraps ``fastembed.TextEmbedding`` to implement :class:`IEmbeddingProvider`
on ONNX Runtime, so no PyTorch install is needed.  Default model is
``sentence-transformers/all-MiniLM-L6-v2`` (384 dimensions, 384 max tokens).

Model loading and inference are CPU-bound and run through
``asyncio.to_thread`` so the calling event loop keeps serving other work.
"""

from __future__ import annotations

import asyncio
import threading

import structlog

from knowledge_search.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_search.utils.errors import EmbeddingError, InitializationError

logger = structlog.get_logger(logger_name=__name__)

# model name -> (dimension, max tokens)
_MODEL_SPECS: dict[str, tuple[int, int]] = {
    "sentence-transformers/all-MiniLM-L6-v2": (384, 384),
    "BAAI/bge-small-en-v1.5": (384, 512),
    "BAAI/bge-base-en-v1.5": (768, 512),
    "intfloat/multilingual-e5-large": (1024, 512),
}

_DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by fastembed (ONNX Runtime).

    The model is loaded on :meth:`initialize` or lazily on first embed.
    Weights are downloaded on first run and cached locally afterwards.
    """

    def __init__(
        self,
        model_name: str | None = None,
        max_tokens: int | None = None,
        cache_dir: str | None = None,
    ) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        dimension, model_max_tokens = _MODEL_SPECS.get(self._model_name, (384, 384))
        self._dimension = dimension
        self._max_tokens = max_tokens or model_max_tokens
        self._cache_dir = cache_dir
        self._model = None
        self._load_lock = threading.Lock()

    def _load_model(self) -> None:
        with self._load_lock:
            if self._model is not None:
                return
            try:
                from fastembed import TextEmbedding

                logger.info("loading_fastembed_model", model=self._model_name)
                self._model = TextEmbedding(
                    model_name=self._model_name,
                    cache_dir=self._cache_dir,
                )
                logger.info(
                    "fastembed_model_loaded",
                    model=self._model_name,
                    dimension=self._dimension,
                )
            except Exception as exc:
                raise InitializationError(
                    message=f"Failed to load fastembed model '{self._model_name}': {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        # fastembed yields one numpy array per input
        return [vector.tolist() for vector in self._model.embed(texts)]

    async def initialize(self) -> None:
        await asyncio.to_thread(self._load_model)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._embed_sync, texts)
        except InitializationError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                message=f"Fastembed embedding error: {exc}",
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
        return f"fastembed_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if fastembed is installed."""
        try:
            import fastembed  # noqa: F401

            return True
        except ImportError:
            return False
