"""Text embeddings for memory similarity search."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from .config import DEFAULT_EMBEDDING_MODEL
from .errors import TransientIOError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Produces a normalized embedding vector for a text."""

    async def embed(self, text: str) -> list[float]:
        ...


class SentenceTransformerEmbedder:
    """Embedder backed by a sentence-transformers model.

    The model is loaded on first use and encoding runs in a worker thread so
    the event loop keeps serving the chat while a memory is embedded.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        model: SentenceTransformer | None = None,
    ) -> None:
        self.model_name = model_name
        self._model = model

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, text: str) -> list[float]:
        vector = self._get_model().encode(
            text, convert_to_numpy=True, normalize_embeddings=True
        )
        return vector.astype("float32").tolist()

    async def embed(self, text: str) -> list[float]:
        """Embed a text.

        Raises:
            TransientIOError: If the model cannot be loaded or run.
        """
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise TransientIOError(f"Embedding failed: {e}") from e
