"""Local embedding provider backed by ``sentence-transformers``."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """:class:`EmbeddingProvider` running a ``SentenceTransformer`` model in-process.

    Models are **lazy-loaded** on first use and cached per model name, so
    importing this module stays cheap.  Encoding runs in a worker thread
    to keep the event loop responsive.
    """

    def __init__(self, device: str | None = None) -> None:
        self._device = device
        self._models: dict[str, SentenceTransformer] = {}

    def _load_model(self, model_name: str) -> SentenceTransformer:
        model = self._models.get(model_name)
        if model is None:
            logger.info("Loading SentenceTransformer model: %s", model_name)
            from sentence_transformers import SentenceTransformer

            model = SentenceTransformer(model_name, device=self._device)
            self._models[model_name] = model
        return model

    def _encode(self, texts: list[str], model_name: str) -> list[list[float]]:
        model = self._load_model(model_name)
        embeddings = model.encode(texts, show_progress_bar=False)
        return [e.tolist() for e in embeddings]  # type: ignore[union-attr]

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts, model)
