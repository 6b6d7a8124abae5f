"""Semantic (dense vector) search engine for vaultrag.

Encodes queries through the embedding collaborator, then delegates
similarity search to a :class:`~vaultrag.storage.base.VectorStoreProtocol`
backend.
"""

from __future__ import annotations

import asyncio
import logging

from vaultrag.core.exceptions import (
    CollaboratorUnavailableError,
    EmbeddingError,
    ErrorCode,
    VectorBackendUnavailableError,
)
from vaultrag.providers.base import EmbeddingProvider
from vaultrag.storage.base import VectorStoreProtocol

logger = logging.getLogger(__name__)


class SemanticSearchEngine:
    """Dense-vector search engine.

    Parameters
    ----------
    vectors:
        Vector backend, or ``None`` when none is configured.
    provider:
        Embedding collaborator, or ``None``.
    model:
        Embedding model id; must match the one used at index time.
    timeout:
        Seconds allowed for encoding one query.
    """

    def __init__(
        self,
        vectors: VectorStoreProtocol | None,
        provider: EmbeddingProvider | None,
        model: str,
        timeout: float = 30.0,
    ) -> None:
        self._vectors = vectors
        self._provider = provider
        self._model = model
        self._timeout = timeout

    @property
    def available(self) -> bool:
        return self._vectors is not None and self._provider is not None

    async def encode(self, text: str) -> list[float]:
        """Embed *text* with the configured model.

        Raises
        ------
        CollaboratorUnavailableError
            If no embedding collaborator or model is configured.
        EmbeddingError
            If the collaborator fails or times out.
        """
        if self._provider is None:
            raise CollaboratorUnavailableError(
                "No embedding provider configured", code=ErrorCode.PROVIDER_NOT_FOUND
            )
        if not self._model:
            raise CollaboratorUnavailableError(
                "No embedding model configured", code=ErrorCode.MODEL_UNAVAILABLE
            )
        try:
            vectors = await asyncio.wait_for(
                self._provider.embed([text], self._model), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingError(
                f"Query embedding timed out after {self._timeout}s", cause=exc
            ) from exc
        if not vectors:
            raise EmbeddingError("Embedding provider returned no vector for the query")
        return vectors[0]

    async def search(self, query: str, top_k: int = 10) -> list[tuple[str, float]]:
        """Encode *query* and return the *top_k* nearest chunk records.

        Returns
        -------
        list[tuple[str, float]]
            ``(record_id, similarity)`` pairs, most similar first.
        """
        vector = await self.encode(query)
        return await self.search_by_vector(vector, top_k)

    async def search_by_vector(
        self,
        vector: list[float],
        top_k: int = 10,
    ) -> list[tuple[str, float]]:
        if self._vectors is None:
            raise VectorBackendUnavailableError(
                "No vector backend configured", code=ErrorCode.VECTOR_BACKEND_NOT_LOADED
            )
        results = await self._vectors.search(vector, top_k=top_k)
        logger.debug("Semantic search returned %d results", len(results))
        return results
