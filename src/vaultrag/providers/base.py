"""Protocols for the collaborators the indexing core calls out to.

- **EmbeddingProvider** turns texts into vectors, in batches.
- **Summarizer** completes a named prompt, optionally with attachments
  (image bytes for descriptions).

Both are treated as slow and unreliable: callers wrap them in timeouts
and fall back instead of failing a whole pass.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel


class PromptId(str, Enum):
    DOC_SUMMARY = "doc-summary"
    IMAGE_DESCRIPTION = "image-description"


class Attachment(BaseModel):
    type: str = "image"
    data: bytes
    media_type: str


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding backends."""

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        """Embed *texts* with *model*.

        Parameters
        ----------
        texts:
            Texts to embed.  May be a batch of any size.
        model:
            Model identifier.

        Returns
        -------
        list[list[float]]
            One vector per input text, in input order.
        """
        ...


@runtime_checkable
class Summarizer(Protocol):
    """Protocol for prompt-completion backends used for summaries."""

    async def complete(
        self,
        prompt_id: PromptId,
        variables: dict[str, Any] | None,
        model: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> str:
        ...
