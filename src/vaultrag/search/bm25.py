"""BM25 (sparse keyword) search over chunks or document metadata.

Builds and persists a ``BM25Okapi`` index over tokenised texts, then
ranks them by lexical relevance at query time.  Each persisted index
remembers the content version it was built from, so callers can tell a
stale index from a fresh one without re-tokenising the corpus.
"""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from rank_bm25 import BM25Okapi

from vaultrag.utils.text import tokenize

logger = logging.getLogger(__name__)


@dataclass
class _BM25Data:
    """Serialisable container for the BM25 index and its id mapping."""

    bm25: BM25Okapi | None
    ids: list[str] = field(default_factory=list)
    version: int = 0


class BM25SearchEngine:
    """Sparse keyword search engine using BM25Okapi.

    Parameters
    ----------
    index_path:
        Filesystem path where the pickle file is (or will be) stored.
    """

    def __init__(self, index_path: Path) -> None:
        self._index_path = index_path
        self._data: _BM25Data | None = None

    @property
    def version(self) -> int | None:
        """Content version of the loaded index, ``None`` when nothing is loaded."""
        return self._data.version if self._data is not None else None

    def __len__(self) -> int:
        return len(self._data.ids) if self._data is not None else 0

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def build_index(self, entries: list[tuple[str, str]], version: int = 0) -> None:
        """Tokenise *entries*, build a BM25 index, and persist to disk.

        Parameters
        ----------
        entries:
            ``(id, text)`` pairs.
        version:
            Content version the corpus was read at.
        """
        corpus = [tokenize(text) for _, text in entries]
        ids = [entry_id for entry_id, _ in entries]
        # BM25Okapi divides by the average document length.
        bm25 = BM25Okapi(corpus) if any(corpus) else None
        self._data = _BM25Data(bm25=bm25, ids=ids, version=version)

        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        with self._index_path.open("wb") as fh:
            pickle.dump(self._data, fh, protocol=pickle.HIGHEST_PROTOCOL)

        logger.info(
            "BM25 index built (%d entries, version %d) and saved to %s",
            len(ids),
            version,
            self._index_path,
        )

    def load_index(self) -> bool:
        """Load a previously-built index from disk; ``False`` if there is none."""
        if not self._index_path.exists():
            logger.debug("BM25 index file not found at %s", self._index_path)
            return False

        try:
            with self._index_path.open("rb") as fh:
                self._data = pickle.load(fh)  # noqa: S301
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError):
            logger.warning("Unreadable BM25 index at %s; it will be rebuilt", self._index_path)
            self._data = None
            return False

        logger.info(
            "BM25 index loaded from %s (%d entries)",
            self._index_path,
            len(self),
        )
        return True

    def delete(self) -> None:
        self._data = None
        self._index_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, top_k: int = 10) -> list[tuple[str, float]]:
        """Tokenise *query* and return the top-k BM25 results.

        Only entries containing at least one query token are returned;
        ties keep corpus order.

        Returns
        -------
        list[tuple[str, float]]
            ``(id, score)`` pairs ordered by descending BM25 score.
            Empty if the index has not been built or loaded.
        """
        if self._data is None or self._data.bm25 is None:
            return []

        tokenized_query = tokenize(query)
        if not tokenized_query:
            return []

        bm25 = self._data.bm25
        scores: np.ndarray = bm25.get_scores(tokenized_query)
        matches = [
            idx
            for idx, freqs in enumerate(bm25.doc_freqs)
            if any(token in freqs for token in tokenized_query)
        ]
        matches.sort(key=lambda idx: -float(scores[idx]))
        return [(self._data.ids[idx], float(scores[idx])) for idx in matches[:top_k]]
