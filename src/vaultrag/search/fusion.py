"""Reciprocal Rank Fusion over full-text, vector, and metadata rankings.

This module provides three functions:

- :func:`fuse_results` -- merge ranked lists from several engines using
  weighted Reciprocal Rank Fusion (RRF).
- :func:`collapse_to_documents` -- turn a chunk-level ranking into a
  document-level one, keeping each document's best rank.
- :func:`two_stage_fusion` -- fuse the content lists into one content
  score, then blend it with the metadata ranking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable


@dataclass
class FusedHit:
    """One fused document with the per-source ranks that produced it."""

    id: str
    score: float
    content_score: float = 0.0
    meta_score: float = 0.0
    ranks: dict[str, int] = field(default_factory=dict)


def fuse_results(
    ranked_lists: dict[str, list[tuple[str, float]]],
    k: int = 60,
    weights: dict[str, float] | None = None,
) -> list[tuple[str, float]]:
    """Merge multiple ranked lists using Reciprocal Rank Fusion.

    For every item that appears in at least one list the fused score is
    computed as::

        score = sum(w_i / (k + rank_i))

    where *rank_i* is the **1-based** position of the item in each
    engine's result list and *w_i* the engine's weight (default ``1``).

    Parameters
    ----------
    ranked_lists:
        A mapping of ``engine_name`` to a list of ``(id, score)`` pairs,
        ordered by descending relevance.
    k:
        The RRF constant (default ``60``).  Higher values dampen the
        influence of top-ranked results.
    weights:
        Optional per-engine weights.

    Returns
    -------
    list[tuple[str, float]]
        ``(id, fused_score)`` pairs sorted by descending fused score.
        Ties keep the order in which items were first seen, walking the
        lists in mapping order.
    """
    weights = weights or {}
    rrf_scores: dict[str, float] = {}

    for engine, results in ranked_lists.items():
        weight = weights.get(engine, 1.0)
        for rank_0, (item_id, _score) in enumerate(results):
            rank = rank_0 + 1  # 1-based
            rrf_scores[item_id] = rrf_scores.get(item_id, 0.0) + weight / (k + rank)

    # dicts keep insertion order, so enumerate() gives first appearance
    order = {item_id: i for i, item_id in enumerate(rrf_scores)}
    return sorted(rrf_scores.items(), key=lambda x: (-x[1], order[x[0]]))


def collapse_to_documents(
    hits: list[tuple[str, float]],
    doc_of: Callable[[str], str | None],
) -> list[tuple[str, float]]:
    """Map chunk-level hits to documents, keeping each document's first hit.

    *hits* must already be ordered best-first.  Hits *doc_of* cannot map
    are dropped.
    """
    seen: set[str] = set()
    collapsed: list[tuple[str, float]] = []
    for hit_id, score in hits:
        doc_id = doc_of(hit_id)
        if doc_id is None or doc_id in seen:
            continue
        seen.add(doc_id)
        collapsed.append((doc_id, score))
    return collapsed


def two_stage_fusion(
    content_lists: dict[str, list[tuple[str, float]]],
    meta_list: list[tuple[str, float]],
    *,
    k: int = 60,
    content_weight: float = 0.6,
    content_vs_meta_weight: float = 0.5,
    meta_name: str = "meta",
) -> list[FusedHit]:
    """Fuse content rankings, then blend in the metadata ranking.

    Stage 1 scores each document as
    ``content_weight * sum(1 / (k + rank))`` over the content lists.
    Stage 2 computes::

        final = w * content + (1 - w) * 1 / (k + meta_rank)

    with ``w = content_vs_meta_weight``; a document missing from the
    metadata ranking gets no metadata term.

    Parameters
    ----------
    content_lists:
        Document-level rankings by source name (e.g. ``fulltext``,
        ``vector``).
    meta_list:
        Document-level metadata ranking.

    Returns
    -------
    list[FusedHit]
        Sorted by descending final score, ties by first appearance
        (content lists first, then metadata) and then id.
    """
    ranks: dict[str, dict[str, int]] = {}
    order: dict[str, int] = {}

    for source, results in content_lists.items():
        for rank_0, (doc_id, _score) in enumerate(results):
            ranks.setdefault(doc_id, {})[source] = rank_0 + 1
            order.setdefault(doc_id, len(order))
    for rank_0, (doc_id, _score) in enumerate(meta_list):
        ranks.setdefault(doc_id, {})[meta_name] = rank_0 + 1
        order.setdefault(doc_id, len(order))

    content_fused = dict(fuse_results(content_lists, k=k))

    hits: list[FusedHit] = []
    for doc_id, doc_ranks in ranks.items():
        content = content_weight * content_fused.get(doc_id, 0.0)
        meta_rank = doc_ranks.get(meta_name)
        meta = 1.0 / (k + meta_rank) if meta_rank is not None else 0.0
        score = content_vs_meta_weight * content + (1.0 - content_vs_meta_weight) * meta
        hits.append(
            FusedHit(
                id=doc_id,
                score=score,
                content_score=content,
                meta_score=meta,
                ranks=doc_ranks,
            )
        )

    hits.sort(key=lambda h: (-h.score, order[h.id], h.id))
    return hits
