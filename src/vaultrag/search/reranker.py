"""Post-fusion score boosts from usage, recency, and graph proximity."""

from __future__ import annotations

import math
import time

from vaultrag.core.models import DocStatistics, SearchResult

FREQUENCY_WEIGHT = 0.15
RECENCY_MAX_BOOST = 0.3
RECENCY_DECAY_PER_DAY = 0.01
GRAPH_PROXIMITY_BOOST = 0.2

_SECONDS_PER_DAY = 86400.0


def frequency_boost(open_count: int) -> float:
    return math.log1p(max(0, open_count)) * FREQUENCY_WEIGHT


def recency_boost(updated_at: float, now: float) -> float:
    if updated_at <= 0:
        return 0.0
    days = max(0.0, (now - updated_at) / _SECONDS_PER_DAY)
    return max(0.0, RECENCY_MAX_BOOST - days * RECENCY_DECAY_PER_DAY)


def apply_ranking_boosts(
    results: list[SearchResult],
    stats: dict[str, DocStatistics],
    mtimes: dict[str, float],
    nearby_doc_ids: set[str] | None = None,
    now: float | None = None,
) -> list[SearchResult]:
    """Add usage and proximity boosts to fused scores and re-sort.

    Parameters
    ----------
    results:
        Fused results, best first.
    stats:
        Statistics by document id (open counts).
    mtimes:
        Last modification time by document id.
    nearby_doc_ids:
        Documents within two hops of the file the user is looking at.
    now:
        Reference time in POSIX seconds; defaults to the current time.

    Returns
    -------
    list[SearchResult]
        The same results with boosted scores, re-sorted.  Equal scores
        keep their incoming order.
    """
    now = time.time() if now is None else now
    nearby = nearby_doc_ids or set()

    for result in results:
        doc_stats = stats.get(result.doc_id)
        boost = frequency_boost(doc_stats.open_count if doc_stats else 0)
        boost += recency_boost(mtimes.get(result.doc_id, 0.0), now)
        if result.doc_id in nearby:
            boost += GRAPH_PROXIMITY_BOOST
        result.score += boost

    return sorted(results, key=lambda r: -r.score)
