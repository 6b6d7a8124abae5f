"""Per-document scoring inputs derived at index time."""

from __future__ import annotations

import math
import time

from vaultrag.core.models import DocStatistics, Document
from vaultrag.utils.text import count_words, detect_language


def richness_score(word_count: int, link_count: int, tag_count: int) -> float:
    """Content richness: log-scaled length plus a little credit for structure."""
    return round(math.log1p(word_count) + 0.5 * link_count + 0.25 * tag_count, 4)


def compute_statistics(doc: Document) -> DocStatistics:
    content = doc.indexable_content
    words = count_words(content)
    return DocStatistics(
        doc_id=doc.id,
        word_count=words,
        char_count=len(content),
        language=detect_language(content),
        richness_score=richness_score(
            words,
            len(doc.references.outgoing),
            len(doc.metadata.tags),
        ),
        updated_at=time.time(),
    )
