"""Bounded cache of compiled ignore-glob patterns."""

from __future__ import annotations

import fnmatch
import re
from functools import lru_cache
from typing import Pattern


def _translate(glob: str) -> Pattern[str]:
    return re.compile(fnmatch.translate(glob))


class PatternCache:
    """Compiled ignore-glob patterns keyed by the raw glob string.

    Parameters
    ----------
    maxsize:
        Maximum number of compiled patterns kept; least recently used
        entries are evicted first.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._compile = lru_cache(maxsize=maxsize)(_translate)

    def compile(self, glob: str) -> Pattern[str]:
        return self._compile(glob)

    def matches_any(self, path: str, globs: list[str]) -> bool:
        return any(self.compile(g).match(path) for g in globs)

    def __len__(self) -> int:
        return self._compile.cache_info().currsize
