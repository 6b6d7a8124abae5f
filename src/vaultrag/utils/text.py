"""Text processing utilities shared by BM25, statistics, and snippets."""

from __future__ import annotations

import re

# NLTK English stopwords.
_STOP_WORDS: frozenset[str] = frozenset(
    "i me my myself we our ours ourselves you your yours yourself yourselves "
    "he him his himself she her hers herself it its itself they them their "
    "theirs themselves what which who whom this that these those am is are "
    "was were be been being have has had having do does did doing a an the "
    "and but if or because as until while of at by for with about against "
    "between into through during before after above below to from up down "
    "in out on off over under again further then once here there when where "
    "why how all any both each few more most other some such no nor not only "
    "own same so than too very s t can will just don should now".split()
)

# CJK unified ideographs, hiragana, katakana, hangul.
_CJK_RE = re.compile("[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
_WORD_RE = re.compile(r"\w+")
_CYRILLIC_RE = re.compile("[\u0400-\u04ff]")


def tokenize(text: str) -> list[str]:
    """Lowercase word tokenizer for BM25.

    Latin words are split on ``\\w+`` and stop-word filtered; every CJK
    character becomes its own token since those scripts have no spaces.
    """
    tokens: list[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if _CJK_RE.search(word):
            tokens.extend(
                part
                for part in re.split(r"(" + _CJK_RE.pattern + r")", word)
                if part and part not in _STOP_WORDS
            )
        elif word not in _STOP_WORDS:
            tokens.append(word)
    return tokens


def count_words(text: str) -> int:
    """Count words, treating each CJK character as one word."""
    cjk = len(_CJK_RE.findall(text))
    latin = len(_WORD_RE.findall(_CJK_RE.sub(" ", text)))
    return cjk + latin


def detect_language(text: str) -> str | None:
    """Guess the dominant script of *text*.

    Returns ``"cjk"``, ``"cyrillic"``, ``"latin"``, or ``None`` for text
    without letters.
    """
    letters = [ch for ch in text if ch.isalpha()]
    if not letters:
        return None
    sample = "".join(letters[:5000])
    if len(_CJK_RE.findall(sample)) / len(sample) > 0.3:
        return "cjk"
    if len(_CYRILLIC_RE.findall(sample)) / len(sample) > 0.3:
        return "cyrillic"
    return "latin"


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def make_snippet(text: str, query: str, length: int = 300) -> str:
    """Return the *length*-char window of *text* with the most query terms."""
    if len(text) <= length:
        return text

    terms = set(tokenize(query))
    if not terms:
        return _truncate(text, length)

    lowered = text.lower()
    best_start, best_score = 0, -1
    for match in _WORD_RE.finditer(text):
        start = min(match.start(), len(text) - length)
        window = lowered[start : start + length]
        score = sum(1 for t in terms if t in window)
        if score > best_score:
            best_start, best_score = start, score
        if start + length >= len(text):
            break

    snippet = text[best_start : best_start + length]
    prefix = "..." if best_start > 0 else ""
    suffix = "..." if best_start + length < len(text) else ""
    return prefix + snippet + suffix


def _truncate(text: str, length: int) -> str:
    """Word-aware truncation fallback."""
    truncated = text[:length]
    last_space = truncated.rfind(" ")
    if last_space > length * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."
