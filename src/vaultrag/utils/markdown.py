"""Markdown helpers: frontmatter, wiki links, inline tags."""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_WIKI_LINK_RE = re.compile(r"\[\[([^\]]+)\]\]")
# Letters, digits, underscore, hyphen, slash (nested tags).
_TAG_RE = re.compile(r"(?:^|\s)#((?:[^\W_]|[_\-/])+)", re.MULTILINE)
_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Return ``(frontmatter, body)``.

    Malformed YAML is logged and treated as absent so a single bad header
    never blocks indexing of the note body.
    """
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        logger.debug("Ignoring malformed frontmatter", exc_info=True)
        return {}, content[match.end() :]
    if not isinstance(data, dict):
        return {}, content[match.end() :]
    return data, content[match.end() :]


def extract_wiki_links(content: str) -> list[str]:
    """Targets of ``[[target|alias]]`` links in first-seen order, deduplicated."""
    seen: dict[str, None] = {}
    for raw in _WIKI_LINK_RE.findall(content):
        target = raw.split("|", 1)[0].split("#", 1)[0].strip()
        if target:
            seen.setdefault(target, None)
    return list(seen)


def extract_inline_tags(content: str) -> list[str]:
    """Inline ``#tags`` outside fenced code blocks; purely numeric tags are skipped."""
    body = _CODE_FENCE_RE.sub(" ", content)
    seen: dict[str, None] = {}
    for tag in _TAG_RE.findall(body):
        tag = tag.strip("/")
        if tag and not tag.isdigit():
            seen.setdefault(tag, None)
    return list(seen)


def frontmatter_list(frontmatter: dict[str, Any], key: str) -> list[str]:
    """Read a list-valued frontmatter key that may also be a comma string."""
    value = frontmatter.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        items = [v.strip() for v in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value if v is not None]
    else:
        items = [str(value).strip()]
    return [item.lstrip("#") for item in items if item]


def strip_code_blocks(content: str, languages: tuple[str, ...]) -> str:
    """Remove fenced code blocks tagged with any of *languages*."""
    for lang in languages:
        content = re.sub(rf"```{re.escape(lang)}\b.*?```", "", content, flags=re.DOTALL)
    return content
