"""Markdown helpers for corpus indexing."""

from __future__ import annotations

import re
from typing import Any

import frontmatter

_HEADING = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def extract_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Extract YAML front-matter from markdown content.

    Returns ``(metadata_dict, body_without_frontmatter)``.
    If parsing fails, returns ``({}, original_content)``.
    """
    try:
        post = frontmatter.loads(content)
        return dict(post.metadata), post.content
    except Exception:
        return {}, content


def first_heading(body: str) -> str | None:
    match = _HEADING.search(body)
    return match.group(1) if match else None


def as_keyword_list(value: Any) -> list[str]:
    """Front-matter keywords may be a list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, (list, tuple)):
        return [str(k).strip() for k in value if str(k).strip()]
    return [str(value)]
