"""Scoring primitives shared by the retriever and the search use case.

All scores are in ``[0, 1]``; 0 means "no match".  Callers are expected
to lowercase both sides for case-insensitive matching.
"""

from __future__ import annotations

import re
from functools import lru_cache

from codegraph.domain.entities import CorpusEntry
from codegraph.domain.enums import SearchMode

EXACT_SCORE = 1.0
SUBSTRING_SCORE = 0.8
REGEX_SCORE = 0.9
FUZZY_SUBSTRING_SCORE = 0.9
FUZZY_PREFIX_SCORE = 0.7
FUZZY_WORD_SCORE = 0.6
FUZZY_FLOOR = 0.3

SNIPPET_LENGTH = 200

_WORDS = re.compile(r"\s+")


def tokenize(text: str, min_length: int = 1) -> list[str]:
    return [t for t in _WORDS.split(text.lower()) if len(t) >= min_length]


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def exact_score(text: str, query: str) -> float:
    if not query:
        return 0.0
    if text == query:
        return EXACT_SCORE
    if query in text:
        return SUBSTRING_SCORE
    return 0.0


def fuzzy_score(text: str, query: str) -> float:
    """Substring, then word prefix, then normalized edit distance."""
    if not query or not text:
        return 0.0
    if query in text:
        return FUZZY_SUBSTRING_SCORE
    for word in text.split():
        if word.startswith(query):
            return FUZZY_PREFIX_SCORE
        if query in word:
            return FUZZY_WORD_SCORE

    # Edit distance against the head of the text, normalized within that pair.
    head = text[:len(query) * 2]
    distance = levenshtein(head, query)
    similarity = 1 - distance / max(len(head), len(query))
    return max(0.0, similarity - FUZZY_FLOOR)


def regex_score(text: str, pattern: str, case_sensitive: bool = False) -> float:
    """0.9 when *pattern* matches *text*; invalid patterns score 0."""
    compiled = _compile(pattern, case_sensitive)
    if compiled is None:
        return 0.0
    return REGEX_SCORE if compiled.search(text) else 0.0


def match_score(text: str, query: str, mode: SearchMode, case_sensitive: bool = False) -> float:
    if mode == SearchMode.EXACT:
        return exact_score(text, query)
    if mode == SearchMode.REGEX:
        return regex_score(text, query, case_sensitive)
    # Semantic similarity has no embedding backend; it scores like fuzzy.
    return fuzzy_score(text, query)


def graph_score(distance: int) -> float:
    """Inverse hop distance: seeds score 1, direct neighbours 0.5, ..."""
    return 1.0 / (1 + distance)


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


@lru_cache(maxsize=256)
def _compile(pattern: str, case_sensitive: bool) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error:
        return None


# ---------------------------------------------------------------------------
# Corpus entries
# ---------------------------------------------------------------------------


def corpus_score(entry: CorpusEntry, tokens: list[str], category: str | None = None) -> float:
    """Token overlap with title, keywords and content, plus a category bonus."""
    title = entry.title.lower()
    keywords = [k.lower() for k in entry.keywords]
    content = entry.content.lower()

    score = 0.0
    for token in tokens:
        if token in title:
            score += 0.4
        if any(token in kw for kw in keywords):
            score += 0.3
        if token in content:
            score += 0.2
    if category and entry.category and entry.category.lower() == category.lower():
        score += 0.2
    return min(score, 1.0)


# ---------------------------------------------------------------------------
# Snippets
# ---------------------------------------------------------------------------


def extract_snippet(content: str, tokens: list[str], length: int = SNIPPET_LENGTH) -> str:
    """A *length*-character window starting shortly before the first match."""
    lower = content.lower()
    positions = [p for p in (lower.find(t) for t in tokens if t) if p != -1]
    if not positions:
        return content[:length] + ("..." if len(content) > length else "")

    match = min(positions)
    start = max(0, match - 50)
    end = min(len(content), start + length)
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet += "..."
    return snippet


def context_snippet(text: str, query: str, margin: int = 30, fallback: int = 100) -> str:
    """The match plus *margin* characters on each side."""
    index = text.lower().find(query.lower())
    if index == -1:
        return text[:fallback]
    start = max(0, index - margin)
    end = min(len(text), index + len(query) + margin)
    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet += "..."
    return snippet
