"""Tests for the markdown helpers and content hashing."""

from __future__ import annotations

from codegraph.infrastructure.parsing.hashing import compute_content_hash, content_address
from codegraph.infrastructure.parsing.markdown import (
    as_keyword_list,
    extract_frontmatter,
    first_heading,
)


class TestExtractFrontmatter:
    def test_with_frontmatter(self):
        meta, body = extract_frontmatter("---\ntitle: Auth\ntags: [jwt, login]\n---\n# Heading\nBody")
        assert meta == {"title": "Auth", "tags": ["jwt", "login"]}
        assert body.startswith("# Heading")

    def test_without_frontmatter(self):
        meta, body = extract_frontmatter("# Only a heading\n")
        assert meta == {}
        assert "Only a heading" in body


class TestFirstHeading:
    def test_first_of_many(self):
        assert first_heading("intro\n## Setup ##\n# Later") == "Setup"

    def test_none(self):
        assert first_heading("plain text") is None


class TestKeywordList:
    def test_forms(self):
        assert as_keyword_list("a, b ,,c") == ["a", "b", "c"]
        assert as_keyword_list(["x", 2]) == ["x", "2"]
        assert as_keyword_list(None) == []
        assert as_keyword_list(5) == ["5"]


class TestHashing:
    def test_content_hash_stable(self):
        assert compute_content_hash("abc") == compute_content_hash("abc")
        assert compute_content_hash("abc") != compute_content_hash("abd")

    def test_content_address_length(self):
        assert len(content_address("node-1", length=24)) == 24
