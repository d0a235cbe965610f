"""Tests for the BuildCorpusIndex command."""

from __future__ import annotations

from codegraph.application.commands.build_corpus_index import build_corpus_index
from codegraph.infrastructure.corpus.filesystem import FilesystemCorpusStore


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestBuildCorpusIndex:
    def test_builds_entries_from_markdown(self, tmp_path):
        docs = tmp_path / "docs"
        _write(
            docs / "security" / "auth.md",
            "---\ntitle: Authentication\nkeywords: [jwt, login]\n---\n# Ignored heading\nTokens expire.\n",
        )
        _write(docs / "intro.md", "# Getting Started\nInstall the tool.\n")
        _write(docs / "notes.txt", "not markdown")
        corpus = FilesystemCorpusStore(tmp_path / "index")

        result = build_corpus_index(docs, "docs", corpus_store=corpus)

        assert result.entries == 2
        assert result.skipped == []
        entries = {e.path: e for e in corpus.load("docs")}
        assert set(entries) == {"intro.md", "security/auth.md"}

        auth = entries["security/auth.md"]
        assert auth.id == "docs:security/auth.md"
        assert auth.title == "Authentication"
        assert auth.category == "security"
        assert auth.keywords == ["jwt", "login"]
        assert auth.content.startswith("# Ignored heading")
        assert auth.last_modified is not None

        intro = entries["intro.md"]
        assert intro.title == "Getting Started"
        assert intro.category is None

    def test_filename_fallback_and_explicit_id(self, tmp_path):
        docs = tmp_path / "rules"
        _write(docs / "no-eval.md", "---\nid: rule-7\ntags: security, eval\n---\nNever call eval.\n")
        corpus = FilesystemCorpusStore(tmp_path / "index")

        build_corpus_index(docs, "rules", corpus_store=corpus)

        (entry,) = corpus.load("rules")
        assert entry.id == "rule-7"
        assert entry.title == "no-eval"
        assert entry.keywords == ["security", "eval"]

    def test_empty_directory_writes_empty_index(self, tmp_path):
        docs = tmp_path / "tasks"
        docs.mkdir()
        corpus = FilesystemCorpusStore(tmp_path / "index")
        result = build_corpus_index(docs, "tasks", corpus_store=corpus)
        assert result.entries == 0
        assert corpus.load("tasks") == []
