"""Tests for the codegraph CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from codegraph.api.cli import cli
from codegraph.config.logging import configure_logging
from codegraph.config.settings import get_settings


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.delenv("CODEGRAPH_OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    # The CLI points the log handler at the runner's stream; restore it.
    configure_logging()


@pytest.fixture
def invoke(runner, tmp_path):
    index_dir = str(tmp_path / ".codegraph")

    def _invoke(*args):
        return runner.invoke(cli, ["--index-dir", index_dir, "--log-level", "ERROR", *args])

    return _invoke


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    (root / "auth.py").write_text(
        'class AuthService:\n    """Issues login tokens."""\n\n    def login(self, name):\n        return name\n',
        encoding="utf-8",
    )
    (root / "broken.py").write_text("def broken(:\n", encoding="utf-8")
    return root


class TestCliVersion:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "codegraph" in result.output
        assert "1.0.0" in result.output


class TestIndex:
    def test_index_tree(self, invoke, project):
        result = invoke("index", str(project))
        assert result.exit_code == 0, result.output
        assert "Indexed 1 file(s), skipped 1" in result.output
        assert "skipped broken.py: PARSE_ERROR" in result.output

    def test_reindex_reports_unchanged(self, invoke, project):
        invoke("index", str(project))
        again = invoke("index", str(project))
        assert "Indexed 0 file(s), skipped 1" in again.output
        assert "unchanged: 1 file(s)" in again.output

        forced = invoke("index", str(project), "--force")
        assert "Indexed 1 file(s), skipped 1" in forced.output
        assert "unchanged" not in forced.output

    def test_missing_path(self, invoke, tmp_path):
        result = invoke("index", str(tmp_path / "nope"))
        assert result.exit_code != 0

    def test_index_persists_between_invocations(self, invoke, project):
        invoke("index", str(project))
        result = invoke("status")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["graph"]["nodes_by_type"]["file"] == 1
        assert data["discovery_configured"] is False
        assert data["queue"]["total"] == 0


class TestQueries:
    def test_query(self, invoke, project):
        invoke("index", str(project))
        result = invoke("query", "AuthService", "--source", "code")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["results"][0]["id"] == "entity:authservice"
        assert data["results"][0]["source"] == "code"
        assert "subgraph" not in data

    def test_query_related(self, invoke, project):
        invoke("index", str(project))
        data = json.loads(invoke("query", "AuthService", "--source", "code", "--related").output)
        assert data["subgraph"]["node_count"] >= 2

    def test_query_invalid_score(self, invoke):
        result = invoke("query", "auth", "--min-score", "3")
        assert result.exit_code == 2
        assert "min_score" in result.output

    def test_search(self, invoke, project):
        invoke("index", str(project))
        result = invoke("search", "auth")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        ids = [m["id"] for m in data["matches"]]
        assert "file:auth.py" in ids
        assert {"id", "type", "score", "field", "snippet"} == set(data["matches"][0])

    def test_search_empty(self, invoke):
        assert invoke("search", " ").exit_code == 2


class TestCorpusBuild:
    def test_build_docs(self, invoke, tmp_path):
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "auth.md").write_text("---\ntitle: Authentication\n---\n# Login flow\nTokens.\n", encoding="utf-8")
        result = invoke("corpus", "build", str(docs), "--kind", "docs")
        assert result.exit_code == 0, result.output
        assert "Wrote 1 docs entries to" in result.output

        data = json.loads(invoke("query", "Authentication", "--source", "documentation").output)
        assert data["results"][0]["source"] == "documentation"

    def test_unknown_kind(self, invoke, tmp_path):
        assert invoke("corpus", "build", str(tmp_path), "--kind", "wiki").exit_code == 2


class TestIngest:
    def test_without_provider(self, invoke, tmp_path):
        notes = tmp_path / "notes.md"
        notes.write_text("The Auth Service stores sessions in Redis.", encoding="utf-8")
        result = invoke("ingest", str(notes))
        assert result.exit_code == 0, result.output
        assert "Warning: no text-completion provider configured" in result.output
        assert "Queued notes.md as " in result.output
        assert "notes.md: completed - 1 chunks, 0 entities, 0 relationships" in result.output


class TestCompact:
    def test_compact_empty(self, invoke):
        result = invoke("compact")
        assert result.exit_code == 0
        assert "Removed 0 node(s) and 0 edge(s)" in result.output


class TestConfiguration:
    def test_invalid_setting_reported(self, invoke, monkeypatch):
        monkeypatch.setenv("CODEGRAPH_CHUNK_SIZE", "0")
        result = invoke("status")
        assert result.exit_code == 1
        assert "invalid configuration: chunk_size must be at least 1" in result.output
