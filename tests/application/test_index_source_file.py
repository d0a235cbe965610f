"""Tests for the IndexSourceFile command."""

from __future__ import annotations

import pytest

from codegraph.application.commands.index_source_file import (
    file_node_id,
    index_source_file,
    index_source_tree,
)
from codegraph.application.discovery import EntityDiscoveryService
from codegraph.application.enrichment.filter import StaticEnrichmentFilter
from codegraph.application.extraction.registry import create_default_registry
from codegraph.domain.enums import NodeType
from codegraph.domain.events import SourceFileIndexed, SourceFileSkipped
from codegraph.infrastructure.events.bus import InMemoryEventBus
from codegraph.infrastructure.llm.openai_provider import StaticTextCompletionProvider

AUTH_PY = '''from .users import UserRepository


class AuthService:
    """Issues and validates login tokens."""

    def login(self, name):
        return UserRepository(name)
'''


@pytest.fixture
def deps(store):
    return {
        "registry": create_default_registry(),
        "enrichment": StaticEnrichmentFilter(),
        "graph_store": store,
        "workspace_label": "ws",
    }


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "auth.py").write_text(AUTH_PY, encoding="utf-8")
    (tmp_path / "broken.py").write_text("def broken(:\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not code", encoding="utf-8")
    vendored = tmp_path / "node_modules" / "lib"
    vendored.mkdir(parents=True)
    (vendored / "index.js").write_text("export const x = 1;\n", encoding="utf-8")
    return tmp_path


class TestIndexSourceFile:
    def test_indexes_file_and_entities(self, tree, deps, store):
        result = index_source_file(tree / "auth.py", root=tree, **deps)

        assert result.success
        assert result.node_id == file_node_id("auth.py") == "file:auth.py"
        file_node = store.get_node("file:auth.py")
        assert file_node.type == NodeType.FILE.value
        assert file_node.metadata["language"] == "python"

        service = store.get_node("entity:authservice")
        assert service.label == "AuthService"
        assert service.metadata["summary"] == "Issues and validates login tokens."
        contains = {(e.source, e.target) for e in store.all_edges() if e.type == "contains"}
        assert ("workspace:ws", "file:auth.py") in contains
        assert ("file:auth.py", "entity:authservice") in contains

    def test_relationship_edges_resolve_to_symbols(self, tree, deps, store):
        index_source_file(tree / "auth.py", root=tree, **deps)
        edges = {(e.type, e.source, e.target) for e in store.all_edges()}
        assert ("imports", "file:auth.py", "symbol:.users") in edges
        assert ("calls", "entity:login", "symbol:UserRepository") in edges
        assert store.get_node("symbol:.users").metadata["kind"] == "module"

    def test_reindex_reuses_ids(self, tree, deps, store):
        index_source_file(tree / "auth.py", root=tree, **deps)
        nodes, edges = store.node_count(), store.edge_count()
        result = index_source_file(tree / "auth.py", root=tree, force=True, **deps)
        assert not result.unchanged
        assert (result.retired_entities, result.retired_edges) == (0, 0)
        assert (store.node_count(), store.edge_count()) == (nodes, edges)

    def test_parse_error_skips_file(self, tree, deps, store):
        bus = InMemoryEventBus()
        skipped = []
        bus.subscribe(SourceFileSkipped, skipped.append)
        result = index_source_file(tree / "broken.py", root=tree, event_bus=bus, **deps)
        assert not result.success
        assert result.skipped_reason.startswith("PARSE_ERROR")
        assert store.get_node("file:broken.py") is None
        assert [e.file_path for e in skipped] == ["broken.py"]

    def test_discovered_entities_merged(self, tree, deps, store):
        provider = StaticTextCompletionProvider(
            '{"entities": [{"name": "Token Store", "type": "Database", "confidence": 0.8}]}'
        )
        index_source_file(tree / "auth.py", root=tree, discovery=EntityDiscoveryService(provider), **deps)
        node = store.get_node("entity:token-store")
        assert node.metadata["origin"] == "discovery"
        assert node.metadata["entity_type"] == "Database"
        assert len(provider.prompts) == 1


class TestIncrementalReindex:
    def test_unchanged_file_skipped(self, tree, deps, store):
        provider = StaticTextCompletionProvider('{"entities": []}', '{"entities": []}')
        discovery = EntityDiscoveryService(provider)
        index_source_file(tree / "auth.py", root=tree, discovery=discovery, **deps)
        before = store.get_node("file:auth.py").updated_at

        result = index_source_file(tree / "auth.py", root=tree, discovery=discovery, **deps)
        assert result.success
        assert result.unchanged
        assert store.get_node("file:auth.py").updated_at == before
        assert len(provider.prompts) == 1

    def test_changed_file_is_reanalyzed(self, tree, deps, store):
        index_source_file(tree / "auth.py", root=tree, **deps)
        (tree / "auth.py").write_text(AUTH_PY + "\n\ndef audit():\n    pass\n", encoding="utf-8")
        result = index_source_file(tree / "auth.py", root=tree, **deps)
        assert not result.unchanged
        assert store.get_node("entity:audit") is not None

    def test_removed_declaration_retired(self, tree, deps, store):
        index_source_file(tree / "auth.py", root=tree, **deps)
        calls = [e.id for e in store.all_edges() if e.type == "calls" and e.source == "entity:login"]
        imports = [e.id for e in store.all_edges() if e.type == "imports"]
        assert calls and imports

        (tree / "auth.py").write_text(
            'class AuthService:\n    """Issues tokens."""\n\n'
            "    def logout(self):\n        return None\n",
            encoding="utf-8",
        )
        result = index_source_file(tree / "auth.py", root=tree, **deps)

        assert result.retired_entities == 1
        assert store.get_node("entity:login") is None
        assert store.get_node("entity:login", include_deleted=True) is not None
        assert store.get_node("entity:logout") is not None
        assert store.get_node("entity:authservice") is not None
        assert all(store.get_edge(eid) is None for eid in calls + imports)
        contains = {e.target for e in store.edges_for("file:auth.py") if e.source == "file:auth.py"}
        assert contains == {"entity:authservice", "entity:logout"}

    def test_entity_shared_with_another_file_survives(self, tmp_path, deps, store):
        (tmp_path / "a.py").write_text("class Shared:\n    pass\n", encoding="utf-8")
        (tmp_path / "b.py").write_text("class Shared:\n    pass\n", encoding="utf-8")
        index_source_file(tmp_path / "a.py", root=tmp_path, **deps)
        index_source_file(tmp_path / "b.py", root=tmp_path, **deps)
        assert store.get_node("entity:shared").source_documents == ["a.py", "b.py"]

        (tmp_path / "a.py").write_text("class Other:\n    pass\n", encoding="utf-8")
        result = index_source_file(tmp_path / "a.py", root=tmp_path, **deps)

        assert result.retired_entities == 0
        shared = store.get_node("entity:shared")
        assert shared.source_documents == ["b.py"]
        assert all(e.source != "file:a.py" for e in store.edges_for("entity:shared"))


class TestIndexSourceTree:
    def test_walks_supported_files(self, tree, deps, store):
        bus = InMemoryEventBus()
        indexed = []
        bus.subscribe(SourceFileIndexed, indexed.append)
        summary = index_source_tree(tree, event_bus=bus, **deps)

        assert summary.indexed == 1
        assert summary.skipped == 1
        assert [e.file_path for e in indexed] == ["auth.py"]
        assert all("node_modules" not in r.file_path for r in summary.results)
        assert summary.entity_count >= 2

    def test_single_file_root(self, tree, deps):
        summary = index_source_tree(tree / "auth.py", **deps)
        assert summary.indexed == 1
        assert summary.results[0].file_path == "auth.py"

    def test_second_walk_counts_unchanged(self, tree, deps):
        index_source_tree(tree, **deps)
        summary = index_source_tree(tree, **deps)
        assert (summary.indexed, summary.unchanged, summary.skipped) == (0, 1, 1)
        assert summary.entity_count == 0

        forced = index_source_tree(tree, force=True, **deps)
        assert (forced.indexed, forced.unchanged) == (1, 0)
