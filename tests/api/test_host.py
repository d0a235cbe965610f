"""Tests for the host bridge: command intents and forwarded queue events."""

from __future__ import annotations

from datetime import datetime

import pytest

from codegraph.api.host import HostBridge, event_to_message
from codegraph.domain.entities import GraphEdge, GraphNode
from codegraph.domain.enums import EdgeType, HostMessageType, NodeType
from codegraph.domain.events import DocumentFailed, DocumentProgressed, HostMessage, SourceFileSkipped


@pytest.fixture
def seeded(container):
    store = container.graph_store
    store.ensure_workspace_node(container.workspace_label)
    store.upsert_node(GraphNode(id="entity:auth-service", label="Auth Service", confidence=0.9))
    store.upsert_node(GraphNode(id="entity:user-repository", label="User Repository"))
    store.upsert_node(GraphNode(id="entity:token-cache", label="Token Cache"))
    store.upsert_edge(GraphEdge(
        source="entity:auth-service", target="entity:user-repository", type=EdgeType.DEPENDS_ON,
    ))
    store.upsert_edge(GraphEdge(
        source="entity:user-repository", target="entity:token-cache", type=EdgeType.USES,
    ))
    return container


def _statuses(messages):
    return [m.payload["status"] for m in messages if m.type == HostMessageType.STATUS]


class TestIntents:
    def test_unknown_intent(self, seeded):
        (message,) = HostBridge(seeded).handle("explode")
        assert message.type == HostMessageType.ERROR
        assert message.payload["error"] == "Unknown command 'explode'"

    def test_search(self, seeded):
        (message,) = HostBridge(seeded).handle("search", {"query": "auth service"})
        assert message.type == HostMessageType.SEARCH_RESULTS
        assert message.payload["matches"][0]["id"] == "entity:auth-service"
        assert {"id", "type", "score", "snippet"} == set(message.payload["matches"][0])
        assert message.payload["metadata"]["mode"] == "fuzzy"

    def test_search_empty_query_is_an_error(self, seeded):
        (message,) = HostBridge(seeded).handle("search", {"query": "  "})
        assert message.type == HostMessageType.ERROR
        assert message.payload["error"] == "search failed: Search query cannot be empty"

    def test_load_subgraph_depth(self, seeded):
        bridge = HostBridge(seeded)
        (shallow,) = bridge.handle("load-subgraph", {"seeds": ["entity:auth-service"], "depth": 1})
        assert {n["id"] for n in shallow.payload["nodes"]} == {
            "entity:auth-service", "entity:user-repository",
        }
        (default,) = bridge.handle("load-subgraph", {"seeds": ["entity:auth-service"]})
        assert len(default.payload["nodes"]) == 3

    def test_load_subgraph_depth_clamped(self, seeded):
        bridge = HostBridge(seeded)
        (negative,) = bridge.handle("load-subgraph", {"seeds": ["entity:auth-service"], "depth": -4})
        assert [n["id"] for n in negative.payload["nodes"]] == ["entity:auth-service"]
        (deep,) = bridge.handle("load-subgraph", {"seeds": ["entity:auth-service"], "depth": 500})
        assert deep.type == HostMessageType.SUBGRAPH
        assert len(deep.payload["nodes"]) == 3

    def test_load_subgraph_single_seed_string(self, seeded):
        (message,) = HostBridge(seeded).handle("load-subgraph", {"seeds": "entity:auth-service", "depth": 1})
        assert message.type == HostMessageType.SUBGRAPH
        assert {n["id"] for n in message.payload["nodes"]} == {
            "entity:auth-service", "entity:user-repository",
        }

    @pytest.mark.parametrize("seeds", [{"id": "entity:auth-service"}, 7, ["entity:auth-service", 3]])
    def test_load_subgraph_bad_seeds(self, seeded, seeds):
        (message,) = HostBridge(seeded).handle("load-subgraph", {"seeds": seeds})
        assert message.type == HostMessageType.ERROR
        assert message.payload["error"] == "load-subgraph failed: seeds must be a list of node ids"

    def test_refresh_without_root(self, seeded):
        messages = HostBridge(seeded).handle("refresh")
        assert _statuses(messages) == ["indexing", "ready"]
        assert messages[1].type == HostMessageType.SUBGRAPH

    def test_refresh_indexes_root(self, container, tmp_path):
        root = tmp_path / "project"
        root.mkdir()
        (root / "auth.py").write_text("class AuthService:\n    pass\n", encoding="utf-8")
        (root / "notes.rb").write_text("puts 1\n", encoding="utf-8")

        messages = HostBridge(container, workspace_root=root).handle("refresh")
        assert _statuses(messages) == ["indexing", "indexed", "ready"]
        indexed = messages[1].payload
        assert indexed["files"] == 1
        subgraph = next(m for m in messages if m.type == HostMessageType.SUBGRAPH)
        assert "file:auth.py" in {n["id"] for n in subgraph.payload["nodes"]}

    def test_reset(self, seeded):
        queue_id = seeded.queue.enqueue("d1", "Doc", "doc.txt", "Auth Service stores Users.")
        seeded.processor.process_all()

        (message,) = HostBridge(seeded).handle("reset")
        assert message.payload["status"] == "reset"
        assert message.payload["nodes_removed"] >= 3
        assert message.payload["edges_removed"] >= 2
        assert {n.type for n in seeded.graph_store.all_nodes()} == {NodeType.WORKSPACE.value}
        assert seeded.queue.get_by_id(queue_id) is None


class TestEventForwarding:
    def test_sink_receives_queue_lifecycle(self, container):
        received: list[HostMessage] = []
        HostBridge(container, sink=received.append)

        container.queue.enqueue("d1", "Doc", "doc.txt", "Auth Service stores Users.")
        container.processor.process_all()

        statuses = _statuses(received)
        assert statuses[0] == "queued"
        assert "processing" in statuses
        assert statuses[-1] == "completed"
        assert any(m.type == HostMessageType.PROGRESS for m in received)


class TestEventToMessage:
    def test_progress(self):
        message = event_to_message(DocumentProgressed(queue_id="q1", progress=40, current_step="Chunk 2/5"))
        assert message.type == HostMessageType.PROGRESS
        assert message.payload == {"queue_id": "q1", "progress": 40, "current_step": "Chunk 2/5"}

    def test_failed(self):
        message = event_to_message(DocumentFailed(
            queue_id="q1", document_id="d1", error="boom", failed_at=datetime(2024, 1, 1),
        ))
        assert message.payload["status"] == "failed"
        assert message.payload["error"] == "boom"

    def test_other_events_ignored(self):
        assert event_to_message(SourceFileSkipped(file_path="a.rb", reason="unsupported")) is None

    def test_to_dict(self):
        message = HostMessage(type=HostMessageType.STATUS, payload={"status": "ready"})
        assert message.to_dict() == {"type": "status", "payload": {"status": "ready"}}
