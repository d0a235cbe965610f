"""Tests for domain entities."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from codegraph.domain.entities import (
    GraphEdge,
    GraphNode,
    GraphSnapshot,
    NodeState,
    OtherEntityType,
    QueuedDocument,
    make_edge_id,
    parse_entity_type,
    structured_mapping,
)
from codegraph.domain.enums import EdgeType, KnownEntityType, NodeType


class TestGraphNode:
    @pytest.mark.parametrize("raw,expected", [(-0.5, 0.0), (0.0, 0.0), (0.42, 0.42), (1.0, 1.0), (7.0, 1.0)])
    def test_confidence_clamped_on_construction(self, raw, expected):
        assert GraphNode(id="n", label="n", confidence=raw).confidence == expected

    def test_confidence_clamped_on_assignment(self):
        node = GraphNode(id="n", label="n")
        node.confidence = 3.2
        assert node.confidence == 1.0
        node.confidence = -1
        assert node.confidence == 0.0

    def test_nan_confidence_becomes_zero(self):
        assert GraphNode(id="n", label="n", confidence=float("nan")).confidence == 0.0
        edge = GraphEdge(source="a", target="b", confidence=float("nan"), weight=float("nan"))
        assert (edge.confidence, edge.weight) == (0.0, 0.0)

    def test_type_accepts_enum(self):
        node = GraphNode(id="n", label="n", type=NodeType.CHUNK)
        assert node.type == "chunk"

    def test_matches_search(self):
        node = GraphNode(id="entity:cache", label="Token Cache", metadata={"file_path": "auth/cache.py"})
        assert node.matches_search("token")
        assert node.matches_search("AUTH/")
        assert not node.matches_search("billing")


class TestGraphEdge:
    def test_self_loop_rejected(self):
        with pytest.raises(ValidationError, match="SELF_LOOP"):
            GraphEdge(source="a", target="a")

    def test_weight_and_confidence_clamped(self):
        edge = GraphEdge(source="a", target="b", weight=2.0, confidence=-0.1)
        assert edge.weight == 1.0
        assert edge.confidence == 0.0

    def test_deterministic_id(self):
        e1 = GraphEdge(source="a", target="b", type=EdgeType.CALLS)
        e2 = GraphEdge(source="a", target="b", type="calls")
        assert e1.id == e2.id == make_edge_id("a", "b", "calls")
        assert e1.label == "calls"

    def test_different_type_different_id(self):
        assert GraphEdge(source="a", target="b", type="calls").id != GraphEdge(source="a", target="b", type="uses").id


class TestGraphSnapshot:
    def test_active_drops_deleted_nodes_and_their_edges(self):
        snap = GraphSnapshot(
            nodes=[
                GraphNode(id="a", label="a"),
                GraphNode(id="b", label="b", state=NodeState(deleted=True)),
                GraphNode(id="c", label="c"),
            ],
            edges=[
                GraphEdge(source="a", target="b"),
                GraphEdge(source="a", target="c"),
            ],
        )
        active = snap.active()
        assert [n.id for n in active.nodes] == ["a", "c"]
        assert [(e.source, e.target) for e in active.edges] == [("a", "c")]

    def test_stats(self):
        snap = GraphSnapshot(
            nodes=[GraphNode(id="a", label="a"), GraphNode(id="b", label="b", type="file")],
            edges=[GraphEdge(source="a", target="b", type="contains")],
        )
        stats = snap.stats()
        assert stats.node_count == 2
        assert stats.nodes_by_type == {"entity": 1, "file": 1}
        assert stats.edges_by_type == {"contains": 1}
        assert stats.density == 0.5

    def test_connections(self):
        snap = GraphSnapshot(
            nodes=[GraphNode(id="a", label="a"), GraphNode(id="b", label="b")],
            edges=[GraphEdge(source="a", target="b")],
        )
        conns = snap.connections()
        assert conns["a"].outgoing == 1
        assert conns["b"].incoming == 1
        assert conns["b"].total == 1


class TestEntityType:
    def test_known_type_case_insensitive(self):
        assert parse_entity_type("service") is KnownEntityType.SERVICE
        assert parse_entity_type("API") is KnownEntityType.API

    def test_unknown_type_becomes_other(self):
        parsed = parse_entity_type("MessageBroker")
        assert isinstance(parsed, OtherEntityType)
        assert parsed.value == "MessageBroker"

    def test_structured_mapping(self):
        assert structured_mapping(KnownEntityType.TABLE) == "db_entity"
        assert structured_mapping(KnownEntityType.CONCEPT) is None
        assert structured_mapping(OtherEntityType(name="Queue")) is None


class TestQueuedDocument:
    def test_progress_clamped(self):
        doc = QueuedDocument(id="q", document_id="d", title="t", file_name="f", content="c")
        doc.progress = 140
        assert doc.progress == 100
        doc.progress = -3
        assert doc.progress == 0
