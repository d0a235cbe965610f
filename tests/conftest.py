"""Shared fixtures for the codegraph test suite."""

from __future__ import annotations

import json
from datetime import datetime

import pytest

from codegraph.config.settings import Settings
from codegraph.container import Container, create_container
from codegraph.domain.entities import GraphEdge, GraphNode
from codegraph.domain.enums import EdgeType, NodeType
from codegraph.infrastructure.graph.networkx_store import NetworkXGraphStore
from codegraph.infrastructure.llm.openai_provider import StaticTextCompletionProvider


def make_node(id: str, label: str | None = None, type: str = NodeType.ENTITY.value, **fields) -> GraphNode:
    return GraphNode(id=id, label=label or id, type=type, **fields)


def make_edge(source: str, target: str, type: str = EdgeType.RELATED_TO.value, **fields) -> GraphEdge:
    return GraphEdge(source=source, target=target, type=type, **fields)


def discovery_json(*entities: tuple[str, str, float], relationships: list[dict] | None = None) -> str:
    return json.dumps({
        "entities": [
            {"name": name, "type": etype, "confidence": conf}
            for name, etype, conf in entities
        ],
        "relationships": relationships or [],
    })


@pytest.fixture
def store():
    return NetworkXGraphStore()


@pytest.fixture
def sample_store():
    """A small graph:

        workspace:ws -> file:auth.py -> entity:auth-service -> entity:user-repository
                                                           \\-> entity:token-cache
        entity:billing (isolated)
    """
    s = NetworkXGraphStore()
    s.upsert_node(make_node("workspace:ws", "ws", NodeType.WORKSPACE.value))
    s.upsert_node(make_node("file:auth.py", "auth.py", NodeType.FILE.value, metadata={"path": "auth.py"}))
    s.upsert_node(make_node(
        "entity:auth-service", "Auth Service", confidence=0.9,
        metadata={"summary": "Issues and validates login tokens", "file_path": "auth.py"},
        created_at=datetime(2024, 1, 10),
    ))
    s.upsert_node(make_node(
        "entity:user-repository", "User Repository", confidence=0.7,
        metadata={"file_path": "users.py"},
        created_at=datetime(2024, 2, 10),
    ))
    s.upsert_node(make_node(
        "entity:token-cache", "Token Cache", confidence=0.4,
        created_at=datetime(2024, 3, 10),
    ))
    s.upsert_node(make_node("entity:billing", "Billing", confidence=0.8, created_at=datetime(2024, 4, 10)))
    s.upsert_edge(make_edge("workspace:ws", "file:auth.py", EdgeType.CONTAINS.value))
    s.upsert_edge(make_edge("file:auth.py", "entity:auth-service", EdgeType.CONTAINS.value))
    s.upsert_edge(make_edge("entity:auth-service", "entity:user-repository", EdgeType.DEPENDS_ON.value, confidence=0.9))
    s.upsert_edge(make_edge("entity:auth-service", "entity:token-cache", EdgeType.USES.value, confidence=0.3))
    return s


@pytest.fixture
def settings(tmp_path):
    return Settings(
        index_dir=str(tmp_path / ".codegraph"),
        openai_api_key=None,
        processor_interval_seconds=0.01,
        chunk_size=200,
    )


@pytest.fixture
def provider():
    return StaticTextCompletionProvider(
        discovery_json(("Auth Service", "Service", 0.9), ("Users", "Table", 0.8)),
    )


@pytest.fixture
def container(settings, provider) -> Container:
    c = create_container(settings, provider=provider)
    yield c
    c.shutdown()
