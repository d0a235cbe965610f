"""Port definitions (hexagonal architecture).

Each Protocol defines a boundary that infrastructure adapters must satisfy.
The domain and application layers depend only on these Protocols, never on
concrete implementations.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from codegraph.domain.entities import (
    CorpusEntry,
    GraphEdge,
    GraphNode,
    GraphSnapshot,
)


# ---------------------------------------------------------------------------
# Storage ports
# ---------------------------------------------------------------------------


@runtime_checkable
class RowStore(Protocol):
    """Key-addressed persistent CRUD for nodes and edges."""

    def put_node(self, node: GraphNode) -> None: ...
    def get_node(self, node_id: str) -> GraphNode | None: ...
    def remove_node(self, node_id: str) -> None: ...
    def put_edge(self, edge: GraphEdge) -> None: ...
    def get_edge(self, edge_id: str) -> GraphEdge | None: ...
    def remove_edge(self, edge_id: str) -> None: ...
    def edges_for_node(self, node_id: str) -> list[GraphEdge]: ...
    def scan_nodes(self) -> list[GraphNode]: ...
    def scan_edges(self) -> list[GraphEdge]: ...


@runtime_checkable
class GraphStore(Protocol):
    """Owner of the node/edge collections."""

    def upsert_node(self, node: GraphNode) -> GraphNode: ...
    def upsert_edge(self, edge: GraphEdge) -> GraphEdge: ...
    def delete_node(self, node_id: str) -> bool: ...
    def delete_edge(self, edge_id: str) -> bool: ...
    def get_node(self, node_id: str) -> GraphNode | None: ...
    def get_edge(self, edge_id: str) -> GraphEdge | None: ...
    def edges_for(self, node_id: str) -> list[GraphEdge]: ...
    def all_nodes(self, include_deleted: bool = False) -> list[GraphNode]: ...
    def all_edges(self) -> list[GraphEdge]: ...
    def snapshot(self) -> GraphSnapshot: ...
    def distances_from(self, seed_ids: list[str], depth: int) -> dict[str, int]: ...
    def get_subgraph(
        self,
        seed_ids: list[str] | None,
        depth: int,
        max_nodes: int | None = None,
    ) -> GraphSnapshot: ...
    def ensure_workspace_node(self, label: str) -> GraphNode: ...
    def merge_entity(
        self,
        name: str,
        entity_type: str,
        confidence: float,
        source_document: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GraphNode: ...
    def compact(self) -> tuple[int, int]: ...


@runtime_checkable
class CorpusStore(Protocol):
    """Read-only access to the documentation/rule/task indexes."""

    def load(self, kind: str) -> list[CorpusEntry]: ...


# ---------------------------------------------------------------------------
# External integration ports
# ---------------------------------------------------------------------------


@runtime_checkable
class TextCompletionProvider(Protocol):
    """Opaque text-completion service used for entity discovery.

    Retries and timeouts are the provider's concern.
    """

    def generate(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Event bus port
# ---------------------------------------------------------------------------


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe in-memory event bus."""

    def publish(self, event: Any) -> None: ...
    def subscribe(self, event_type: type, handler: Any) -> None: ...
