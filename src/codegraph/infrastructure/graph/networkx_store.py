"""NetworkX-based GraphStore implementation.

Nodes and edges live in flat id-keyed dicts; a NetworkX MultiDiGraph
keyed by edge id indexes adjacency for BFS.  Implements the
``GraphStore`` port.

Reads hand out copies; the stored objects change only through the
mutation methods.

Node deletes are logical (``state.deleted``) and never cascade.  Every
read path re-validates edge endpoints against the currently visible node
set, so a dangling edge is invisible rather than an error.  Besides
``compact()``, only ``delete_edge()`` physically removes data.

When a ``RowStore`` is supplied every mutation is written through to it.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Any

import networkx as nx

from codegraph.config.logging import get_logger
from codegraph.domain.entities import GraphEdge, GraphNode, GraphSnapshot
from codegraph.domain.enums import NODE_TYPE_PRIORITY, NodeType
from codegraph.domain.ports import RowStore
from codegraph.domain.rules import entity_node_id, merge_entity_nodes

logger = get_logger(__name__)

DEFAULT_MAX_SUBGRAPH_NODES = 1000


class NetworkXGraphStore:
    """In-memory graph backed by a NetworkX MultiDiGraph."""

    def __init__(
        self,
        row_store: RowStore | None = None,
        max_subgraph_nodes: int = DEFAULT_MAX_SUBGRAPH_NODES,
    ) -> None:
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[str, GraphEdge] = {}
        self._row_store = row_store
        self._max_subgraph_nodes = max_subgraph_nodes
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, nodes: list[GraphNode], edges: list[GraphEdge]) -> None:
        """Load nodes and edges into the graph, replacing any prior state.

        Nothing is written to the row store.
        """
        with self._lock:
            self._graph.clear()
            self._nodes.clear()
            self._edges.clear()
            for node in nodes:
                self._nodes[node.id] = node
                self._graph.add_node(node.id)
            for edge in edges:
                self._edges[edge.id] = edge
                self._graph.add_edge(edge.source, edge.target, key=edge.id)

    def load_from_row_store(self) -> int:
        """Rebuild the arena from the row store.  Returns the node count."""
        if self._row_store is None:
            return 0
        nodes = self._row_store.scan_nodes()
        edges = self._row_store.scan_edges()
        self.load(nodes, edges)
        logger.info("graph_store.load.complete", nodes=len(nodes), edges=len(edges))
        return len(nodes)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert_node(self, node: GraphNode) -> GraphNode:
        """Insert or overwrite by id, refreshing ``updated_at``."""
        with self._lock:
            stored = node.model_copy(deep=True)
            existing = self._nodes.get(node.id)
            if existing is not None:
                stored.created_at = existing.created_at
            stored.updated_at = datetime.now()
            self._nodes[stored.id] = stored
            self._graph.add_node(stored.id)
            if self._row_store is not None:
                self._row_store.put_node(stored)
            return stored.model_copy(deep=True)

    def upsert_edge(self, edge: GraphEdge) -> GraphEdge:
        """Insert or overwrite by id, refreshing ``updated_at``.

        Endpoints need not exist yet; the edge stays invisible until both
        endpoints are present and not deleted.
        """
        with self._lock:
            stored = edge.model_copy(deep=True)
            existing = self._edges.get(edge.id)
            if existing is not None:
                stored.created_at = existing.created_at
                if self._graph.has_edge(existing.source, existing.target, key=existing.id):
                    self._graph.remove_edge(existing.source, existing.target, key=existing.id)
            stored.updated_at = datetime.now()
            self._edges[stored.id] = stored
            self._graph.add_edge(stored.source, stored.target, key=stored.id)
            if self._row_store is not None:
                self._row_store.put_edge(stored)
            return stored.model_copy(deep=True)

    def delete_node(self, node_id: str) -> bool:
        """Set the logical-delete flag.  Edges are left in place."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None or node.is_deleted:
                return False
            node.state = node.state.model_copy(update={"deleted": True})
            node.touch()
            if self._row_store is not None:
                self._row_store.put_node(node)
            return True

    def delete_edge(self, edge_id: str) -> bool:
        """Physically remove one edge."""
        with self._lock:
            edge = self._edges.pop(edge_id, None)
            if edge is None:
                return False
            if self._graph.has_edge(edge.source, edge.target, key=edge_id):
                self._graph.remove_edge(edge.source, edge.target, key=edge_id)
            if self._row_store is not None:
                self._row_store.remove_edge(edge_id)
            return True

    def ensure_workspace_node(self, label: str) -> GraphNode:
        """Create the single root node for a corpus if it does not exist."""
        node_id = f"workspace:{label}"
        with self._lock:
            existing = self._nodes.get(node_id)
            if existing is not None and not existing.is_deleted:
                return existing.model_copy(deep=True)
            return self.upsert_node(GraphNode(
                id=node_id,
                label=label,
                type=NodeType.WORKSPACE,
                metadata={"root": True},
            ))

    def merge_entity(
        self,
        name: str,
        entity_type: str,
        confidence: float,
        source_document: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GraphNode:
        """Store an entity, merging by case-insensitive normalized name."""
        node_id = entity_node_id(name)
        candidate = GraphNode(
            id=node_id,
            label=" ".join(name.split()),
            type=NodeType.ENTITY,
            confidence=confidence,
            metadata={"entity_type": entity_type, **(metadata or {})},
            source_documents=[source_document] if source_document else [],
        )
        with self._lock:
            existing = self._nodes.get(node_id)
            if existing is not None and not existing.is_deleted:
                candidate = merge_entity_nodes(existing, candidate)
            return self.upsert_node(candidate)

    def compact(self) -> tuple[int, int]:
        """Physically purge deleted nodes and every edge that is dangling.

        Returns ``(nodes_removed, edges_removed)``.
        """
        with self._lock:
            dead_nodes = [nid for nid, n in self._nodes.items() if n.is_deleted]
            for nid in dead_nodes:
                del self._nodes[nid]
                self._graph.remove_node(nid)
                if self._row_store is not None:
                    self._row_store.remove_node(nid)

            dead_edges = [
                eid for eid, e in self._edges.items()
                if e.source not in self._nodes or e.target not in self._nodes
            ]
            for eid in dead_edges:
                edge = self._edges.pop(eid)
                if self._graph.has_edge(edge.source, edge.target, key=eid):
                    self._graph.remove_edge(edge.source, edge.target, key=eid)
                if self._row_store is not None:
                    self._row_store.remove_edge(eid)

            # Drop adjacency placeholders created for edges to unknown nodes.
            orphans = [n for n in self._graph.nodes if n not in self._nodes]
            self._graph.remove_nodes_from(orphans)

        logger.info(
            "graph_store.compact.complete",
            nodes_removed=len(dead_nodes),
            edges_removed=len(dead_edges),
        )
        return len(dead_nodes), len(dead_edges)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_node(self, node_id: str, include_deleted: bool = False) -> GraphNode | None:
        """Look up a single node by ID."""
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None or (node.is_deleted and not include_deleted):
                return None
            return node.model_copy(deep=True)

    def has_node(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and not node.is_deleted

    def get_edge(self, edge_id: str) -> GraphEdge | None:
        with self._lock:
            edge = self._edges.get(edge_id)
            if edge is None or not self._is_active(edge):
                return None
            return edge.model_copy(deep=True)

    def edges_for(self, node_id: str) -> list[GraphEdge]:
        """Active edges where *node_id* is the source or the target."""
        with self._lock:
            return [e.model_copy(deep=True) for e in self._edges_for(node_id)]

    def all_nodes(self, include_deleted: bool = False) -> list[GraphNode]:
        with self._lock:
            return [n.model_copy(deep=True) for n in self._active_nodes(include_deleted)]

    def all_edges(self) -> list[GraphEdge]:
        """Return every active edge."""
        with self._lock:
            return [e.model_copy(deep=True) for e in self._active_edges()]

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            return GraphSnapshot(nodes=self.all_nodes(), edges=self.all_edges())

    def node_count(self) -> int:
        with self._lock:
            return len(self._active_nodes())

    def edge_count(self) -> int:
        with self._lock:
            return len(self._active_edges())

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def distances_from(self, seed_ids: list[str], depth: int) -> dict[str, int]:
        """Hop distance of every node within *depth* of the seeds."""
        with self._lock:
            distances, _ = self._bfs(seed_ids, depth, max_nodes=None)
        return distances

    def get_subgraph(
        self,
        seed_ids: list[str] | None,
        depth: int,
        max_nodes: int | None = None,
    ) -> GraphSnapshot:
        """Bounded-depth neighborhood of *seed_ids*.

        Without seeds, returns the whole active graph capped at
        *max_nodes*, ordered workspace, file, document, entity, others.
        With seeds, expands breadth-first over edges in both directions;
        depth 0 returns the seed nodes only.
        """
        if depth < 0:
            raise ValueError("INVALID_DEPTH: depth must be >= 0")
        cap = max_nodes if max_nodes is not None else self._max_subgraph_nodes

        with self._lock:
            if not seed_ids:
                nodes = sorted(
                    self._active_nodes(),
                    key=lambda n: (NODE_TYPE_PRIORITY.get(n.type, 99), n.created_at, n.id),
                )[:cap]
                kept = {n.id for n in nodes}
                edges = self._active_edges()
            else:
                distances, edges = self._bfs(seed_ids, depth, max_nodes=cap)
                nodes = [self._nodes[nid] for nid in distances]
                kept = set(distances)
            return GraphSnapshot(
                nodes=[n.model_copy(deep=True) for n in nodes],
                edges=[
                    e.model_copy(deep=True) for e in edges
                    if e.source in kept and e.target in kept
                ],
            )

    def _bfs(
        self,
        seed_ids: list[str],
        depth: int,
        max_nodes: int | None,
    ) -> tuple[dict[str, int], list[GraphEdge]]:
        distances: dict[str, int] = {}
        queue: deque[tuple[str, int]] = deque()
        for sid in seed_ids:
            if sid not in distances and self.has_node(sid):
                distances[sid] = 0
                queue.append((sid, 0))

        collected: dict[str, GraphEdge] = {}
        while queue:
            current, dist = queue.popleft()
            if dist >= depth:
                continue
            for edge in self._edges_for(current):
                neighbor = edge.target if edge.source == current else edge.source
                if neighbor not in distances:
                    if max_nodes is not None and len(distances) >= max_nodes:
                        continue
                    distances[neighbor] = dist + 1
                    queue.append((neighbor, dist + 1))
                collected[edge.id] = edge

        return distances, list(collected.values())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active_nodes(self, include_deleted: bool = False) -> list[GraphNode]:
        return [
            n for n in self._nodes.values()
            if include_deleted or not n.is_deleted
        ]

    def _active_edges(self) -> list[GraphEdge]:
        return [e for e in self._edges.values() if self._is_active(e)]

    def _edges_for(self, node_id: str) -> list[GraphEdge]:
        if node_id not in self._graph or not self.has_node(node_id):
            return []
        keys = [k for _, _, k in self._graph.out_edges(node_id, keys=True)]
        keys += [k for _, _, k in self._graph.in_edges(node_id, keys=True)]
        edges = [self._edges[k] for k in dict.fromkeys(keys) if k in self._edges]
        return sorted((e for e in edges if self._is_active(e)), key=lambda e: e.id)

    def _is_active(self, edge: GraphEdge) -> bool:
        source = self._nodes.get(edge.source)
        target = self._nodes.get(edge.target)
        return (
            source is not None and not source.is_deleted
            and target is not None and not target.is_deleted
        )
