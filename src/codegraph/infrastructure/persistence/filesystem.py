"""Filesystem-based RowStore implementation.

Manages the graph directory under the index root::

    <index_dir>/graph/
    ├── nodes/{type}/{key}.json
    └── edges/{key}.json

``key`` is a hash of the node/edge id, so ids may contain any character.
Implements the ``RowStore`` port from ``codegraph.domain.ports``.
"""

from __future__ import annotations

import json
from pathlib import Path

from codegraph.core.exceptions import StoreError
from codegraph.domain.entities import GraphEdge, GraphNode
from codegraph.infrastructure.parsing.hashing import content_address


def _key(item_id: str) -> str:
    return content_address(item_id, length=24)


class FilesystemRowStore:
    """Read/write graph rows on the local filesystem."""

    def __init__(self, index_path: str | Path) -> None:
        self._root = Path(index_path) / "graph"

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _nodes_dir(self) -> Path:
        return self._root / "nodes"

    def _find_node_path(self, node_id: str) -> Path | None:
        nodes_dir = self._nodes_dir()
        if not nodes_dir.exists():
            return None
        filename = f"{_key(node_id)}.json"
        for type_dir in nodes_dir.iterdir():
            if not type_dir.is_dir():
                continue
            path = type_dir / filename
            if path.exists():
                return path
        return None

    def put_node(self, node: GraphNode) -> None:
        # A node may change type on merge; never leave a stale copy behind.
        existing = self._find_node_path(node.id)
        path = self._nodes_dir() / _safe_dirname(node.type) / f"{_key(node.id)}.json"
        if existing is not None and existing != path:
            existing.unlink()
        self._write(path, node.model_dump_json(indent=2))

    def get_node(self, node_id: str) -> GraphNode | None:
        path = self._find_node_path(node_id)
        if path is None:
            return None
        return GraphNode.model_validate(self._read(path))

    def remove_node(self, node_id: str) -> None:
        path = self._find_node_path(node_id)
        if path is not None:
            path.unlink()
            if not any(path.parent.iterdir()):
                path.parent.rmdir()

    def scan_nodes(self) -> list[GraphNode]:
        """Read every node from the store."""
        nodes: list[GraphNode] = []
        nodes_dir = self._nodes_dir()
        if not nodes_dir.exists():
            return nodes
        for type_dir in sorted(nodes_dir.iterdir()):
            if not type_dir.is_dir():
                continue
            for path in sorted(type_dir.glob("*.json")):
                nodes.append(GraphNode.model_validate(self._read(path)))
        return nodes

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _edge_path(self, edge_id: str) -> Path:
        return self._root / "edges" / f"{_key(edge_id)}.json"

    def put_edge(self, edge: GraphEdge) -> None:
        self._write(self._edge_path(edge.id), edge.model_dump_json(indent=2))

    def get_edge(self, edge_id: str) -> GraphEdge | None:
        path = self._edge_path(edge_id)
        if not path.exists():
            return None
        return GraphEdge.model_validate(self._read(path))

    def remove_edge(self, edge_id: str) -> None:
        path = self._edge_path(edge_id)
        if path.exists():
            path.unlink()

    def scan_edges(self) -> list[GraphEdge]:
        edges_dir = self._root / "edges"
        if not edges_dir.exists():
            return []
        return [
            GraphEdge.model_validate(self._read(path))
            for path in sorted(edges_dir.glob("*.json"))
        ]

    def edges_for_node(self, node_id: str) -> list[GraphEdge]:
        """Return all edges where *node_id* is the source or the target."""
        return [e for e in self.scan_edges() if e.touches(node_id)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}", {"path": str(path)}) from e

    @staticmethod
    def _read(path: Path) -> dict:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read {path}: {e}", {"path": str(path)}) from e


def _safe_dirname(node_type: str) -> str:
    cleaned = "".join(c if c.isalnum() or c in "-_" else "_" for c in node_type)
    return cleaned or "untyped"
