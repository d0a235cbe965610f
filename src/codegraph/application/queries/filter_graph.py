"""FilterGraph query.

AND-composes node and edge filters over an in-memory graph.  Node
filters run first, then edge filters; edges left with a missing endpoint
are always pruned at the end, whichever filters were requested.

``min_connections`` is applied to a fixpoint (a k-core): dropping a
low-degree node can lower its neighbours' degree, so the filter repeats
until nothing changes.  Running the same filter on its own output is a
no-op.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from codegraph.config.logging import get_logger
from codegraph.core.exceptions import ValidationError
from codegraph.domain.entities import GraphEdge, GraphNode, GraphSnapshot
from codegraph.domain.rules import prune_dangling_edges

logger = get_logger(__name__)


@dataclass
class FilterGraphInput:
    node_types: list[str] | None = None
    edge_types: list[str] | None = None
    min_confidence: float | None = None
    date_range: tuple[datetime, datetime] | None = None
    search_query: str | None = None
    min_connections: int | None = None


@dataclass
class FilterGraphResult:
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    metadata: dict[str, Any] = field(default_factory=dict)


def validate_filter_input(filters: FilterGraphInput) -> None:
    if filters.min_confidence is not None and not 0.0 <= filters.min_confidence <= 1.0:
        raise ValidationError("min_confidence must be between 0 and 1", field="min_confidence")
    if filters.date_range is not None:
        start, end = filters.date_range
        if as_utc(start) > as_utc(end):
            raise ValidationError("date_range start must not be after end", field="date_range")
    if filters.min_connections is not None and (
        isinstance(filters.min_connections, bool)
        or not isinstance(filters.min_connections, int)
        or filters.min_connections < 0
    ):
        raise ValidationError("min_connections must be a non-negative integer", field="min_connections")


def filter_graph(graph: GraphSnapshot, filters: FilterGraphInput) -> FilterGraphResult:
    validate_filter_input(filters)
    start = time.monotonic()
    applied: list[str] = []

    nodes = [n for n in graph.nodes if not n.is_deleted]
    edges = list(graph.edges)

    # Node filters
    if filters.node_types:
        wanted = {str(getattr(t, "value", t)) for t in filters.node_types}
        nodes = [n for n in nodes if n.type in wanted]
        applied.append("node_types")

    if filters.min_confidence is not None:
        nodes = [n for n in nodes if n.confidence >= filters.min_confidence]
        edges = [e for e in edges if e.confidence >= filters.min_confidence]
        applied.append("min_confidence")

    if filters.date_range is not None:
        lo, hi = (as_utc(d) for d in filters.date_range)
        nodes = [n for n in nodes if lo <= as_utc(n.created_at) <= hi]
        applied.append("date_range")

    if filters.search_query and filters.search_query.strip():
        needle = filters.search_query.strip().lower()
        nodes = [n for n in nodes if needle in n.label.lower() or needle in n.id.lower()]
        applied.append("search_query")

    # Edge filters
    if filters.edge_types:
        wanted = {str(getattr(t, "value", t)) for t in filters.edge_types}
        edges = [e for e in edges if e.type in wanted]
        applied.append("edge_types")

    edges = prune_dangling_edges(nodes, edges)

    if filters.min_connections:
        nodes, edges = _min_degree(nodes, edges, filters.min_connections)
        applied.append("min_connections")

    edges = prune_dangling_edges(nodes, edges)

    elapsed = int((time.monotonic() - start) * 1000)
    logger.debug(
        "filter.complete",
        applied=applied,
        nodes=len(nodes),
        edges=len(edges),
    )
    return FilterGraphResult(
        nodes=nodes,
        edges=edges,
        metadata={
            "original_node_count": len(graph.nodes),
            "original_edge_count": len(graph.edges),
            "filtered_node_count": len(nodes),
            "filtered_edge_count": len(edges),
            "filter_time_ms": elapsed,
            "applied_filters": applied,
        },
    )


def _min_degree(
    nodes: list[GraphNode],
    edges: list[GraphEdge],
    minimum: int,
) -> tuple[list[GraphNode], list[GraphEdge]]:
    while True:
        degree = {n.id: 0 for n in nodes}
        for e in edges:
            degree[e.source] += 1
            degree[e.target] += 1
        kept = [n for n in nodes if degree[n.id] >= minimum]
        if len(kept) == len(nodes):
            return nodes, edges
        nodes = kept
        edges = prune_dangling_edges(nodes, edges)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime.  Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
