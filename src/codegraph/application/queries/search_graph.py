"""SearchGraph query.

Scores the nodes (and optionally edges) of an already-loaded graph with
the retriever's exact, fuzzy and regex primitives.  Works on in-memory
arrays, never on the store, so a client can re-search what it already
holds.

Pipeline:
1. Validate
2. Score labels, ids, metadata and edge labels; keep the best match per item
3. Drop matches below ``min_score``, sort and cap at ``max_results``
4. Apply the optional node/edge filters
5. Optionally expand the matches into their neighborhood
"""

from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from codegraph.application.queries import scoring
from codegraph.application.queries.filter_graph import FilterGraphInput, filter_graph
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import ValidationError
from codegraph.domain.entities import GraphEdge, GraphNode, GraphSnapshot
from codegraph.domain.enums import SearchMode
from codegraph.domain.rules import prune_dangling_edges

logger = get_logger(__name__)

METADATA_FACTOR = 0.8
EDGE_FACTOR = 0.7


@dataclass
class SearchGraphInput:
    query: str
    mode: SearchMode = SearchMode.FUZZY
    search_labels: bool = True
    search_ids: bool = True
    search_metadata: bool = True
    search_edges: bool = False
    min_score: float = 0.3
    max_results: int = 50
    case_sensitive: bool = False
    include_related: bool = False
    related_depth: int = 1
    filters: FilterGraphInput | None = None


@dataclass
class SearchMatch:
    item_id: str
    item_type: str  # "node" or "edge"
    score: float
    match_field: str
    snippet: str


@dataclass
class SearchGraphResult:
    matches: list[SearchMatch]
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    metadata: dict[str, Any] = field(default_factory=dict)


def validate_search_input(query: SearchGraphInput) -> None:
    if not query.query or not query.query.strip():
        raise ValidationError("Search query cannot be empty", field="query")
    if not 0.0 <= query.min_score <= 1.0:
        raise ValidationError("min_score must be between 0 and 1", field="min_score")
    if isinstance(query.max_results, bool) or not isinstance(query.max_results, int) or query.max_results < 1:
        raise ValidationError("max_results must be a positive integer", field="max_results")
    if isinstance(query.related_depth, bool) or not isinstance(query.related_depth, int) or query.related_depth < 1:
        raise ValidationError("related_depth must be a positive integer", field="related_depth")
    if not (query.search_labels or query.search_ids or query.search_metadata or query.search_edges):
        raise ValidationError("At least one search field must be enabled", field="search_labels")


def search_graph(graph: GraphSnapshot, query: SearchGraphInput) -> SearchGraphResult:
    """Search *graph* and return the matching nodes and edges."""
    validate_search_input(query)
    start = time.monotonic()

    graph = graph.active()
    text = query.query.strip()
    needle = text if query.case_sensitive or query.mode == SearchMode.REGEX else text.lower()

    def score(value: str) -> float:
        if query.mode != SearchMode.REGEX and not query.case_sensitive:
            value = value.lower()
        return scoring.match_score(value, needle, query.mode, query.case_sensitive)

    best: dict[tuple[str, str], SearchMatch] = {}

    def offer(item_id: str, item_type: str, value: float, match_field: str, source: str) -> None:
        if value <= 0:
            return
        current = best.get((item_type, item_id))
        if current is None or value > current.score:
            best[(item_type, item_id)] = SearchMatch(
                item_id=item_id,
                item_type=item_type,
                score=value,
                match_field=match_field,
                snippet=scoring.context_snippet(source, text),
            )

    # ── Score ─────────────────────────────────────────────────────────
    for node in graph.nodes:
        if query.search_labels:
            offer(node.id, "node", score(node.label), "label", node.label)
        if query.search_ids:
            offer(node.id, "node", score(node.id), "id", node.id)
        if query.search_metadata and node.metadata:
            blob = json.dumps(node.metadata, default=str, sort_keys=True)
            offer(node.id, "node", score(blob) * METADATA_FACTOR, "metadata", blob)

    if query.search_edges:
        for edge in graph.edges:
            offer(edge.id, "edge", score(edge.label) * EDGE_FACTOR, "label", edge.label)

    # ── Threshold and cap ─────────────────────────────────────────────
    matches = sorted(
        (m for m in best.values() if m.score >= query.min_score),
        key=lambda m: (-m.score, m.item_type, m.item_id),
    )
    total_matches = len(matches)
    truncated = total_matches > query.max_results
    matches = matches[:query.max_results]

    node_ids = {m.item_id for m in matches if m.item_type == "node"}
    edge_ids = {m.item_id for m in matches if m.item_type == "edge"}
    nodes_by_id = {n.id: n for n in graph.nodes}
    for edge in graph.edges:
        if edge.id in edge_ids:
            node_ids.update((edge.source, edge.target))

    nodes = [n for n in graph.nodes if n.id in node_ids]
    edges = [e for e in graph.edges if e.id in edge_ids]

    # ── Filters ───────────────────────────────────────────────────────
    if query.filters is not None:
        filtered = filter_graph(GraphSnapshot(nodes=nodes, edges=edges), query.filters)
        nodes, edges = filtered.nodes, filtered.edges
        kept_nodes = {n.id for n in nodes}
        kept_edges = {e.id for e in edges}
        matches = [
            m for m in matches
            if (m.item_type == "node" and m.item_id in kept_nodes)
            or (m.item_type == "edge" and m.item_id in kept_edges)
        ]

    # ── Related expansion ─────────────────────────────────────────────
    if query.include_related and nodes:
        expanded = _expand(graph, [n.id for n in nodes], query.related_depth)
        nodes = [nodes_by_id[nid] for nid in nodes_by_id if nid in expanded]
        edges = [e for e in graph.edges if e.source in expanded and e.target in expanded]

    edges = prune_dangling_edges(nodes, edges)

    elapsed = int((time.monotonic() - start) * 1000)
    logger.debug("search.complete", query=text, matches=len(matches), truncated=truncated)
    return SearchGraphResult(
        matches=matches,
        nodes=nodes,
        edges=edges,
        metadata={
            "query": text,
            "total_matches": total_matches,
            "result_count": len(matches),
            "mode": query.mode.value,
            "search_time_ms": elapsed,
            "truncated": truncated,
        },
    )


def _expand(graph: GraphSnapshot, seeds: list[str], depth: int) -> set[str]:
    adjacency: dict[str, set[str]] = {}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)

    seen = set(seeds)
    queue = deque((s, 0) for s in seeds)
    while queue:
        current, dist = queue.popleft()
        if dist >= depth:
            continue
        for neighbor in adjacency.get(current, ()):
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append((neighbor, dist + 1))
    return seen
