"""IndexSourceFile command.

Processes a single code file through the static pipeline:
1. Read the file and run the syntax-tree extractor
2. Enrich the entities (docs, semantic category, relationships, confidence)
3. Optionally merge in entities discovered by the text-completion provider
4. Upsert a file node under the workspace node, one entity node per
   declaration and one edge per relationship
5. Emit domain events

Re-indexing is incremental.  A file whose content hash matches the one on
its file node is skipped.  Otherwise every node and edge id is reused, and
entities and edges the previous analysis produced but this one did not
are retired.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from codegraph.application.discovery import EntityDiscoveryService
from codegraph.application.enrichment.filter import StaticEnrichmentFilter, merge_sources
from codegraph.application.extraction.registry import ExtractorRegistry
from codegraph.config.logging import get_logger
from codegraph.domain.entities import EnrichedEntity, GraphEdge, GraphNode
from codegraph.domain.enums import EdgeType, EntityKind, NodeType
from codegraph.domain.events import SourceFileIndexed, SourceFileSkipped
from codegraph.domain.ports import EventBus, GraphStore
from codegraph.domain.rules import entity_node_id, merge_entity_nodes
from codegraph.infrastructure.parsing.hashing import compute_content_hash

logger = get_logger(__name__)

DECLARATION_KINDS = frozenset({
    EntityKind.FUNCTION.value,
    EntityKind.CLASS.value,
    EntityKind.INTERFACE.value,
    EntityKind.TYPE.value,
    EntityKind.VARIABLE.value,
    EntityKind.COMPONENT.value,
})

SKIPPED_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    "dist", "build", ".mypy_cache", ".pytest_cache", ".codegraph",
})


@dataclass
class IndexSourceResult:
    """Result of indexing a single code file."""

    success: bool
    file_path: str
    node_id: str | None = None
    entity_count: int = 0
    edge_count: int = 0
    skipped_reason: str | None = None
    unchanged: bool = False
    retired_entities: int = 0
    retired_edges: int = 0


@dataclass
class IndexTreeResult:
    indexed: int = 0
    unchanged: int = 0
    skipped: int = 0
    entity_count: int = 0
    edge_count: int = 0
    results: list[IndexSourceResult] = field(default_factory=list)


def file_node_id(relative_path: str) -> str:
    return f"file:{relative_path}"


def symbol_node_id(name: str) -> str:
    return f"symbol:{name}"


def index_source_file(
    file_path: Path,
    *,
    root: Path | None = None,
    registry: ExtractorRegistry,
    enrichment: StaticEnrichmentFilter,
    graph_store: GraphStore,
    event_bus: EventBus | None = None,
    discovery: EntityDiscoveryService | None = None,
    workspace_label: str = "workspace",
    force: bool = False,
) -> IndexSourceResult:
    """Index one code file into the graph store.

    Args:
        file_path: Path to the code file.
        root: Root the stored path is made relative to.
        registry: Syntax-tree extractors by file extension.
        enrichment: Static enrichment filter.
        graph_store: Store receiving the nodes and edges.
        event_bus: Optional event bus for domain events.
        discovery: Optional discovery service; used when it has a provider.
        workspace_label: Label of the workspace root node.
        force: Re-analyze even when the content hash is unchanged.

    Returns:
        IndexSourceResult with counts, or the reason the file was skipped.
    """
    relative = (
        file_path.relative_to(root).as_posix()
        if root is not None and file_path.is_relative_to(root)
        else file_path.as_posix()
    )
    log = logger.bind(file=relative)

    # 1. Read and extract
    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return _skipped(relative, f"FILE_ERROR: {e}", event_bus)

    content_hash = compute_content_hash(content)
    previous = graph_store.get_node(file_node_id(relative))
    if previous is not None and not force and previous.metadata.get("content_hash") == content_hash:
        log.debug("index.file.unchanged")
        return IndexSourceResult(
            success=True,
            file_path=relative,
            node_id=previous.id,
            unchanged=True,
        )

    extraction = registry.extract_file(relative, content)
    if not extraction.ok:
        return _skipped(relative, extraction.error or "unknown error", event_bus)

    # 2. Enrich
    enriched = enrichment.enrich(extraction.entities, content, relative)

    # 3. Optional discovery
    discovered = []
    if discovery is not None and discovery.configured:
        discovered = discovery.discover(content).entities

    # 4. Nodes
    workspace = graph_store.ensure_workspace_node(workspace_label)
    file_id = file_node_id(relative)
    edge_ids = [graph_store.upsert_edge(GraphEdge(
        source=workspace.id, target=file_id, type=EdgeType.CONTAINS,
    )).id]

    declarations = [e for e in enriched if e.kind in DECLARATION_KINDS]
    entity_nodes = merge_sources(declarations, discovered, source_document=relative)
    for node in entity_nodes:
        existing = graph_store.get_node(node.id)
        if existing is not None:
            node = merge_entity_nodes(existing, node)
        graph_store.upsert_node(node)
        edge_ids.append(graph_store.upsert_edge(GraphEdge(
            source=file_id,
            target=node.id,
            type=EdgeType.CONTAINS,
            weight=node.confidence,
        )).id)

    # 5. Relationship edges
    for entity in enriched:
        edge_ids += _relationship_edges(entity, relative, file_id, graph_store)
    edge_ids = list(dict.fromkeys(edge_ids))

    file_node = graph_store.upsert_node(GraphNode(
        id=file_id,
        label=Path(relative).name,
        type=NodeType.FILE,
        metadata={
            "path": relative,
            "language": extraction.language,
            "content_hash": content_hash,
            "entity_count": len(enriched),
        },
        source_documents=[relative],
    ))
    edge_count = len(edge_ids)

    retired_entities = retired_edges = 0
    if previous is not None:
        retired_entities, retired_edges = _retire_stale(
            file_id, relative, {n.id for n in entity_nodes}, set(edge_ids), graph_store,
        )
        if retired_entities or retired_edges:
            log.info("index.file.retired", entities=retired_entities, edges=retired_edges)

    if event_bus:
        event_bus.publish(SourceFileIndexed(
            file_path=relative,
            node_id=file_node.id,
            entity_count=len(entity_nodes),
            edge_count=edge_count,
            indexed_at=datetime.now(),
        ))
    log.debug("index.file.complete", entities=len(entity_nodes), edges=edge_count)

    return IndexSourceResult(
        success=True,
        file_path=relative,
        node_id=file_node.id,
        entity_count=len(entity_nodes),
        edge_count=edge_count,
        retired_entities=retired_entities,
        retired_edges=retired_edges,
    )


def index_source_tree(
    root: Path,
    *,
    registry: ExtractorRegistry,
    enrichment: StaticEnrichmentFilter,
    graph_store: GraphStore,
    event_bus: EventBus | None = None,
    discovery: EntityDiscoveryService | None = None,
    workspace_label: str = "workspace",
    force: bool = False,
) -> IndexTreeResult:
    """Index every supported file under *root* (or *root* itself if a file)."""
    summary = IndexTreeResult()
    if root.is_file():
        files = [root]
        base = root.parent
    else:
        files = sorted(
            p for p in root.rglob("*")
            if p.is_file()
            and registry.supports(p)
            and not SKIPPED_DIRS.intersection(p.relative_to(root).parts[:-1])
        )
        base = root

    for path in files:
        result = index_source_file(
            path,
            root=base,
            registry=registry,
            enrichment=enrichment,
            graph_store=graph_store,
            event_bus=event_bus,
            discovery=discovery,
            workspace_label=workspace_label,
            force=force,
        )
        summary.results.append(result)
        if result.unchanged:
            summary.unchanged += 1
        elif result.success:
            summary.indexed += 1
            summary.entity_count += result.entity_count
            summary.edge_count += result.edge_count
        else:
            summary.skipped += 1

    logger.info(
        "index.tree.complete",
        root=str(root),
        indexed=summary.indexed,
        unchanged=summary.unchanged,
        skipped=summary.skipped,
        entities=summary.entity_count,
        edges=summary.edge_count,
    )
    return summary


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _relationship_edges(
    entity: EnrichedEntity,
    relative: str,
    file_id: str,
    graph_store: GraphStore,
) -> list[str]:
    # Imports belong to the file; everything else to the declaring entity.
    file_level = entity.kind == EntityKind.PACKAGE.value
    if not file_level and entity.kind not in DECLARATION_KINDS:
        return []

    candidates: list[tuple[str, str, str, float, list[str]]] = [
        (r.type, entity.name, r.target, r.confidence, ["syntax-tree"])
        for r in entity.relationships
    ]
    candidates += [
        (r.type, r.source, r.target, r.confidence, r.evidence)
        for r in entity.inferred_relationships
    ]

    edge_ids: list[str] = []
    for rel_type, source_name, target_name, confidence, evidence in candidates:
        if file_level or source_name == relative:
            source_id = file_id
        else:
            source_id = entity_node_id(source_name)
            if graph_store.get_node(source_id) is None:
                continue
        target_id = _resolve_target(target_name, rel_type, graph_store)
        if target_id == source_id:
            continue
        edge_ids.append(graph_store.upsert_edge(GraphEdge(
            source=source_id,
            target=target_id,
            type=rel_type,
            weight=confidence,
            confidence=confidence,
            metadata={"evidence": evidence, "file_path": relative, "line": entity.line},
        )).id)
    return edge_ids


def _retire_stale(
    file_id: str,
    relative: str,
    entity_ids: set[str],
    edge_ids: set[str],
    graph_store: GraphStore,
) -> tuple[int, int]:
    """Drop what an earlier analysis of this file produced and this one did not.

    An edge belongs to the file when it starts at the file node or was
    emitted from it (``metadata.file_path``).  A stale entity still
    declared by another file only loses this file from ``source_documents``.
    """
    previous = [
        e.target for e in graph_store.edges_for(file_id)
        if e.source == file_id and e.type == EdgeType.CONTAINS.value and e.target not in entity_ids
    ]

    owned: dict[str, GraphEdge] = {}
    for node_id in [file_id, *previous, *sorted(entity_ids)]:
        for edge in graph_store.edges_for(node_id):
            if edge.source == file_id or edge.metadata.get("file_path") == relative:
                owned[edge.id] = edge
    stale_edges = [eid for eid in owned if eid not in edge_ids]
    for eid in stale_edges:
        graph_store.delete_edge(eid)

    retired = 0
    for node_id in previous:
        node = graph_store.get_node(node_id)
        if node is None:
            continue
        others = [d for d in node.source_documents if d != relative]
        if others:
            node.source_documents = others
            graph_store.upsert_node(node)
        elif graph_store.delete_node(node_id):
            retired += 1
    return retired, len(stale_edges)


def _resolve_target(name: str, rel_type: str, graph_store: GraphStore) -> str:
    node_id = entity_node_id(name)
    if graph_store.get_node(node_id) is not None:
        return node_id
    symbol_id = symbol_node_id(name)
    if graph_store.get_node(symbol_id) is None:
        graph_store.upsert_node(GraphNode(
            id=symbol_id,
            label=name,
            type=NodeType.SYMBOL,
            metadata={
                "kind": "module" if rel_type in (EdgeType.IMPORTS.value, EdgeType.DEPENDS_ON.value) else "symbol",
                "resolved": False,
            },
        ))
    return symbol_id


def _skipped(relative: str, reason: str, event_bus: EventBus | None) -> IndexSourceResult:
    logger.info("index.file.skipped", file=relative, reason=reason)
    if event_bus:
        event_bus.publish(SourceFileSkipped(file_path=relative, reason=reason))
    return IndexSourceResult(success=False, file_path=relative, skipped_reason=reason)
