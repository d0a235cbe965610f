"""Domain entities for codegraph.

All entities are Pydantic BaseModels.  Nodes and edges are stored in flat
id-keyed collections and reference each other by id only, so traversal
and serialization never follow object pointers.
"""

from __future__ import annotations

import hashlib
import math
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from codegraph.domain.enums import (
    EdgeType,
    KnownEntityType,
    NodeType,
    QueueStatus,
    RetrievalSource,
)


def clamp_unit(value: float) -> float:
    """Clamp *value* into ``[0, 1]``.  NaN maps to 0."""
    if math.isnan(value) or value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return float(value)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def make_edge_id(source: str, target: str, edge_type: str) -> str:
    """Deterministic edge id from its endpoints and type."""
    digest = hashlib.sha256(f"{source}|{target}|{edge_type}".encode("utf-8")).hexdigest()
    return f"edge:{digest[:16]}"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class NodeState(BaseModel):
    """Presentation flags.  ``deleted`` is the logical-delete marker."""

    selected: bool = False
    highlighted: bool = False
    hovered: bool = False
    visible: bool = True
    expanded: bool = False
    deleted: bool = False


class NodeConnections(BaseModel):
    """Degree of a node within a snapshot."""

    incoming: int = 0
    outgoing: int = 0
    total: int = 0


class GraphStats(BaseModel):
    """Statistics derived from a GraphSnapshot (never stored)."""

    node_count: int = 0
    edge_count: int = 0
    nodes_by_type: dict[str, int] = Field(default_factory=dict)
    edges_by_type: dict[str, int] = Field(default_factory=dict)
    density: float = 0.0


class OtherEntityType(BaseModel):
    """An entity type the discovery provider invented."""

    model_config = ConfigDict(frozen=True)

    name: str

    @property
    def value(self) -> str:
        return self.name


EntityType = Union[KnownEntityType, OtherEntityType]


def parse_entity_type(raw: str) -> EntityType:
    """Map a provider type string onto the tagged union (case-insensitive)."""
    cleaned = (raw or "").strip()
    for known in KnownEntityType:
        if known.value.lower() == cleaned.lower():
            return known
    return OtherEntityType(name=cleaned or "Unknown")


_STRUCTURED_MAPPING: dict[KnownEntityType, str] = {
    KnownEntityType.SERVICE: "code_chunk",
    KnownEntityType.API: "code_chunk",
    KnownEntityType.COMPONENT: "code_chunk",
    KnownEntityType.DATABASE: "database",
    KnownEntityType.TABLE: "db_entity",
    KnownEntityType.PROCEDURE: "db_entity",
    KnownEntityType.FUNCTION: "db_entity",
    KnownEntityType.DOCUMENTATION: "documentation",
    KnownEntityType.ISSUE: "issue",
    KnownEntityType.PERSON: "person",
    KnownEntityType.DEVELOPER: "person",
}


def structured_mapping(entity_type: EntityType) -> str | None:
    """Return the structured record type an entity type maps onto, if any."""
    if isinstance(entity_type, OtherEntityType):
        return None
    return _STRUCTURED_MAPPING.get(entity_type)


# ---------------------------------------------------------------------------
# Graph entities
# ---------------------------------------------------------------------------


class GraphNode(BaseModel):
    """A document, chunk, file or extracted entity.

    ``confidence`` is clamped to ``[0, 1]`` at construction and on every
    assignment.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    label: str
    type: str = NodeType.ENTITY.value
    confidence: float = 1.0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_documents: list[str] = Field(default_factory=list)
    state: NodeState = Field(default_factory=NodeState)

    @field_validator("type", mode="before")
    @classmethod
    def _type_value(cls, v: Any) -> Any:
        return _enum_value(v)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp_unit(v)

    @property
    def is_deleted(self) -> bool:
        return self.state.deleted

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def matches_search(self, query: str) -> bool:
        """Case-insensitive match on label, id or any metadata value."""
        q = query.lower()
        if q in self.label.lower() or q in self.id.lower():
            return True
        return any(
            q in str(v).lower() for v in self.metadata.values() if v is not None
        )


class GraphEdge(BaseModel):
    """A typed relationship between two nodes.

    Self-loops are rejected.  ``weight`` and ``confidence`` are clamped.
    The id defaults to :func:`make_edge_id` of the endpoints and type.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = ""
    label: str = ""
    type: str = EdgeType.RELATED_TO.value
    source: str
    target: str
    weight: float = 1.0
    confidence: float = 1.0
    bidirectional: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            edge_type = _enum_value(data.get("type", EdgeType.RELATED_TO.value))
            data["type"] = edge_type
            if not data.get("id") and "source" in data and "target" in data:
                data["id"] = make_edge_id(data["source"], data["target"], edge_type)
            if not data.get("label"):
                data["label"] = edge_type
        return data

    @field_validator("weight", "confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp_unit(v)

    @model_validator(mode="after")
    def _no_self_loop(self) -> GraphEdge:
        if self.source == self.target:
            raise ValueError(f"SELF_LOOP: edge source and target are both '{self.source}'")
        return self

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def touch(self) -> None:
        self.updated_at = datetime.now()


class GraphSnapshot(BaseModel):
    """A set of nodes and edges plus statistics derived on demand."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    def active(self) -> GraphSnapshot:
        """Drop deleted nodes, then every edge with a missing endpoint."""
        nodes = [n for n in self.nodes if not n.is_deleted]
        visible = {n.id for n in nodes}
        edges = [e for e in self.edges if e.source in visible and e.target in visible]
        return GraphSnapshot(nodes=nodes, edges=edges)

    def stats(self) -> GraphStats:
        nodes_by_type: dict[str, int] = {}
        for n in self.nodes:
            nodes_by_type[n.type] = nodes_by_type.get(n.type, 0) + 1
        edges_by_type: dict[str, int] = {}
        for e in self.edges:
            edges_by_type[e.type] = edges_by_type.get(e.type, 0) + 1
        n = len(self.nodes)
        density = len(self.edges) / (n * (n - 1)) if n > 1 else 0.0
        return GraphStats(
            node_count=n,
            edge_count=len(self.edges),
            nodes_by_type=nodes_by_type,
            edges_by_type=edges_by_type,
            density=density,
        )

    def connections(self) -> dict[str, NodeConnections]:
        """Degree of every node, counting only edges in this snapshot."""
        result = {n.id: NodeConnections() for n in self.nodes}
        for e in self.edges:
            if e.source in result:
                result[e.source].outgoing += 1
                result[e.source].total += 1
            if e.target in result:
                result[e.target].incoming += 1
                result[e.target].total += 1
        return result


# ---------------------------------------------------------------------------
# Ingestion entities
# ---------------------------------------------------------------------------


class QueuedDocument(BaseModel):
    """An ingestion work item, mutated in place by the background processor."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    document_id: str
    title: str
    file_name: str
    content: str
    status: QueueStatus = QueueStatus.PENDING
    progress: int = 0
    current_step: str = "Queued for processing"
    total_chunks: int = 0
    processed_chunks: int = 0
    extracted_entities: int = 0
    extracted_relationships: int = 0
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, v: int) -> int:
        return max(0, min(100, int(v)))


class ChunkRecord(BaseModel):
    """A slice of a document plus the graph ids discovered in it."""

    document_id: str
    content: str
    start_position: int
    end_position: int
    chunk_index: int
    entities: list[str] = Field(default_factory=list)
    relationships: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Discovery entities (ephemeral, never persisted in this shape)
# ---------------------------------------------------------------------------


class DiscoveredEntity(BaseModel):
    name: str
    type: EntityType
    confidence: float
    properties: dict[str, Any] = Field(default_factory=dict)
    source_context: str = ""
    structured_mapping: str | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp_unit(v)


class DiscoveredRelationship(BaseModel):
    source: str
    target: str
    type: str
    confidence: float
    context: str = ""

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp_unit(v)


class DiscoveryOptions(BaseModel):
    confidence_threshold: float = 0.5
    max_entities: int = 50
    include_relationships: bool = True
    allow_new_types: bool = True


class DiscoveryResult(BaseModel):
    entities: list[DiscoveredEntity] = Field(default_factory=list)
    relationships: list[DiscoveredRelationship] = Field(default_factory=list)
    summary: str = ""
    processing_time_ms: int = 0


# ---------------------------------------------------------------------------
# Extraction entities
# ---------------------------------------------------------------------------


class Parameter(BaseModel):
    name: str
    type: str | None = None


class EntityRelationship(BaseModel):
    """A relationship seeded by the syntax-tree extractor."""

    type: str
    target: str
    confidence: float = 1.0


class ExtractedEntity(BaseModel):
    """A declaration, import, JSX usage or call found in a syntax tree."""

    id: str
    name: str
    kind: str
    file_path: str
    line: int | None = None
    is_exported: bool = False
    parameters: list[Parameter] | None = None
    return_type: str | None = None
    initial_value: str | None = None
    category: str | None = None
    source: str | None = None
    specifiers: list[str] = Field(default_factory=list)
    props: list[str] = Field(default_factory=list)
    bases: list[str] = Field(default_factory=list)
    scope: str | None = None
    docstring: str | None = None
    confidence: float = 1.0
    relationships: list[EntityRelationship] = Field(default_factory=list)


class DocParam(BaseModel):
    name: str
    type: str | None = None
    description: str = ""


class DocComment(BaseModel):
    """Metadata parsed from a documentation comment."""

    description: str = ""
    summary: str = ""
    params: list[DocParam] = Field(default_factory=list)
    returns: str | None = None
    throws: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    deprecated: str | None = None
    since: str | None = None
    author: str | None = None
    is_async: bool = False
    tags: dict[str, str] = Field(default_factory=dict)


class InferredRelationship(BaseModel):
    type: str
    source: str
    target: str
    confidence: float
    evidence: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return clamp_unit(v)


class SourceLocation(BaseModel):
    file: str
    line: int


class EnrichedEntity(ExtractedEntity):
    """An ExtractedEntity plus static enrichment."""

    semantic_category: str = "unknown"
    doc: DocComment | None = None
    inferred_relationships: list[InferredRelationship] = Field(default_factory=list)
    static_confidence: float = 0.0
    location: SourceLocation | None = None
    usage_count: int = 0


# ---------------------------------------------------------------------------
# Retrieval entities
# ---------------------------------------------------------------------------


class CorpusEntry(BaseModel):
    """A documentation, prevention-rule or task entry in a corpus index."""

    id: str
    title: str
    path: str = ""
    content: str = ""
    category: str | None = None
    keywords: list[str] = Field(default_factory=list)
    last_modified: datetime | None = None


class RetrievedItem(BaseModel):
    """A result of the hybrid retriever."""

    id: str
    title: str
    source: RetrievalSource
    score: float
    snippet: str = ""
    category: str | None = None
    file_path: str | None = None
    last_modified: datetime | None = None
    match_source: str = "keyword"  # "keyword", "fuzzy", "graph", "regex"
    metadata: dict[str, Any] = Field(default_factory=dict)
