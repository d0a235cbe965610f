"""Domain enumerations for codegraph.

Node and edge ``type`` fields stay free strings so the graph is open to
extension; these enums name the well-known values.
"""

from __future__ import annotations

from enum import Enum


class NodeType(str, Enum):
    """Well-known node types."""

    WORKSPACE = "workspace"
    FILE = "file"
    DOCUMENT = "document"
    CHUNK = "chunk"
    ENTITY = "entity"
    CONCEPT = "concept"
    KEYWORD = "keyword"
    SYMBOL = "symbol"


# Ordering used when a subgraph is requested without seeds.
NODE_TYPE_PRIORITY: dict[str, int] = {
    NodeType.WORKSPACE.value: 0,
    NodeType.FILE.value: 1,
    NodeType.DOCUMENT.value: 2,
    NodeType.ENTITY.value: 3,
}


class EdgeType(str, Enum):
    """Well-known edge types.

    The first eight come from the document graph; the rest are emitted
    by the syntax-tree extractor and the enrichment filter.
    """

    CONTAINS = "contains"
    MENTIONS = "mentions"
    SIMILAR_TO = "similar_to"
    REFERS_TO = "refers_to"
    PART_OF = "part_of"
    RELATED_TO = "related_to"
    DERIVED_FROM = "derived_from"
    DEPENDS_ON = "depends_on"
    IMPORTS = "imports"
    CALLS = "calls"
    USES = "uses"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"


class QueueStatus(str, Enum):
    """Lifecycle states of a QueuedDocument."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RetrievalStrategy(str, Enum):
    """Strategies accepted by the hybrid retriever."""

    HYBRID = "hybrid"
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    GRAPH = "graph"


class RetrievalSource(str, Enum):
    """Corpora the hybrid retriever can draw from."""

    CODE = "code"
    DOCUMENTATION = "documentation"
    PREVENTION = "prevention"
    TASK = "task"


class SearchMode(str, Enum):
    """Scoring primitive used by search and by explicit retriever modes."""

    EXACT = "exact"
    FUZZY = "fuzzy"
    REGEX = "regex"
    SEMANTIC = "semantic"


class ImportCategory(str, Enum):
    """Where an imported module lives relative to the workspace."""

    BUILTIN = "builtin"
    INTERNAL = "internal"
    EXTERNAL = "external"


class EntityKind(str, Enum):
    """Kinds emitted by the syntax-tree extractor."""

    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    VARIABLE = "variable"
    PACKAGE = "package"
    COMPONENT = "component"
    CALL = "call"


class SemanticCategory(str, Enum):
    """Semantic role inferred for a code entity."""

    REACT_COMPONENT = "react-component"
    REACT_HOOK = "react-hook"
    REACT_CONTEXT = "react-context"
    API_HANDLER = "api-handler"
    API_ROUTE = "api-route"
    API_MIDDLEWARE = "api-middleware"
    SERVICE = "service"
    REPOSITORY = "repository"
    MODEL = "model"
    DTO = "dto"
    ENTITY = "entity"
    UTILITY = "utility"
    HELPER = "helper"
    CONFIG = "config"
    CONSTANT = "constant"
    ENUM = "enum"
    TYPE_DEFINITION = "type-definition"
    TEST_SUITE = "test-suite"
    TEST_HELPER = "test-helper"
    UNKNOWN = "unknown"


class KnownEntityType(str, Enum):
    """Entity types the discovery prompt asks for by name."""

    SERVICE = "Service"
    API = "API"
    COMPONENT = "Component"
    DATABASE = "Database"
    TABLE = "Table"
    PROCEDURE = "Procedure"
    FUNCTION = "Function"
    CLASS = "Class"
    MODULE = "Module"
    DOCUMENTATION = "Documentation"
    ISSUE = "Issue"
    PERSON = "Person"
    DEVELOPER = "Developer"
    CONCEPT = "Concept"


class HostMessageType(str, Enum):
    """One-way messages pushed to the host UI."""

    STATUS = "status"
    PROGRESS = "progress"
    SUBGRAPH = "subgraph"
    SEARCH_RESULTS = "search-results"
    ERROR = "error"


class HostCommand(str, Enum):
    """Command intents sent by the host UI."""

    SEARCH = "search"
    LOAD_SUBGRAPH = "load-subgraph"
    REFRESH = "refresh"
    RESET = "reset"
