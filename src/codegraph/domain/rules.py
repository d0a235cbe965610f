"""Business rules as pure functions.

Fully deterministic: no I/O, no side-effects, easy to unit-test.
"""

from __future__ import annotations

import re
import sys
from datetime import datetime
from typing import Iterable

from codegraph.domain.entities import GraphEdge, GraphNode, clamp_unit
from codegraph.domain.enums import ImportCategory


# ---------------------------------------------------------------------------
# Entity identity (dedup policy)
# ---------------------------------------------------------------------------

_WHITESPACE = re.compile(r"\s+")


def normalize_entity_name(name: str) -> str:
    """Trim, collapse whitespace and lowercase an entity name."""
    return _WHITESPACE.sub(" ", name.strip()).lower()


def entity_node_id(name: str) -> str:
    """Node id shared by every entity whose normalized name is equal."""
    return "entity:" + normalize_entity_name(name).replace(" ", "-")


def merge_entity_nodes(a: GraphNode, b: GraphNode) -> GraphNode:
    """Merge two nodes that denote the same entity.

    Associative and commutative: the outcome does not depend on argument
    order or on how a sequence of merges is grouped.  ``updated_at`` is
    the only field that is not a function of the inputs.
    """
    if normalize_entity_name(a.label) != normalize_entity_name(b.label) and a.id != b.id:
        raise ValueError(f"MERGE_MISMATCH: '{a.label}' and '{b.label}' are different entities")

    dominant, other = sorted((a, b), key=_dominance_key)
    metadata = dict(other.metadata)
    metadata.update(dominant.metadata)

    return GraphNode(
        id=min(a.id, b.id),
        label=min(a.label, b.label),
        type=dominant.type,
        confidence=max(a.confidence, b.confidence),
        created_at=min(a.created_at, b.created_at),
        updated_at=datetime.now(),
        metadata=metadata,
        source_documents=sorted(set(a.source_documents) | set(b.source_documents)),
        state=dominant.state,
    )


def _dominance_key(node: GraphNode) -> tuple:
    # Higher confidence wins, ties broken by the lexically smaller label/type.
    return (-node.confidence, node.label, node.type, node.id)


# ---------------------------------------------------------------------------
# Edge integrity
# ---------------------------------------------------------------------------


def prune_dangling_edges(
    nodes: Iterable[GraphNode],
    edges: Iterable[GraphEdge],
) -> list[GraphEdge]:
    """Keep only edges whose endpoints are both in *nodes*."""
    visible = {n.id for n in nodes}
    return [e for e in edges if e.source in visible and e.target in visible]


# ---------------------------------------------------------------------------
# Import classification
# ---------------------------------------------------------------------------

NODE_BUILTINS: frozenset[str] = frozenset({
    "assert", "buffer", "child_process", "cluster", "crypto", "dgram", "dns",
    "events", "fs", "http", "http2", "https", "net", "os", "path", "perf_hooks",
    "process", "querystring", "readline", "stream", "string_decoder", "timers",
    "tls", "tty", "url", "util", "v8", "vm", "worker_threads", "zlib",
})

PYTHON_BUILTINS: frozenset[str] = frozenset(getattr(sys, "stdlib_module_names", ()))

ASSET_EXTENSIONS: tuple[str, ...] = (
    ".css", ".scss", ".sass", ".less", ".png", ".jpg", ".jpeg", ".gif",
    ".svg", ".ico", ".webp", ".woff", ".woff2", ".ttf", ".eot", ".mp4",
)

PRIMITIVE_TYPES: frozenset[str] = frozenset({
    "string", "number", "boolean", "any", "unknown", "void", "never", "null",
    "undefined", "object", "symbol", "bigint", "str", "int", "float", "bool",
    "bytes", "None", "list", "dict", "set", "tuple",
})


def classify_import(module: str) -> ImportCategory:
    """Classify an import specifier as builtin, internal or external."""
    if module.startswith((".", "/")):
        return ImportCategory.INTERNAL
    if module.startswith("node:"):
        return ImportCategory.BUILTIN
    root = module.split("/")[0].split(".")[0]
    if root in NODE_BUILTINS and "." not in module:
        return ImportCategory.BUILTIN
    if root in PYTHON_BUILTINS:
        return ImportCategory.BUILTIN
    return ImportCategory.EXTERNAL


def is_asset_import(module: str) -> bool:
    return module.lower().endswith(ASSET_EXTENSIONS)


# ---------------------------------------------------------------------------
# Scoring helpers shared by the use cases
# ---------------------------------------------------------------------------


def weighted_confidence(base: float, *factors: float) -> float:
    """Multiply *base* by *factors* and clamp to ``[0, 1]``."""
    value = base
    for f in factors:
        value *= f
    return clamp_unit(value)
