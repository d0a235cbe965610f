"""Semantic category inference for code entities.

Documentation tags win over naming heuristics; naming heuristics are
tried from the most specific role (React, API) to the most generic.
"""

from __future__ import annotations

import re

from codegraph.domain.entities import DocComment, ExtractedEntity
from codegraph.domain.enums import SemanticCategory as C

_TAG_CATEGORIES: list[tuple[tuple[str, ...], C]] = [
    (("component", "react"), C.REACT_COMPONENT),
    (("hook",), C.REACT_HOOK),
    (("api", "endpoint"), C.API_HANDLER),
    (("service",), C.SERVICE),
    (("repository", "repo"), C.REPOSITORY),
    (("model", "entity"), C.ENTITY),
    (("dto",), C.DTO),
    (("util", "utility"), C.UTILITY),
    (("helper",), C.HELPER),
    (("config", "configuration"), C.CONFIG),
    (("test", "spec"), C.TEST_SUITE),
]

_BUILTIN_PREFIXES = (
    "console", "document", "window", "navigator", "location", "localstorage",
    "sessionstorage", "fetch", "xmlhttprequest", "process", "buffer", "require",
    "module", "exports", "__dirname", "__filename", "print", "len", "logging",
    "os.", "sys.", "json.",
)

_CONSTANT = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_HOOK = re.compile(r"^use[A-Z]")


def infer_semantic_category(
    entity: ExtractedEntity,
    doc: DocComment | None = None,
    source_text: str | None = None,
) -> C:
    """Infer the semantic role of *entity*."""
    if doc is not None and doc.tags:
        tag_names = {t.lower() for t in doc.tags}
        for names, category in _TAG_CATEGORIES:
            if tag_names.intersection(names):
                return category

    name = entity.name
    lower = name.lower()
    kind = entity.kind

    # UI framework
    if _is_react_component(entity, source_text):
        return C.REACT_COMPONENT
    if _HOOK.match(name):
        return C.REACT_HOOK
    if "context" in lower or lower.endswith("provider"):
        return C.REACT_CONTEXT

    # API surface
    if "handler" in lower or "controller" in lower or lower.startswith("handle") or (
        lower.startswith("on") and kind == "function"
    ):
        return C.API_HANDLER
    if "route" in lower or "endpoint" in lower:
        return C.API_ROUTE
    if "middleware" in lower or lower.endswith("mw") or (
        lower.startswith("auth") and kind == "function"
    ):
        return C.API_MIDDLEWARE

    # Application layers
    if "service" in lower or lower.endswith("svc"):
        return C.SERVICE
    if "repository" in lower or lower.endswith("repo"):
        return C.REPOSITORY
    if "model" in lower:
        return C.MODEL
    if "dto" in lower or lower.endswith(("request", "response")):
        return C.DTO
    if lower.endswith("entity"):
        return C.ENTITY

    # Support code
    if lower.endswith(("util", "utils")) or "utility" in lower:
        return C.UTILITY
    if "helper" in lower:
        return C.HELPER
    if "config" in lower or lower.endswith("configuration") or lower in ("settings", "options"):
        return C.CONFIG
    if kind == "variable" and _CONSTANT.match(name):
        return C.CONSTANT
    if lower.endswith("enum") or "Enum" in entity.bases:
        return C.ENUM

    # Tests
    if lower.endswith(("test", "spec")) or lower.startswith("test") or ".test" in lower or ".spec" in lower:
        return C.TEST_SUITE
    if any(word in lower for word in ("mock", "fixture", "stub", "fake")):
        return C.TEST_HELPER

    if kind == "class":
        return C.ENTITY
    if kind in ("call", "package") and lower.startswith(_BUILTIN_PREFIXES):
        return C.UTILITY
    if kind in ("interface", "type"):
        return C.TYPE_DEFINITION
    return C.UNKNOWN


def _is_react_component(entity: ExtractedEntity, source_text: str | None) -> bool:
    name = entity.name
    if not name[:1].isupper() or entity.kind not in ("function", "class", "component"):
        return False
    if entity.kind == "component":
        return True
    if name.endswith(("Component", "Page", "View")):
        return True
    if source_text and entity.kind == "function":
        escaped = re.escape(name)
        patterns = (
            rf"function\s+{escaped}\s*\([^)]*\)[^{{]*\{{[^}}]*return\s*\(?\s*<",
            rf"(?:const|let|var)\s+{escaped}\s*=\s*\([^)]*\)\s*(?::[^=]*)?=>\s*\(?\s*<",
        )
        return any(re.search(p, source_text, re.DOTALL) for p in patterns)
    return False
