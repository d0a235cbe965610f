"""Static relationship inference.

Every inferred relationship carries a confidence and an ``evidence`` list
naming what produced it:

- ``explicit-import-statement``: an import entity (``imports``, 1.0)
- ``call-expression`` / ``jsx-element`` / ``type-reference`` /
  ``identifier-reference``: a usage inside the declaration body
  (``calls`` or ``uses``, ``min(0.7 + 0.05 * count, 0.95)``)
- ``class-declaration``: ``extends`` / ``implements`` (1.0)
- ``import-specifier`` / ``external-package``: ``depends_on``
- ``co-occurrence:line N``: two declarations in the same scope within a
  small line window (``related_to``, 0.5)
"""

from __future__ import annotations

import re

from codegraph.domain.entities import ExtractedEntity, InferredRelationship
from codegraph.domain.enums import EdgeType, ImportCategory

CO_OCCURRENCE_WINDOW = 3
CO_OCCURRENCE_CONFIDENCE = 0.5

_DECLARATION_KINDS = {"function", "class", "interface", "type", "variable", "component"}
_TYPE_KINDS = {"interface", "type"}


def infer_relationships(
    entity: ExtractedEntity,
    all_entities: list[ExtractedEntity],
    source_lines: list[str] | None = None,
) -> list[InferredRelationship]:
    relationships: list[InferredRelationship] = []
    relationships.extend(_import_relationships(entity))
    if source_lines:
        relationships.extend(_usage_relationships(entity, all_entities, source_lines))
    relationships.extend(_inheritance_relationships(entity))
    relationships.extend(_dependency_relationships(entity, all_entities))
    relationships.extend(_co_occurrence(entity, all_entities, relationships))
    return _dedupe(relationships)


# ---------------------------------------------------------------------------
# Inference rules
# ---------------------------------------------------------------------------


def _import_relationships(entity: ExtractedEntity) -> list[InferredRelationship]:
    if entity.kind != "package" or not entity.source:
        return []
    return [InferredRelationship(
        type=EdgeType.IMPORTS.value,
        source=entity.file_path,
        target=entity.source,
        confidence=1.0,
        evidence=["explicit-import-statement"],
    )]


def _usage_relationships(
    entity: ExtractedEntity,
    all_entities: list[ExtractedEntity],
    source_lines: list[str],
) -> list[InferredRelationship]:
    if entity.kind not in ("function", "class") or entity.line is None:
        return []
    body = declaration_block(source_lines, entity.line)
    if not body:
        return []

    results: list[InferredRelationship] = []
    seen: set[str] = set()
    for other in all_entities:
        name = other.name
        if name == entity.name or name in seen or other.kind not in _DECLARATION_KINDS:
            continue
        seen.add(name)
        count = count_usages(name, body)
        if count == 0:
            continue
        if _is_call(name, body):
            rel_type, evidence = EdgeType.CALLS.value, "call-expression"
        elif _is_jsx(name, body):
            rel_type, evidence = EdgeType.USES.value, "jsx-element"
        elif other.kind in _TYPE_KINDS:
            rel_type, evidence = EdgeType.USES.value, "type-reference"
        else:
            rel_type, evidence = EdgeType.USES.value, "identifier-reference"
        results.append(InferredRelationship(
            type=rel_type,
            source=entity.name,
            target=name,
            confidence=min(0.7 + count * 0.05, 0.95),
            evidence=[evidence],
        ))
    return results


def _inheritance_relationships(entity: ExtractedEntity) -> list[InferredRelationship]:
    return [
        InferredRelationship(
            type=rel.type,
            source=entity.name,
            target=rel.target,
            confidence=1.0,
            evidence=["class-declaration"],
        )
        for rel in entity.relationships
        if rel.type in (EdgeType.EXTENDS.value, EdgeType.IMPLEMENTS.value)
    ]


def _dependency_relationships(
    entity: ExtractedEntity,
    all_entities: list[ExtractedEntity],
) -> list[InferredRelationship]:
    if entity.kind != "package" or not entity.source:
        return []
    results: list[InferredRelationship] = []
    declared = {e.name for e in all_entities if e.kind in _DECLARATION_KINDS}
    for specifier in entity.specifiers:
        if specifier in declared:
            results.append(InferredRelationship(
                type=EdgeType.DEPENDS_ON.value,
                source=entity.file_path,
                target=specifier,
                confidence=0.9,
                evidence=["import-specifier"],
            ))
    if entity.category == ImportCategory.EXTERNAL.value:
        package = package_name(entity.source)
        if package != entity.name:
            results.append(InferredRelationship(
                type=EdgeType.DEPENDS_ON.value,
                source=entity.file_path,
                target=package,
                confidence=0.85,
                evidence=["external-package"],
            ))
    return results


def _co_occurrence(
    entity: ExtractedEntity,
    all_entities: list[ExtractedEntity],
    existing: list[InferredRelationship],
) -> list[InferredRelationship]:
    if entity.kind not in _DECLARATION_KINDS or entity.line is None:
        return []
    already = {r.target for r in existing}
    results: list[InferredRelationship] = []
    for other in all_entities:
        if (
            other.id == entity.id
            or other.name == entity.name
            or other.kind not in _DECLARATION_KINDS
            or other.line is None
            or other.scope != entity.scope
            or other.name in already
        ):
            continue
        if abs(other.line - entity.line) <= CO_OCCURRENCE_WINDOW:
            results.append(InferredRelationship(
                type=EdgeType.RELATED_TO.value,
                source=entity.name,
                target=other.name,
                confidence=CO_OCCURRENCE_CONFIDENCE,
                evidence=[f"co-occurrence:line {other.line}"],
            ))
    return results


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def package_name(module: str) -> str:
    """``@scope/pkg/sub`` -> ``@scope/pkg``; ``pkg/sub`` or ``pkg.sub`` -> ``pkg``."""
    if module.startswith("@"):
        return "/".join(module.split("/")[:2])
    return module.split("/")[0].split(".")[0]


def declaration_block(source_lines: list[str], line: int) -> str:
    """Text of the declaration starting at 1-based *line*.

    Brace-delimited when the header opens a brace, indentation-delimited
    otherwise.
    """
    start = line - 1
    if start < 0 or start >= len(source_lines):
        return ""
    header = source_lines[start]

    if "{" in header or (start + 1 < len(source_lines) and source_lines[start + 1].strip().startswith("{")):
        depth = 0
        opened = False
        for i in range(start, len(source_lines)):
            for ch in source_lines[i]:
                if ch == "{":
                    depth += 1
                    opened = True
                elif ch == "}":
                    depth -= 1
            if opened and depth <= 0:
                return "\n".join(source_lines[start:i + 1])
        return "\n".join(source_lines[start:])

    indent = len(header) - len(header.lstrip())
    end = start + 1
    while end < len(source_lines):
        text = source_lines[end]
        if text.strip() and len(text) - len(text.lstrip()) <= indent:
            break
        end += 1
    return "\n".join(source_lines[start:end])


def count_usages(name: str, text: str) -> int:
    return len(re.findall(rf"(?<![\w$.]){re.escape(name)}(?![\w$])", text))


def _is_call(name: str, text: str) -> bool:
    return re.search(rf"(?<![\w$.]){re.escape(name)}\s*\(", text) is not None


def _is_jsx(name: str, text: str) -> bool:
    return re.search(rf"<{re.escape(name)}[\s/>]", text) is not None


def _dedupe(relationships: list[InferredRelationship]) -> list[InferredRelationship]:
    best: dict[tuple[str, str, str], InferredRelationship] = {}
    for rel in relationships:
        key = (rel.type, rel.source, rel.target)
        current = best.get(key)
        if current is None or rel.confidence > current.confidence:
            best[key] = rel
    return list(best.values())
