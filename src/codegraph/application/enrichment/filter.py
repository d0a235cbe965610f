"""Enrichment and normalization of extracted entities.

``StaticEnrichmentFilter.enrich`` is a pure function of its inputs: it
reads nothing from disk and talks to no service.  ``EntityFilterPipeline``
runs before it to drop noise, and ``merge_sources`` folds syntax-tree and
discovery output into graph nodes using the dedup rule.
"""

from __future__ import annotations

import math
import re
from functools import reduce

from codegraph.application.enrichment.confidence import static_confidence
from codegraph.application.enrichment.doc_comments import find_doc_comment, parse_docstring
from codegraph.application.enrichment.relationships import count_usages, infer_relationships
from codegraph.application.enrichment.semantic_types import infer_semantic_category
from codegraph.domain.entities import (
    DiscoveredEntity,
    EnrichedEntity,
    ExtractedEntity,
    GraphNode,
    SourceLocation,
    clamp_unit,
)
from codegraph.domain.enums import EntityKind, NodeType
from codegraph.domain.rules import (
    PRIMITIVE_TYPES,
    classify_import,
    entity_node_id,
    is_asset_import,
    merge_entity_nodes,
)

_WHITESPACE = re.compile(r"\s+")

PRIVATE_PENALTY = 0.3
EXPORT_BOOST = 1.2


# ---------------------------------------------------------------------------
# Filter pipeline
# ---------------------------------------------------------------------------


class EntityFilterPipeline:
    """Relevance filter, dedup, name normalization, import classification, boost.

    Stages run in that order.  The input list is not mutated.
    """

    def run(self, entities: list[ExtractedEntity]) -> list[ExtractedEntity]:
        relevant = [e for e in (self._relevance(e) for e in entities) if e is not None]
        deduped, occurrences = self._deduplicate(relevant)
        normalized = [self._normalize(e) for e in deduped]
        classified = [self._classify(e) for e in normalized]
        return [self._boost(e, occurrences.get(_dedup_key(e), 1)) for e in classified]

    @staticmethod
    def _relevance(entity: ExtractedEntity) -> ExtractedEntity | None:
        if entity.name in PRIMITIVE_TYPES:
            return None
        if entity.kind == EntityKind.PACKAGE.value and is_asset_import(entity.source or entity.name):
            return None
        if entity.name.startswith(("_", "#")) and not entity.name.startswith("__"):
            return entity.model_copy(
                update={"confidence": clamp_unit(entity.confidence * PRIVATE_PENALTY)}
            )
        return entity

    @staticmethod
    def _deduplicate(
        entities: list[ExtractedEntity],
    ) -> tuple[list[ExtractedEntity], dict[str, int]]:
        kept: dict[str, ExtractedEntity] = {}
        occurrences: dict[str, int] = {}
        for entity in entities:
            key = _dedup_key(entity)
            occurrences[key] = occurrences.get(key, 0) + 1
            existing = kept.get(key)
            if existing is None:
                kept[key] = entity
                continue
            specifiers = list(dict.fromkeys([*existing.specifiers, *entity.specifiers]))
            kept[key] = existing.model_copy(update={
                "specifiers": specifiers,
                "is_exported": existing.is_exported or entity.is_exported,
                "confidence": max(existing.confidence, entity.confidence),
            })
        return list(kept.values()), occurrences

    @staticmethod
    def _normalize(entity: ExtractedEntity) -> ExtractedEntity:
        name = _WHITESPACE.sub(" ", entity.name.strip())
        if name == entity.name:
            return entity
        return entity.model_copy(update={"name": name})

    @staticmethod
    def _classify(entity: ExtractedEntity) -> ExtractedEntity:
        if entity.kind != EntityKind.PACKAGE.value or entity.category:
            return entity
        return entity.model_copy(
            update={"category": classify_import(entity.source or entity.name).value}
        )

    @staticmethod
    def _boost(entity: ExtractedEntity, occurrences: int) -> ExtractedEntity:
        confidence = entity.confidence
        if entity.is_exported:
            confidence *= EXPORT_BOOST
        if occurrences > 1:
            confidence *= 1 + math.log10(occurrences) * 0.1
        return entity.model_copy(update={"confidence": clamp_unit(confidence)})


def _dedup_key(entity: ExtractedEntity) -> str:
    return f"{entity.kind}:{_WHITESPACE.sub(' ', entity.name.strip())}:{entity.source or ''}"


# ---------------------------------------------------------------------------
# Static enrichment
# ---------------------------------------------------------------------------


class StaticEnrichmentFilter:
    """Attach location, docs, semantic category, relationships and confidence."""

    def __init__(self, pipeline: EntityFilterPipeline | None = None) -> None:
        self._pipeline = pipeline or EntityFilterPipeline()

    def enrich(
        self,
        entities: list[ExtractedEntity],
        source_text: str,
        file_path: str,
    ) -> list[EnrichedEntity]:
        filtered = self._pipeline.run(entities)
        lines = source_text.splitlines()
        return [self._enrich_one(e, filtered, source_text, lines, file_path) for e in filtered]

    @staticmethod
    def _enrich_one(
        entity: ExtractedEntity,
        all_entities: list[ExtractedEntity],
        source_text: str,
        lines: list[str],
        file_path: str,
    ) -> EnrichedEntity:
        doc = None
        if entity.docstring:
            doc = parse_docstring(entity.docstring)
        elif entity.line is not None and 0 < entity.line <= len(lines):
            doc = find_doc_comment(lines, entity.line)

        category = infer_semantic_category(entity, doc, source_text)
        relationships = infer_relationships(entity, all_entities, lines)
        # The declaration itself is one occurrence of the name.
        usage_count = max(count_usages(entity.name, source_text) - 1, 0) if source_text else 0
        confidence = static_confidence(entity, category, doc, relationships, usage_count)

        return EnrichedEntity(
            **entity.model_dump(include=set(ExtractedEntity.model_fields)),
            semantic_category=category.value,
            doc=doc,
            inferred_relationships=relationships,
            static_confidence=confidence,
            location=(
                SourceLocation(file=file_path, line=entity.line)
                if entity.line is not None
                else None
            ),
            usage_count=usage_count,
        )


# ---------------------------------------------------------------------------
# Source merging
# ---------------------------------------------------------------------------


def extracted_to_node(entity: ExtractedEntity, source_document: str | None = None) -> GraphNode:
    confidence = (
        entity.static_confidence
        if isinstance(entity, EnrichedEntity) and entity.static_confidence
        else entity.confidence
    )
    metadata = {
        "kind": entity.kind,
        "file_path": entity.file_path,
        "line": entity.line,
        "is_exported": entity.is_exported,
        "origin": "syntax",
    }
    if isinstance(entity, EnrichedEntity):
        metadata["semantic_category"] = entity.semantic_category
        if entity.doc is not None and entity.doc.summary:
            metadata["summary"] = entity.doc.summary
    return GraphNode(
        id=entity_node_id(entity.name),
        label=entity.name,
        type=NodeType.ENTITY,
        confidence=confidence,
        metadata=metadata,
        source_documents=[source_document or entity.file_path],
    )


def discovered_to_node(entity: DiscoveredEntity, source_document: str | None = None) -> GraphNode:
    return GraphNode(
        id=entity_node_id(entity.name),
        label=entity.name,
        type=NodeType.ENTITY,
        confidence=entity.confidence,
        metadata={
            "entity_type": entity.type.value,
            "structured_mapping": entity.structured_mapping,
            "properties": entity.properties,
            "origin": "discovery",
        },
        source_documents=[source_document] if source_document else [],
    )


def merge_sources(
    extracted: list[ExtractedEntity],
    discovered: list[DiscoveredEntity],
    source_document: str | None = None,
) -> list[GraphNode]:
    """Fold both entity sources into one node per normalized name.

    The result is sorted by node id and does not depend on input order.
    """
    groups: dict[str, list[GraphNode]] = {}
    for entity in extracted:
        node = extracted_to_node(entity, source_document)
        groups.setdefault(node.id, []).append(node)
    for entity in discovered:
        node = discovered_to_node(entity, source_document)
        groups.setdefault(node.id, []).append(node)
    return [reduce(merge_entity_nodes, groups[key]) for key in sorted(groups)]
