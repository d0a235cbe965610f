"""Static confidence for enriched entities."""

from __future__ import annotations

from codegraph.domain.entities import DocComment, ExtractedEntity, InferredRelationship
from codegraph.domain.enums import SemanticCategory
from codegraph.domain.rules import weighted_confidence

BASE_CONFIDENCE = 0.5
DOC_BONUS = 0.15
TYPED_BONUS = 0.10
RELATIONSHIP_BONUS, RELATIONSHIP_CAP = 0.05, 0.15
USAGE_BONUS, USAGE_CAP = 0.03, 0.10
EXPORT_BONUS = 0.05

KNOWN_CATEGORY_FACTOR = 0.9
UNKNOWN_CATEGORY_FACTOR = 0.5


def static_confidence(
    entity: ExtractedEntity,
    category: SemanticCategory,
    doc: DocComment | None,
    relationships: list[InferredRelationship],
    usage_count: int = 0,
) -> float:
    """Base score plus evidence bonuses, scaled by how well the role is known."""
    score = BASE_CONFIDENCE
    if doc is not None and len(doc.description) > 10:
        score += DOC_BONUS
    if _has_types(entity):
        score += TYPED_BONUS
    score += min(len(relationships) * RELATIONSHIP_BONUS, RELATIONSHIP_CAP)
    score += min(usage_count * USAGE_BONUS, USAGE_CAP)
    if entity.is_exported:
        score += EXPORT_BONUS

    factor = UNKNOWN_CATEGORY_FACTOR if category == SemanticCategory.UNKNOWN else KNOWN_CATEGORY_FACTOR
    return weighted_confidence(score, factor)


def _has_types(entity: ExtractedEntity) -> bool:
    if entity.return_type:
        return True
    return any(p.type for p in entity.parameters or [])
