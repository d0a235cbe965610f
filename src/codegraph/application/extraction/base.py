"""Base extractor protocol and helpers.

Every language extractor implements this protocol so the indexing
pipeline can process any source file uniformly.  An extractor raises
``ExtractionError`` on malformed input; the registry turns it into an
``ExtractionResult.error`` with an empty entity list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from codegraph.domain.entities import EntityRelationship, ExtractedEntity
from codegraph.infrastructure.parsing.hashing import content_address


@dataclass
class ExtractionResult:
    """Entities found in one file, or the reason none were."""

    file_path: str
    language: str | None
    entities: list[ExtractedEntity] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def by_kind(self, kind: str) -> list[ExtractedEntity]:
        return [e for e in self.entities if e.kind == kind]


class SyntaxExtractor(Protocol):
    """Protocol that every language extractor must satisfy."""

    language: str
    extensions: tuple[str, ...]

    def extract(self, content: str, file_path: str) -> ExtractionResult: ...


# ---------------------------------------------------------------------------
# Shared helpers available to all extractors
# ---------------------------------------------------------------------------


class EntityCollector:
    """Accumulates entities for one file and assigns content-addressed ids.

    The id is a hash of (file, kind, name, line, occurrence), where the
    occurrence index disambiguates identical entries on the same line.
    """

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self.entities: list[ExtractedEntity] = []
        self._seen: dict[tuple[str, str, int | None], int] = {}
        self._by_scope: dict[str, ExtractedEntity] = {}

    def add(self, kind: str, name: str, line: int | None, **fields) -> ExtractedEntity:
        key = (kind, name, line)
        occurrence = self._seen.get(key, 0)
        self._seen[key] = occurrence + 1
        entity = ExtractedEntity(
            id=content_address(self.file_path, kind, name, line, occurrence, prefix="code"),
            name=name,
            kind=kind,
            file_path=self.file_path,
            line=line,
            **fields,
        )
        self.entities.append(entity)
        return entity

    def register_scope(self, scope: str, entity: ExtractedEntity) -> None:
        """Make *entity* the owner of relationships found inside *scope*."""
        self._by_scope[scope] = entity

    def relate(self, scope: str | None, rel_type: str, target: str) -> None:
        """Seed a relationship from the entity owning *scope* (deduplicated)."""
        if scope is None:
            return
        owner = self._by_scope.get(scope)
        if owner is None:
            return
        if any(r.type == rel_type and r.target == target for r in owner.relationships):
            return
        owner.relationships.append(EntityRelationship(type=rel_type, target=target))

    def mark_exported(self, names: set[str]) -> None:
        for entity in self.entities:
            if entity.name in names and entity.kind not in ("call", "package", "component"):
                entity.is_exported = True
