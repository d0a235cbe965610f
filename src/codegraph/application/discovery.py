"""Entity discovery through an external text-completion provider.

The provider receives a fixed extraction prompt and returns free text
that should contain a JSON object.  Parsing is defensive: fenced code
blocks, surrounding prose and trailing commentary are all tolerated.
``discover`` never raises; every failure is turned into an empty result
whose ``summary`` starts with ``"Error:"``.
"""

from __future__ import annotations

import json
import math
import re
import time
from typing import Any

from codegraph.application.cancellation import CancellationToken, is_cancelled
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import DiscoveryError
from codegraph.domain.entities import (
    DiscoveredEntity,
    DiscoveredRelationship,
    DiscoveryOptions,
    DiscoveryResult,
    OtherEntityType,
    parse_entity_type,
    structured_mapping,
)
from codegraph.domain.ports import TextCompletionProvider
from codegraph.domain.rules import normalize_entity_name

logger = get_logger(__name__)

SOURCE_CONTEXT_CHARS = 200

DISCOVERY_PROMPT = """You extract a knowledge graph from technical text.

Return ONLY a JSON object with this shape:

{{
  "entities": [
    {{"name": "PaymentGateway", "type": "Service", "confidence": 0.92,
      "properties": {{"language": "python"}}}},
    {{"name": "orders", "type": "Table", "confidence": 0.8, "properties": {{}}}}
  ],
  "relationships": [
    {{"from": "PaymentGateway", "to": "orders", "type": "writes_to",
      "confidence": 0.75, "context": "the gateway persists each order"}}
  ]
}}

Rules:
1. Prefer these types: Service, API, Component, Database, Table, Procedure,
   Function, Class, Module, Documentation, Issue, Person, Developer, Concept.
   Use a new type name only when none of them fits.
2. "confidence" is a number between 0 and 1.
3. Every relationship must connect two entities listed in "entities".
4. Use the names exactly as they appear in the text.
5. Do not add commentary outside the JSON object.

Text:
{content}
"""


def build_prompt(content: str) -> str:
    return DISCOVERY_PROMPT.format(content=content)


# ---------------------------------------------------------------------------
# Defensive JSON parsing
# ---------------------------------------------------------------------------

_FENCE_JSON = re.compile(r"```\s*json\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCE_ANY = re.compile(r"```[\w-]*\s*\n?(.*?)```", re.DOTALL)


def first_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honoring JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def json_candidates(text: str) -> list[str]:
    """Candidate JSON strings, most specific first."""
    candidates: list[str] = []
    candidates.extend(m.strip() for m in _FENCE_JSON.findall(text))
    candidates.extend(m.strip() for m in _FENCE_ANY.findall(text))
    balanced = first_balanced_object(text)
    if balanced:
        candidates.append(balanced)
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first:last + 1])
    candidates.append(text.strip())
    # Preserve order, drop duplicates and blanks
    return [c for c in dict.fromkeys(candidates) if c]


def parse_response(text: str) -> dict[str, Any] | None:
    """Parse the first candidate that decodes to a JSON object."""
    for candidate in json_candidates(text):
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class EntityDiscoveryService:
    """Discover entities and relationships in free text."""

    def __init__(
        self,
        provider: TextCompletionProvider | None = None,
        default_options: DiscoveryOptions | None = None,
    ) -> None:
        self._provider = provider
        self._default_options = default_options or DiscoveryOptions()

    @property
    def configured(self) -> bool:
        return self._provider is not None

    def discover(
        self,
        content: str,
        options: DiscoveryOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> DiscoveryResult:
        opts = options or self._default_options
        start = time.monotonic()
        log = logger.bind(content_length=len(content))

        if self._provider is None:
            return DiscoveryResult(summary="No LLM provider configured")
        if is_cancelled(cancel):
            return DiscoveryResult(summary="Error: cancelled")

        log.debug("discovery.request.start")
        try:
            data = self._request(content)
        except DiscoveryError as e:
            stage = e.details.pop("stage", "request")
            log.warning(f"discovery.{stage}.failed", error=e.message, **e.details)
            return DiscoveryResult(summary=f"Error: {e.message}")

        entities = self._map_entities(data.get("entities"), content, opts)
        relationships = (
            self._map_relationships(data.get("relationships"), entities, opts)
            if opts.include_relationships
            else []
        )
        elapsed = int((time.monotonic() - start) * 1000)
        log.debug(
            "discovery.request.complete",
            entities=len(entities),
            relationships=len(relationships),
        )
        return DiscoveryResult(
            entities=entities,
            relationships=relationships,
            summary=(
                f"Discovered {len(entities)} entities and "
                f"{len(relationships)} relationships in {elapsed}ms"
            ),
            processing_time_ms=elapsed,
        )

    def _request(self, content: str) -> dict[str, Any]:
        """Ask the provider and decode its answer.

        Raises:
            DiscoveryError: If the provider fails or answers without a JSON object.
        """
        try:
            response = self._provider.generate(build_prompt(content))
        except Exception as e:
            raise DiscoveryError(str(e), {"stage": "request"}) from e

        data = parse_response(response or "")
        if data is None:
            raise DiscoveryError(
                "no JSON object found in provider response",
                {"stage": "parse", "response_preview": (response or "")[:120]},
            )
        return data

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_entities(
        raw: Any,
        content: str,
        opts: DiscoveryOptions,
    ) -> list[DiscoveredEntity]:
        if not isinstance(raw, list):
            return []
        entities: list[DiscoveredEntity] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            confidence = _as_float(item.get("confidence"))
            if confidence is None or confidence < opts.confidence_threshold:
                continue
            entity_type = parse_entity_type(str(item.get("type") or ""))
            if isinstance(entity_type, OtherEntityType) and not opts.allow_new_types:
                continue
            properties = item.get("properties")
            entities.append(DiscoveredEntity(
                name=name.strip(),
                type=entity_type,
                confidence=confidence,
                properties=properties if isinstance(properties, dict) else {},
                source_context=content[:SOURCE_CONTEXT_CHARS],
                structured_mapping=structured_mapping(entity_type),
            ))
        return entities[:max(opts.max_entities, 0)]

    @staticmethod
    def _map_relationships(
        raw: Any,
        entities: list[DiscoveredEntity],
        opts: DiscoveryOptions,
    ) -> list[DiscoveredRelationship]:
        if not isinstance(raw, list):
            return []
        known = {normalize_entity_name(e.name) for e in entities}
        relationships: list[DiscoveredRelationship] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            source = item.get("from", item.get("source"))
            target = item.get("to", item.get("target"))
            if not isinstance(source, str) or not isinstance(target, str):
                continue
            if normalize_entity_name(source) not in known or normalize_entity_name(target) not in known:
                continue
            confidence = _as_float(item.get("confidence"))
            if confidence is None or confidence < opts.confidence_threshold:
                continue
            relationships.append(DiscoveredRelationship(
                source=source.strip(),
                target=target.strip(),
                type=str(item.get("type") or "related_to"),
                confidence=confidence,
                context=str(item.get("context") or ""),
            ))
        return relationships


def _as_float(value: Any) -> float | None:
    """Finite float from a JSON value, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None
