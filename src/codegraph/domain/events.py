"""Domain events for codegraph.

All events are immutable frozen dataclasses.  Queue lifecycle events are
published by the background processor; the host bridge turns them into
``status``/``progress`` messages for the host UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from codegraph.domain.enums import HostMessageType


# ---------------------------------------------------------------------------
# Queue lifecycle events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentQueued:
    queue_id: str
    document_id: str
    file_name: str
    queued_at: datetime


@dataclass(frozen=True)
class DocumentProcessingStarted:
    queue_id: str
    document_id: str
    started_at: datetime


@dataclass(frozen=True)
class DocumentProgressed:
    """A processing step advanced the progress of a queued document."""

    queue_id: str
    progress: int
    current_step: str


@dataclass(frozen=True)
class DocumentCompleted:
    queue_id: str
    document_id: str
    chunks: int
    entities: int
    relationships: int
    duration_ms: int
    completed_at: datetime


@dataclass(frozen=True)
class DocumentFailed:
    queue_id: str
    document_id: str
    error: str
    failed_at: datetime


# ---------------------------------------------------------------------------
# Source indexing events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceFileIndexed:
    file_path: str
    node_id: str
    entity_count: int
    edge_count: int
    indexed_at: datetime


@dataclass(frozen=True)
class SourceFileSkipped:
    """The extraction engine could not produce entities for a file."""

    file_path: str
    reason: str


# ---------------------------------------------------------------------------
# Host UI messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostMessage:
    """A one-way message to the host UI."""

    type: HostMessageType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}
