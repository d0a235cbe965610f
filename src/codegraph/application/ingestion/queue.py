"""In-memory ingestion queue.

Items stay in the queue after they complete or fail until
``clear_completed`` removes them; ``retry`` is the only way back from
``failed`` to ``pending``.  Every method takes the queue lock, so callers
always observe whole items.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Any

from codegraph.config.logging import get_logger
from codegraph.core.exceptions import InvalidQueueTransitionError, QueueItemNotFoundError
from codegraph.domain.entities import QueuedDocument
from codegraph.domain.enums import QueueStatus
from codegraph.domain.events import DocumentQueued
from codegraph.domain.ports import EventBus

logger = get_logger(__name__)

_TRANSITIONS: dict[QueueStatus, set[QueueStatus]] = {
    QueueStatus.PENDING: {QueueStatus.PROCESSING},
    QueueStatus.PROCESSING: {QueueStatus.COMPLETED, QueueStatus.FAILED},
    QueueStatus.COMPLETED: set(),
    QueueStatus.FAILED: {QueueStatus.PENDING},
}


class DocumentProcessingQueue:
    """FIFO queue of documents awaiting entity discovery."""

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self._items: dict[str, QueuedDocument] = {}
        self._lock = threading.RLock()
        self._event_bus = event_bus

    def enqueue(
        self,
        document_id: str,
        title: str,
        file_name: str,
        content: str,
    ) -> str:
        """Add a document and return its queue id."""
        item = QueuedDocument(
            id=f"queue-{uuid.uuid4().hex[:12]}",
            document_id=document_id,
            title=title,
            file_name=file_name,
            content=content,
        )
        with self._lock:
            self._items[item.id] = item
        logger.info("queue.enqueued", queue_id=item.id, document_id=document_id, file_name=file_name)
        if self._event_bus is not None:
            self._event_bus.publish(DocumentQueued(
                queue_id=item.id,
                document_id=document_id,
                file_name=file_name,
                queued_at=item.created_at,
            ))
        return item.id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, queue_id: str) -> QueuedDocument | None:
        with self._lock:
            item = self._items.get(queue_id)
            return item.model_copy() if item is not None else None

    def get_all_queued(self) -> list[QueuedDocument]:
        with self._lock:
            return [item.model_copy() for item in self._items.values()]

    def get_next_pending(self) -> QueuedDocument | None:
        """Earliest-enqueued pending item, or None."""
        with self._lock:
            for item in self._items.values():
                if item.status == QueueStatus.PENDING:
                    return item.model_copy()
        return None

    def get_queue_status(self) -> dict[str, Any]:
        with self._lock:
            counts = {status.value: 0 for status in QueueStatus}
            for item in self._items.values():
                counts[item.status.value] += 1
        return {
            "total": sum(counts.values()),
            **counts,
            "is_processing": counts[QueueStatus.PROCESSING.value] > 0,
        }

    def processing_count(self) -> int:
        with self._lock:
            return sum(1 for i in self._items.values() if i.status == QueueStatus.PROCESSING)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_status(
        self,
        queue_id: str,
        status: QueueStatus,
        error: str | None = None,
    ) -> QueuedDocument:
        """Move an item to *status*, stamping start/completion times."""
        with self._lock:
            item = self._require(queue_id)
            if status not in _TRANSITIONS[item.status]:
                raise InvalidQueueTransitionError(
                    f"Cannot move {queue_id} from {item.status.value} to {status.value}",
                    details={"queue_id": queue_id, "from": item.status.value, "to": status.value},
                )
            item.status = status
            now = datetime.now()
            if status == QueueStatus.PROCESSING:
                item.started_at = now
                item.error = None
            elif status == QueueStatus.COMPLETED:
                item.completed_at = now
                item.progress = 100
                item.current_step = "Completed"
            elif status == QueueStatus.FAILED:
                item.completed_at = now
                item.error = error
                item.current_step = "Failed"
            return item.model_copy()

    def update_progress(self, queue_id: str, **fields: Any) -> QueuedDocument:
        """Partially update counters, progress or the current step."""
        allowed = {
            "progress", "current_step", "total_chunks", "processed_chunks",
            "extracted_entities", "extracted_relationships",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")
        with self._lock:
            item = self._require(queue_id)
            for name, value in fields.items():
                setattr(item, name, value)
            return item.model_copy()

    def retry(self, queue_id: str) -> QueuedDocument:
        """Return a failed item to ``pending`` with progress and error reset."""
        with self._lock:
            item = self._require(queue_id)
            if item.status != QueueStatus.FAILED:
                raise InvalidQueueTransitionError(
                    f"Only failed documents can be retried ({queue_id} is {item.status.value})",
                    details={"queue_id": queue_id, "status": item.status.value},
                )
            item.status = QueueStatus.PENDING
            item.progress = 0
            item.current_step = "Queued for processing"
            item.error = None
            item.total_chunks = 0
            item.processed_chunks = 0
            item.extracted_entities = 0
            item.extracted_relationships = 0
            item.started_at = None
            item.completed_at = None
            logger.info("queue.retry", queue_id=queue_id)
            return item.model_copy()

    def clear_completed(self) -> int:
        """Drop completed and failed items; return how many were removed."""
        with self._lock:
            done = [
                qid for qid, item in self._items.items()
                if item.status in (QueueStatus.COMPLETED, QueueStatus.FAILED)
            ]
            for qid in done:
                del self._items[qid]
        if done:
            logger.info("queue.cleared", removed=len(done))
        return len(done)

    def _require(self, queue_id: str) -> QueuedDocument:
        item = self._items.get(queue_id)
        if item is None:
            raise QueueItemNotFoundError(
                f"Queue item not found: {queue_id}", details={"queue_id": queue_id}
            )
        return item
