"""Background processor that drains the ingestion queue.

Pipeline per document:
1. Mark the item ``processing`` (at most one item at a time)
2. Chunk the content into fixed character windows
3. For each chunk, run entity discovery and merge the result into the
   graph store through the dedup policy
4. Store a chunk node linked to its document and to the entities found
5. Write the aggregate counts onto the document node and the queue item

A chunk whose discovery fails is logged and skipped.  Any other error
escaping the pipeline marks the item ``failed``.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Callable

from codegraph.application.discovery import EntityDiscoveryService
from codegraph.application.ingestion.chunking import chunk_node_id, chunk_text
from codegraph.application.ingestion.queue import DocumentProcessingQueue
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import IngestionError
from codegraph.domain.entities import ChunkRecord, GraphEdge, GraphNode, QueuedDocument
from codegraph.domain.enums import EdgeType, NodeType, QueueStatus
from codegraph.domain.events import (
    DocumentCompleted,
    DocumentFailed,
    DocumentProcessingStarted,
    DocumentProgressed,
)
from codegraph.domain.ports import EventBus, GraphStore
from codegraph.domain.rules import normalize_entity_name

logger = get_logger(__name__)

CompletionCallback = Callable[[QueuedDocument], None]


def document_node_id(document_id: str) -> str:
    return f"document:{document_id}"


class BackgroundProcessor:
    """Single-concurrency consumer of a :class:`DocumentProcessingQueue`."""

    def __init__(
        self,
        queue: DocumentProcessingQueue,
        discovery: EntityDiscoveryService,
        graph_store: GraphStore,
        *,
        event_bus: EventBus | None = None,
        chunk_size: int = 1000,
        interval_seconds: float = 5.0,
        workspace_label: str = "workspace",
    ) -> None:
        self._queue = queue
        self._discovery = discovery
        self._store = graph_store
        self._event_bus = event_bus
        self._chunk_size = chunk_size
        self._interval = interval_seconds
        self._workspace_label = workspace_label

        self._processing = threading.Lock()
        self._callbacks: list[CompletionCallback] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_processing(self) -> bool:
        return self._processing.locked()

    def start(self) -> None:
        """Poll the queue on a daemon thread every ``interval_seconds``."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="codegraph-ingestion", daemon=True
        )
        self._thread.start()
        logger.info("processor.started", interval_seconds=self._interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("processor.stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.process_next_document()
            self._stop_event.wait(self._interval)

    def on_document_completed(self, callback: CompletionCallback) -> None:
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_all(self) -> list[QueuedDocument]:
        """Process pending documents until the queue has none left."""
        processed: list[QueuedDocument] = []
        while True:
            item = self.process_next_document()
            if item is None:
                return processed
            processed.append(item)

    def process_next_document(self) -> QueuedDocument | None:
        """Process the oldest pending document.

        Returns the final state of the item, or None when nothing was
        processed (empty queue, or another document already in progress).
        """
        if not self._processing.acquire(blocking=False):
            return None
        try:
            item = self._queue.get_next_pending()
            if item is None:
                return None
            self._process(item)
            return self._queue.get_by_id(item.id)
        finally:
            self._processing.release()

    def _process(self, item: QueuedDocument) -> None:
        start = time.monotonic()
        log = logger.bind(queue_id=item.id, document_id=item.document_id)
        self._queue.update_status(item.id, QueueStatus.PROCESSING)
        self._publish(DocumentProcessingStarted(
            queue_id=item.id, document_id=item.document_id, started_at=datetime.now(),
        ))
        log.info("processor.document.start", file_name=item.file_name)

        try:
            counts = self._analyze(item)
        except Exception as e:
            log.error("processor.document.failed", error=str(e), exc_info=True)
            self._queue.update_status(item.id, QueueStatus.FAILED, error=str(e))
            self._publish(DocumentFailed(
                queue_id=item.id,
                document_id=item.document_id,
                error=str(e),
                failed_at=datetime.now(),
            ))
            return

        final = self._queue.update_status(item.id, QueueStatus.COMPLETED)
        duration_ms = int((time.monotonic() - start) * 1000)
        self._publish(DocumentProgressed(queue_id=item.id, progress=100, current_step="Completed"))
        self._publish(DocumentCompleted(
            queue_id=item.id,
            document_id=item.document_id,
            chunks=counts["chunks"],
            entities=counts["entities"],
            relationships=counts["relationships"],
            duration_ms=duration_ms,
            completed_at=datetime.now(),
        ))
        log.info("processor.document.complete", duration_ms=duration_ms, **counts)

        for callback in list(self._callbacks):
            try:
                callback(final)
            except Exception as e:
                log.warning("processor.callback.failed", error=str(e))

    def _analyze(self, item: QueuedDocument) -> dict[str, int]:
        self._progress(item.id, 10, "Chunking document...")
        chunks = chunk_text(item.content, item.document_id, self._chunk_size)
        doc_node = self._ensure_document_node(item)
        self._progress(item.id, 15, f"Found {len(chunks)} chunks", total_chunks=len(chunks))

        entity_ids: set[str] = set()
        relationship_ids: set[str] = set()
        processed = 0
        total = len(chunks)
        for i, chunk in enumerate(chunks):
            self._progress(
                item.id,
                15 + int(i / total * 70),
                f"Analyzing chunk {i + 1}/{total}...",
            )
            try:
                self._analyze_chunk(chunk, doc_node, item)
            except IngestionError as e:
                logger.warning(
                    "processor.chunk.failed",
                    queue_id=item.id,
                    error=e.message,
                    **e.details,
                )
                continue
            entity_ids.update(chunk.entities)
            relationship_ids.update(chunk.relationships)
            processed += 1
            self._queue.update_progress(
                item.id,
                processed_chunks=processed,
                extracted_entities=len(entity_ids),
                extracted_relationships=len(relationship_ids),
            )

        self._progress(item.id, 90, "Finalizing...")
        counts = {
            "chunks": total,
            "entities": len(entity_ids),
            "relationships": len(relationship_ids),
        }
        doc_node.metadata.update({
            "total_chunks": total,
            "processed_chunks": processed,
            "entity_count": len(entity_ids),
            "relationship_count": len(relationship_ids),
            "processed_at": datetime.now().isoformat(),
        })
        self._store.upsert_node(doc_node)
        return counts

    def _analyze_chunk(self, chunk: ChunkRecord, doc_node: GraphNode, item: QueuedDocument) -> None:
        result = self._discovery.discover(chunk.content)
        if result.summary.startswith("Error:"):
            raise IngestionError(result.summary, {"chunk_index": chunk.chunk_index})

        names: dict[str, str] = {}
        for entity in result.entities:
            node = self._store.merge_entity(
                entity.name,
                entity.type.value,
                entity.confidence,
                source_document=item.document_id,
                metadata={
                    "structured_mapping": entity.structured_mapping,
                    "properties": entity.properties,
                },
            )
            names[normalize_entity_name(entity.name)] = node.id
            chunk.entities.append(node.id)

        for rel in result.relationships:
            source = names.get(normalize_entity_name(rel.source))
            target = names.get(normalize_entity_name(rel.target))
            if source is None or target is None or source == target:
                continue
            edge = self._store.upsert_edge(GraphEdge(
                source=source,
                target=target,
                type=rel.type,
                weight=rel.confidence,
                confidence=rel.confidence,
                metadata={"context": rel.context, "document_id": item.document_id},
            ))
            chunk.relationships.append(edge.id)

        chunk_id = chunk_node_id(item.document_id, chunk.chunk_index)
        self._store.upsert_node(GraphNode(
            id=chunk_id,
            label=f"{item.title} #{chunk.chunk_index + 1}",
            type=NodeType.CHUNK,
            metadata={
                "document_id": item.document_id,
                "content": chunk.content,
                "start_position": chunk.start_position,
                "end_position": chunk.end_position,
                "chunk_index": chunk.chunk_index,
                "entities": list(chunk.entities),
                "relationships": list(chunk.relationships),
            },
            source_documents=[item.document_id],
        ))
        self._store.upsert_edge(GraphEdge(source=chunk_id, target=doc_node.id, type=EdgeType.PART_OF))
        for entity_id in dict.fromkeys(chunk.entities):
            self._store.upsert_edge(GraphEdge(source=chunk_id, target=entity_id, type=EdgeType.MENTIONS))

    def _ensure_document_node(self, item: QueuedDocument) -> GraphNode:
        workspace = self._store.ensure_workspace_node(self._workspace_label)
        node_id = document_node_id(item.document_id)
        existing = self._store.get_node(node_id)
        node = existing or GraphNode(
            id=node_id,
            label=item.title,
            type=NodeType.DOCUMENT,
            source_documents=[item.document_id],
        )
        node.metadata.update({"file_name": item.file_name, "content": item.content})
        node = self._store.upsert_node(node)
        self._store.upsert_edge(GraphEdge(
            source=workspace.id, target=node.id, type=EdgeType.CONTAINS,
        ))
        return node

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _progress(self, queue_id: str, progress: int, step: str, **counts: int) -> None:
        self._queue.update_progress(queue_id, progress=progress, current_step=step, **counts)
        self._publish(DocumentProgressed(queue_id=queue_id, progress=progress, current_step=step))

    def _publish(self, event: object) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
