"""Bridge between a host UI and the core.

The host sends command intents (``search``, ``load-subgraph``,
``refresh``, ``reset``) and receives one-way :class:`HostMessage`
objects.  :meth:`HostBridge.handle` returns the replies to one intent;
queue lifecycle events are forwarded to the ``sink`` as ``status`` and
``progress`` messages as they happen.  The core never imports this
module.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from codegraph.application.commands.index_source_file import index_source_tree
from codegraph.application.queries.search_graph import SearchGraphInput, search_graph
from codegraph.config.logging import get_logger
from codegraph.container import Container
from codegraph.core.exceptions import CodeGraphError
from codegraph.domain.entities import GraphSnapshot
from codegraph.domain.enums import HostCommand, HostMessageType, NodeType, SearchMode
from codegraph.domain.events import (
    DocumentCompleted,
    DocumentFailed,
    DocumentProcessingStarted,
    DocumentProgressed,
    DocumentQueued,
    HostMessage,
)

logger = get_logger(__name__)

MessageSink = Callable[[HostMessage], None]

MAX_HOST_DEPTH = 10
DEFAULT_HOST_DEPTH = 2


class HostBridge:
    def __init__(
        self,
        container: Container,
        sink: MessageSink | None = None,
        workspace_root: Path | None = None,
    ) -> None:
        self._container = container
        self._sink = sink
        self._root = workspace_root
        if sink is not None:
            container.event_bus.subscribe_all(self._forward_event)

    def handle(self, intent: str, payload: dict[str, Any] | None = None) -> list[HostMessage]:
        """Run one command intent and return the messages for the host."""
        payload = payload or {}
        try:
            command = HostCommand(intent)
        except ValueError:
            return [_error(f"Unknown command '{intent}'")]

        log = logger.bind(intent=command.value)
        try:
            if command == HostCommand.SEARCH:
                return self._search(payload)
            if command == HostCommand.LOAD_SUBGRAPH:
                return self._load_subgraph(payload)
            if command == HostCommand.REFRESH:
                return self._refresh()
            return self._reset()
        except (CodeGraphError, ValueError) as e:
            log.warning("host.command.failed", error=str(e))
            message = e.message if isinstance(e, CodeGraphError) else str(e)
            return [_error(f"{command.value} failed: {message}")]

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def _search(self, payload: dict[str, Any]) -> list[HostMessage]:
        result = search_graph(
            self._container.graph_store.snapshot(),
            SearchGraphInput(
                query=str(payload.get("query") or ""),
                mode=SearchMode(payload.get("mode", SearchMode.FUZZY.value)),
                max_results=int(payload.get("max_results", 50)),
                include_related=bool(payload.get("include_related", False)),
            ),
        )
        return [HostMessage(
            type=HostMessageType.SEARCH_RESULTS,
            payload={
                "matches": [
                    {"id": m.item_id, "type": m.item_type, "score": m.score, "snippet": m.snippet}
                    for m in result.matches
                ],
                "nodes": [n.model_dump(mode="json") for n in result.nodes],
                "edges": [e.model_dump(mode="json") for e in result.edges],
                "metadata": result.metadata,
            },
        )]

    def _load_subgraph(self, payload: dict[str, Any]) -> list[HostMessage]:
        depth = int(payload.get("depth", DEFAULT_HOST_DEPTH))
        depth = min(MAX_HOST_DEPTH, max(0, depth))
        seeds = payload.get("seeds") or None
        if isinstance(seeds, str):
            seeds = [seeds]
        elif seeds is not None and (
            not isinstance(seeds, list) or not all(isinstance(s, str) for s in seeds)
        ):
            raise ValueError("seeds must be a list of node ids")
        snapshot = self._container.graph_store.get_subgraph(seeds, depth)
        return [_subgraph(snapshot)]

    def _refresh(self) -> list[HostMessage]:
        messages = [_status("indexing")]
        if self._root is not None:
            c = self._container
            summary = index_source_tree(
                self._root,
                registry=c.registry,
                enrichment=c.enrichment,
                graph_store=c.graph_store,
                event_bus=c.event_bus,
                workspace_label=c.workspace_label,
            )
            messages.append(_status(
                "indexed",
                files=summary.indexed,
                unchanged=summary.unchanged,
                skipped=summary.skipped,
                entities=summary.entity_count,
            ))
        messages.append(_subgraph(self._container.graph_store.get_subgraph(None, DEFAULT_HOST_DEPTH)))
        messages.append(_status("ready"))
        return messages

    def _reset(self) -> list[HostMessage]:
        store = self._container.graph_store
        for node in store.all_nodes():
            if node.type != NodeType.WORKSPACE.value:
                store.delete_node(node.id)
        nodes, edges = store.compact()
        removed = self._container.queue.clear_completed()
        logger.info("host.reset", nodes=nodes, edges=edges, queue_items=removed)
        return [_status("reset", nodes_removed=nodes, edges_removed=edges)]

    # ------------------------------------------------------------------
    # Queue events
    # ------------------------------------------------------------------

    def _forward_event(self, event: object) -> None:
        message = event_to_message(event)
        if message is not None and self._sink is not None:
            self._sink(message)


def event_to_message(event: object) -> HostMessage | None:
    """Map a queue lifecycle event onto a host message, or None."""
    if isinstance(event, DocumentProgressed):
        return HostMessage(
            type=HostMessageType.PROGRESS,
            payload={
                "queue_id": event.queue_id,
                "progress": event.progress,
                "current_step": event.current_step,
            },
        )
    if isinstance(event, DocumentQueued):
        return _status("queued", queue_id=event.queue_id, document_id=event.document_id)
    if isinstance(event, DocumentProcessingStarted):
        return _status("processing", queue_id=event.queue_id, document_id=event.document_id)
    if isinstance(event, DocumentCompleted):
        return _status(
            "completed",
            queue_id=event.queue_id,
            document_id=event.document_id,
            chunks=event.chunks,
            entities=event.entities,
            relationships=event.relationships,
        )
    if isinstance(event, DocumentFailed):
        return _status("failed", queue_id=event.queue_id, document_id=event.document_id, error=event.error)
    return None


def _status(status: str, **details: Any) -> HostMessage:
    return HostMessage(type=HostMessageType.STATUS, payload={"status": status, **details})


def _subgraph(snapshot: GraphSnapshot) -> HostMessage:
    return HostMessage(
        type=HostMessageType.SUBGRAPH,
        payload={
            "nodes": [n.model_dump(mode="json") for n in snapshot.nodes],
            "edges": [e.model_dump(mode="json") for e in snapshot.edges],
        },
    )


def _error(message: str) -> HostMessage:
    return HostMessage(type=HostMessageType.ERROR, payload={"error": message})
