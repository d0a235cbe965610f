"""codegraph REST API (FastAPI server).

Endpoints:
  POST   /v1/retrieve               hybrid retrieval (primary endpoint)
  POST   /v1/search                 search the active graph
  POST   /v1/filter                 filter the active graph
  GET    /v1/graph/subgraph         bounded BFS neighborhood
  POST   /v1/graph/compact          purge logically deleted nodes
  POST   /v1/queue                  enqueue a document for discovery
  GET    /v1/queue                  queue items and status counts
  GET    /v1/queue/{queue_id}       one queue item
  POST   /v1/queue/{queue_id}/retry retry a failed item
  DELETE /v1/queue/completed        drop completed and failed items
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Callable

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from codegraph import __version__
from codegraph.application.queries.filter_graph import FilterGraphInput, filter_graph
from codegraph.application.queries.retrieve_hybrid import DEFAULT_SOURCES, RetrieveInput
from codegraph.application.queries.search_graph import SearchGraphInput, search_graph
from codegraph.config.logging import get_logger
from codegraph.container import Container, create_container
from codegraph.core.exceptions import (
    InvalidQueueTransitionError,
    QueueItemNotFoundError,
    ValidationError,
)
from codegraph.domain.entities import GraphEdge, GraphNode, QueuedDocument, RetrievedItem
from codegraph.domain.enums import RetrievalSource, RetrievalStrategy, SearchMode

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        start_time = time.time()
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params),
        )
        response = await call_next(request)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

app = FastAPI(
    title="codegraph API",
    version=__version__,
    description="Knowledge graph extraction and hybrid retrieval over code and documents.",
)
app.add_middleware(LoggingMiddleware)


def _get_container() -> Container:
    """Dependency injection: resolve the application container.

    Override ``app.dependency_overrides[_get_container]`` in tests.
    """
    if not hasattr(app.state, "container"):
        raise HTTPException(503, "Container not initialized. Start the server with `codegraph serve`.")
    return app.state.container


ContainerDep = Annotated[Container, Depends(_get_container)]


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class RetrieveRequest(BaseModel):
    query: str
    strategy: RetrievalStrategy = RetrievalStrategy.HYBRID
    mode: SearchMode | None = None
    pattern: str | None = None
    max_results: int = 10
    min_score: float = 0.5
    sources: list[RetrievalSource] = Field(default_factory=lambda: list(DEFAULT_SOURCES))
    weights: dict[RetrievalSource, float] | None = None
    category: str | None = None
    file_types: list[str] | None = None
    include_related: bool = False
    related_depth: int = 1
    rerank: bool = True


class SubgraphResponse(BaseModel):
    nodes: list[GraphNode]
    edges: list[GraphEdge]


class RetrieveResponse(BaseModel):
    results: list[RetrievedItem]
    subgraph: SubgraphResponse | None = None
    metadata: dict[str, Any]


class FilterRequest(BaseModel):
    node_types: list[str] | None = None
    edge_types: list[str] | None = None
    min_confidence: float | None = None
    date_start: datetime | None = None
    date_end: datetime | None = None
    search_query: str | None = None
    min_connections: int | None = None

    def to_input(self) -> FilterGraphInput:
        date_range = None
        if self.date_start is not None or self.date_end is not None:
            date_range = (
                self.date_start or datetime.min.replace(tzinfo=timezone.utc),
                self.date_end or datetime.max.replace(tzinfo=timezone.utc),
            )
        return FilterGraphInput(
            node_types=self.node_types,
            edge_types=self.edge_types,
            min_confidence=self.min_confidence,
            date_range=date_range,
            search_query=self.search_query,
            min_connections=self.min_connections,
        )


class SearchRequest(BaseModel):
    query: str
    mode: SearchMode = SearchMode.FUZZY
    search_labels: bool = True
    search_ids: bool = True
    search_metadata: bool = True
    search_edges: bool = False
    min_score: float = 0.3
    max_results: int = 50
    case_sensitive: bool = False
    include_related: bool = False
    related_depth: int = 1
    filters: FilterRequest | None = None


class SearchMatchResponse(BaseModel):
    item_id: str
    item_type: str
    score: float
    match_field: str
    snippet: str


class SearchResponse(BaseModel):
    matches: list[SearchMatchResponse]
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    metadata: dict[str, Any]


class FilterResponse(BaseModel):
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    metadata: dict[str, Any]


class CompactResponse(BaseModel):
    nodes_removed: int
    edges_removed: int


class EnqueueRequest(BaseModel):
    content: str = Field(..., min_length=1)
    title: str | None = None
    file_name: str = "document.txt"
    document_id: str | None = None


class EnqueueResponse(BaseModel):
    queue_id: str
    document_id: str


class QueueResponse(BaseModel):
    items: list[QueuedDocument]
    status: dict[str, Any]


class ClearResponse(BaseModel):
    removed: int


# ---------------------------------------------------------------------------
# Retrieval endpoints
# ---------------------------------------------------------------------------


@app.post("/v1/retrieve", response_model=RetrieveResponse)
def retrieve(body: RetrieveRequest, container: ContainerDep):
    """Hybrid retrieval over the graph and the corpus indexes."""
    try:
        result = container.retriever.retrieve(RetrieveInput(**body.model_dump()))
    except ValidationError as e:
        raise HTTPException(400, e.message)

    subgraph = None
    if result.subgraph is not None:
        subgraph = SubgraphResponse(nodes=result.subgraph.nodes, edges=result.subgraph.edges)
    return RetrieveResponse(results=result.results, subgraph=subgraph, metadata=result.metadata)


@app.post("/v1/search", response_model=SearchResponse)
def search(body: SearchRequest, container: ContainerDep):
    """Search node labels, ids, metadata and edge labels of the active graph."""
    payload = body.model_dump(exclude={"filters"})
    filters = body.filters.to_input() if body.filters else None
    try:
        result = search_graph(
            container.graph_store.snapshot(),
            SearchGraphInput(**payload, filters=filters),
        )
    except ValidationError as e:
        raise HTTPException(400, e.message)

    return SearchResponse(
        matches=[
            SearchMatchResponse(
                item_id=m.item_id, item_type=m.item_type, score=round(m.score, 4),
                match_field=m.match_field, snippet=m.snippet,
            )
            for m in result.matches
        ],
        nodes=result.nodes,
        edges=result.edges,
        metadata=result.metadata,
    )


@app.post("/v1/filter", response_model=FilterResponse)
def filter_(body: FilterRequest, container: ContainerDep):
    """AND-composed node and edge filters over the active graph."""
    try:
        result = filter_graph(container.graph_store.snapshot(), body.to_input())
    except ValidationError as e:
        raise HTTPException(400, e.message)
    return FilterResponse(nodes=result.nodes, edges=result.edges, metadata=result.metadata)


# ---------------------------------------------------------------------------
# Graph endpoints
# ---------------------------------------------------------------------------


@app.get("/v1/graph/subgraph", response_model=SubgraphResponse)
def subgraph(
    container: ContainerDep,
    seed: Annotated[list[str] | None, Query()] = None,
    depth: int = 1,
    max_nodes: int | None = None,
):
    """Neighborhood of the seed nodes; without seeds, the capped whole graph."""
    try:
        snapshot = container.graph_store.get_subgraph(seed, depth, max_nodes)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return SubgraphResponse(nodes=snapshot.nodes, edges=snapshot.edges)


@app.post("/v1/graph/compact", response_model=CompactResponse)
def compact(container: ContainerDep):
    nodes_removed, edges_removed = container.graph_store.compact()
    return CompactResponse(nodes_removed=nodes_removed, edges_removed=edges_removed)


# ---------------------------------------------------------------------------
# Queue endpoints
# ---------------------------------------------------------------------------


@app.post("/v1/queue", response_model=EnqueueResponse, status_code=202)
def enqueue(body: EnqueueRequest, container: ContainerDep):
    """Queue a document for chunked entity discovery."""
    document_id = body.document_id or f"doc-{uuid.uuid4().hex[:12]}"
    queue_id = container.queue.enqueue(
        document_id=document_id,
        title=body.title or body.file_name,
        file_name=body.file_name,
        content=body.content,
    )
    return EnqueueResponse(queue_id=queue_id, document_id=document_id)


@app.get("/v1/queue", response_model=QueueResponse)
def list_queue(container: ContainerDep):
    return QueueResponse(
        items=container.queue.get_all_queued(),
        status=container.queue.get_queue_status(),
    )


@app.delete("/v1/queue/completed", response_model=ClearResponse)
def clear_completed(container: ContainerDep):
    return ClearResponse(removed=container.queue.clear_completed())


@app.get("/v1/queue/{queue_id}", response_model=QueuedDocument)
def get_queue_item(queue_id: str, container: ContainerDep):
    item = container.queue.get_by_id(queue_id)
    if item is None:
        raise HTTPException(404, f"Queue item '{queue_id}' not found")
    return item


@app.post("/v1/queue/{queue_id}/retry", response_model=QueuedDocument)
def retry(queue_id: str, container: ContainerDep):
    try:
        return container.queue.retry(queue_id)
    except QueueItemNotFoundError as e:
        raise HTTPException(404, e.message)
    except InvalidQueueTransitionError as e:
        raise HTTPException(409, e.message)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def create_app(container: Container | None = None, *, start_processor: bool = True) -> FastAPI:
    """Attach a container (created from settings if omitted) to the app."""
    container = container or create_container()
    if start_processor:
        container.processor.start()
    app.state.container = container
    return app
