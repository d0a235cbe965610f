"""Dependency container.

One :class:`Container` is built at process start and handed to every
entry point (CLI, REST API, host bridge).  Nothing in the package keeps
module-level state; tests build their own container.
"""

from __future__ import annotations

from dataclasses import dataclass

from codegraph.application.discovery import EntityDiscoveryService
from codegraph.application.enrichment.filter import StaticEnrichmentFilter
from codegraph.application.extraction.registry import ExtractorRegistry, create_default_registry
from codegraph.application.ingestion.processor import BackgroundProcessor
from codegraph.application.ingestion.queue import DocumentProcessingQueue
from codegraph.application.queries.retrieve_hybrid import HybridRetriever
from codegraph.config.logging import get_logger
from codegraph.config.settings import Settings, get_settings
from codegraph.core.exceptions import ConfigurationError
from codegraph.domain.entities import DiscoveryOptions
from codegraph.domain.ports import TextCompletionProvider
from codegraph.infrastructure.corpus.filesystem import FilesystemCorpusStore
from codegraph.infrastructure.events.bus import InMemoryEventBus
from codegraph.infrastructure.graph.networkx_store import NetworkXGraphStore
from codegraph.infrastructure.persistence.filesystem import FilesystemRowStore

logger = get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    graph_store: NetworkXGraphStore
    corpus_store: FilesystemCorpusStore
    registry: ExtractorRegistry
    enrichment: StaticEnrichmentFilter
    discovery: EntityDiscoveryService
    event_bus: InMemoryEventBus
    queue: DocumentProcessingQueue
    processor: BackgroundProcessor
    retriever: HybridRetriever

    @property
    def workspace_label(self) -> str:
        return self.settings.workspace_name

    def shutdown(self) -> None:
        if self.processor.is_running:
            self.processor.stop(timeout=5.0)


def create_container(
    settings: Settings | None = None,
    *,
    provider: TextCompletionProvider | None = None,
    persist: bool = True,
) -> Container:
    """Wire every component from *settings*.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        provider: Text-completion provider for entity discovery.  When
            omitted, an OpenAI provider is created if an API key is set.
        persist: Back the graph store with the filesystem row store under
            ``settings.index_path`` and load what is already there.

    Raises:
        ConfigurationError: If a numeric setting is out of range.
    """
    settings = settings or get_settings()
    _check_settings(settings)

    row_store = FilesystemRowStore(settings.index_path) if persist else None
    graph_store = NetworkXGraphStore(
        row_store=row_store,
        max_subgraph_nodes=settings.subgraph_max_nodes,
    )
    if row_store is not None:
        graph_store.load_from_row_store()

    if provider is None and settings.openai_api_key:
        from codegraph.infrastructure.llm.openai_provider import OpenAITextCompletionProvider

        provider = OpenAITextCompletionProvider(
            model=settings.openai_chat_model,
            api_key=settings.openai_api_key,
            min_interval_seconds=settings.llm_min_interval_seconds,
        )

    discovery = EntityDiscoveryService(
        provider=provider,
        default_options=DiscoveryOptions(
            confidence_threshold=settings.discovery_confidence_threshold,
            max_entities=settings.discovery_max_entities,
            include_relationships=settings.discovery_include_relationships,
            allow_new_types=settings.discovery_allow_new_types,
        ),
    )

    event_bus = InMemoryEventBus()
    queue = DocumentProcessingQueue(event_bus=event_bus)
    processor = BackgroundProcessor(
        queue,
        discovery,
        graph_store,
        event_bus=event_bus,
        chunk_size=settings.chunk_size,
        interval_seconds=settings.processor_interval_seconds,
        workspace_label=settings.workspace_name,
    )
    corpus_store = FilesystemCorpusStore(settings.index_path)

    logger.info(
        "container.created",
        index_dir=settings.index_dir,
        nodes=graph_store.node_count(),
        discovery=discovery.configured,
    )
    return Container(
        settings=settings,
        graph_store=graph_store,
        corpus_store=corpus_store,
        registry=create_default_registry(),
        enrichment=StaticEnrichmentFilter(),
        discovery=discovery,
        event_bus=event_bus,
        queue=queue,
        processor=processor,
        retriever=HybridRetriever(
            graph_store,
            corpus_store,
            max_workers=settings.retrieval_max_workers,
        ),
    )


def _check_settings(settings: Settings) -> None:
    positive = {
        "chunk_size": settings.chunk_size,
        "subgraph_max_nodes": settings.subgraph_max_nodes,
        "retrieval_max_workers": settings.retrieval_max_workers,
        "discovery_max_entities": settings.discovery_max_entities,
    }
    for name, value in positive.items():
        if value < 1:
            raise ConfigurationError(f"{name} must be at least 1, got {value}", {"setting": name})
    if not 0.0 <= settings.discovery_confidence_threshold <= 1.0:
        raise ConfigurationError(
            "discovery_confidence_threshold must be within [0, 1]",
            {"setting": "discovery_confidence_threshold"},
        )
