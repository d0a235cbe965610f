"""codegraph command line interface.

Usage::

    codegraph index src/
    codegraph corpus build docs/ --kind docs
    codegraph query "authentication service"
    codegraph serve --port 8000
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from codegraph import __version__
from codegraph.config.logging import configure_logging
from codegraph.config.settings import Settings, get_settings
from codegraph.container import Container, create_container
from codegraph.core.exceptions import ConfigurationError, ValidationError
from codegraph.domain.enums import RetrievalSource, RetrievalStrategy, SearchMode
from codegraph.infrastructure.corpus.filesystem import CORPUS_KINDS


class _State:
    """Lazily builds the container so ``--help`` never touches the index."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._container: Container | None = None

    @property
    def container(self) -> Container:
        if self._container is None:
            try:
                self._container = create_container(self.settings)
            except ConfigurationError as e:
                raise click.ClickException(f"invalid configuration: {e.message}")
        return self._container


pass_state = click.make_pass_decorator(_State)


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(__version__, prog_name="codegraph")
@click.option("--index-dir", type=click.Path(file_okay=False), default=None, help="Index directory")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
@click.pass_context
def cli(ctx: click.Context, index_dir: str | None, log_level: str | None) -> None:
    """Knowledge graph over a codebase and its documents."""
    settings = get_settings()
    updates = {}
    if index_dir:
        updates["index_dir"] = index_dir
    if log_level:
        updates["log_level"] = log_level
    if updates:
        settings = settings.model_copy(update=updates)
    configure_logging(settings.log_level, json=settings.log_json)
    ctx.obj = _State(settings)


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


@cli.command("index")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--discover/--no-discover", default=False, help="Also run entity discovery per file")
@click.option("--force", is_flag=True, help="Re-analyze files whose content is unchanged")
@pass_state
def index_cmd(state: _State, path: Path, discover: bool, force: bool) -> None:
    """Extract code entities under PATH into the graph."""
    from codegraph.application.commands.index_source_file import index_source_tree

    c = state.container
    summary = index_source_tree(
        path,
        registry=c.registry,
        enrichment=c.enrichment,
        graph_store=c.graph_store,
        event_bus=c.event_bus,
        discovery=c.discovery if discover else None,
        workspace_label=c.workspace_label,
        force=force,
    )
    click.echo(
        f"Indexed {summary.indexed} file(s), skipped {summary.skipped}: "
        f"{summary.entity_count} entities, {summary.edge_count} edges"
    )
    if summary.unchanged:
        click.echo(f"  unchanged: {summary.unchanged} file(s)")
    for result in summary.results:
        if not result.success:
            click.echo(f"  skipped {result.file_path}: {result.skipped_reason}")


@cli.command("ingest")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_state
def ingest_cmd(state: _State, files: tuple[Path, ...]) -> None:
    """Queue FILES for entity discovery and process them."""
    c = state.container
    if not c.discovery.configured:
        click.echo("Warning: no text-completion provider configured (set CODEGRAPH_OPENAI_API_KEY)", err=True)

    for path in files:
        queue_id = c.queue.enqueue(
            document_id=path.stem,
            title=path.stem,
            file_name=path.name,
            content=path.read_text(encoding="utf-8"),
        )
        click.echo(f"Queued {path.name} as {queue_id}")

    for item in c.processor.process_all():
        line = f"{item.file_name}: {item.status.value}"
        if item.error:
            line += f" ({item.error})"
        else:
            line += (
                f" - {item.total_chunks} chunks, {item.extracted_entities} entities, "
                f"{item.extracted_relationships} relationships"
            )
        click.echo(line)


@cli.group("corpus")
def corpus() -> None:
    """Manage the documentation, rule and task indexes."""


@corpus.command("build")
@click.argument("docs_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--kind", "-k", type=click.Choice(CORPUS_KINDS), default="docs", help="Corpus to build")
@pass_state
def corpus_build(state: _State, docs_dir: Path, kind: str) -> None:
    """Index the markdown files in DOCS_DIR as a corpus."""
    from codegraph.application.commands.build_corpus_index import build_corpus_index

    result = build_corpus_index(docs_dir, kind, corpus_store=state.container.corpus_store)
    click.echo(f"Wrote {result.entries} {kind} entries to {result.path}")
    for skipped in result.skipped:
        click.echo(f"  skipped {skipped}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@cli.command("query")
@click.argument("text")
@click.option("--strategy", "-s", type=click.Choice([s.value for s in RetrievalStrategy]), default="hybrid")
@click.option("--mode", "-m", type=click.Choice([m.value for m in SearchMode]), default=None)
@click.option("--source", "sources", multiple=True, type=click.Choice([s.value for s in RetrievalSource]))
@click.option("--limit", "-l", default=10, help="Max results")
@click.option("--min-score", default=0.5, help="Minimum score")
@click.option("--related/--no-related", default=False, help="Include the related subgraph")
@pass_state
def query_cmd(
    state: _State,
    text: str,
    strategy: str,
    mode: str | None,
    sources: tuple[str, ...],
    limit: int,
    min_score: float,
    related: bool,
) -> None:
    """Hybrid retrieval over the graph and the corpus indexes."""
    from codegraph.application.queries.retrieve_hybrid import RetrieveInput

    query = RetrieveInput(
        query=text,
        strategy=RetrievalStrategy(strategy),
        mode=SearchMode(mode) if mode else None,
        max_results=limit,
        min_score=min_score,
        include_related=related,
    )
    if sources:
        query.sources = [RetrievalSource(s) for s in sources]

    try:
        result = state.container.retriever.retrieve(query)
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint=e.field)

    data = {
        "results": [
            {
                "id": r.id,
                "title": r.title,
                "source": r.source.value,
                "score": round(r.score, 4),
                "match_source": r.match_source,
                "snippet": r.snippet,
            }
            for r in result.results
        ],
        "metadata": result.metadata,
    }
    if result.subgraph is not None:
        data["subgraph"] = result.subgraph.stats().model_dump()
    _echo_json(data)


@cli.command("search")
@click.argument("text")
@click.option("--mode", "-m", type=click.Choice([m.value for m in SearchMode]), default="fuzzy")
@click.option("--limit", "-l", default=50, help="Max results")
@click.option("--edges/--no-edges", default=False, help="Also search edge labels")
@pass_state
def search_cmd(state: _State, text: str, mode: str, limit: int, edges: bool) -> None:
    """Search node labels, ids and metadata of the graph."""
    from codegraph.application.queries.search_graph import SearchGraphInput, search_graph

    try:
        result = search_graph(
            state.container.graph_store.snapshot(),
            SearchGraphInput(query=text, mode=SearchMode(mode), max_results=limit, search_edges=edges),
        )
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint=e.field)

    _echo_json({
        "matches": [
            {
                "id": m.item_id,
                "type": m.item_type,
                "score": round(m.score, 4),
                "field": m.match_field,
                "snippet": m.snippet,
            }
            for m in result.matches
        ],
        "metadata": result.metadata,
    })


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@cli.command("status")
@pass_state
def status_cmd(state: _State) -> None:
    """Show graph statistics and queue status."""
    c = state.container
    stats = c.graph_store.snapshot().stats()
    _echo_json({
        "index_dir": str(c.settings.index_path),
        "graph": stats.model_dump(),
        "queue": c.queue.get_queue_status(),
        "discovery_configured": c.discovery.configured,
    })


@cli.command("compact")
@pass_state
def compact_cmd(state: _State) -> None:
    """Purge logically deleted nodes and their edges."""
    nodes, edges = state.container.graph_store.compact()
    click.echo(f"Removed {nodes} node(s) and {edges} edge(s)")


@cli.command("serve")
@click.option("--host", default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@pass_state
def serve_cmd(state: _State, host: str | None, port: int | None) -> None:
    """Start the REST API server."""
    import uvicorn

    from codegraph.api.server import create_app

    app = create_app(state.container)
    try:
        uvicorn.run(
            app,
            host=host or state.settings.api_host,
            port=port or state.settings.api_port,
            log_level=state.settings.log_level.lower(),
        )
    finally:
        state.container.shutdown()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
