"""RetrieveHybrid query.

Answers a natural-language query from up to four sources:

- ``code``: nodes of the graph store, scored by the keyword, fuzzy,
  graph and regex scorers selected by the strategy
- ``documentation`` / ``prevention`` / ``task``: the JSON corpus indexes

Sources run in parallel on a thread pool and share no mutable state.
Corresponds to ``POST /v1/retrieve``.

Pipeline:
1. Validate (fail fast, before any work)
2. Score every requested source
3. Fuse: scale by normalized per-source weights, keep the max per id
4. Drop results below ``min_score``
5. Re-rank: ``base*0.4 + overlap*0.3 + recency*0.2 + category*0.1``,
   then drop re-ranked results that fell below ``min_score``
6. Sort, cap at ``max_results`` and flag truncation
7. Optionally expand the results into a subgraph
"""

from __future__ import annotations

import math
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any, Callable

from codegraph.application.cancellation import CancellationToken, is_cancelled
from codegraph.application.queries import scoring
from codegraph.config.logging import get_logger
from codegraph.core.exceptions import ValidationError
from codegraph.domain.entities import GraphNode, GraphSnapshot, RetrievedItem
from codegraph.domain.enums import (
    NodeType,
    RetrievalSource,
    RetrievalStrategy,
    SearchMode,
)
from codegraph.domain.ports import CorpusStore, GraphStore
from codegraph.infrastructure.corpus.filesystem import SOURCE_KINDS

logger = get_logger(__name__)

DEFAULT_WEIGHTS: dict[RetrievalSource, float] = {
    RetrievalSource.CODE: 0.4,
    RetrievalSource.DOCUMENTATION: 0.3,
    RetrievalSource.PREVENTION: 0.2,
    RetrievalSource.TASK: 0.1,
}

DEFAULT_SOURCES = [
    RetrievalSource.CODE,
    RetrievalSource.DOCUMENTATION,
    RetrievalSource.PREVENTION,
]

DOCUMENT_EXTENSIONS = frozenset({".md", ".mdx", ".pdf", ".doc", ".docx"})

# Re-rank blend
_RERANK_BASE = 0.4
_RERANK_OVERLAP = 0.3
_RERANK_RECENCY = 0.2
_RERANK_CATEGORY = 0.1
RECENCY_HALF_LIFE_DAYS = 30.0

GRAPH_SCORER_DEPTH = 2
CORPUS_MIN_SCORE = 0.3
_POLL_SECONDS = 0.05

KEYWORD, FUZZY, GRAPH, REGEX = "keyword", "fuzzy", "graph", "regex"


@dataclass
class RetrieveInput:
    query: str
    strategy: RetrievalStrategy = RetrievalStrategy.HYBRID
    mode: SearchMode | None = None
    pattern: str | None = None
    max_results: int = 10
    min_score: float = 0.5
    sources: list[RetrievalSource] = field(default_factory=lambda: list(DEFAULT_SOURCES))
    weights: dict[RetrievalSource, float] | None = None
    category: str | None = None
    file_types: list[str] | None = None
    include_related: bool = False
    related_depth: int = 1
    rerank: bool = True


@dataclass
class RetrieveResult:
    results: list[RetrievedItem]
    subgraph: GraphSnapshot | None
    metadata: dict[str, Any]


class HybridRetriever:
    """Multi-source retriever over the graph store and the corpus indexes."""

    def __init__(
        self,
        graph_store: GraphStore,
        corpus_store: CorpusStore | None = None,
        *,
        max_workers: int = 4,
    ) -> None:
        self._graph_store = graph_store
        self._corpus_store = corpus_store
        self._max_workers = max_workers

    def retrieve(
        self,
        query: RetrieveInput,
        cancel: CancellationToken | None = None,
    ) -> RetrieveResult:
        weights = validate_retrieve_input(query)
        start = time.monotonic()
        text = query.query.strip()
        scorers = select_scorers(query.strategy, query.mode, query.pattern)
        log = logger.bind(query=text, strategy=query.strategy.value)

        # ── Phase 1: Score sources in parallel ────────────────────────
        per_source, cancelled = self._run_sources(query, text, scorers, cancel)

        # ── Phase 2: Fusion ───────────────────────────────────────────
        fused = fuse(per_source, weights)
        if query.file_types:
            fused = [item for item in fused if _matches_file_types(item, query.file_types)]

        # ── Phase 3: Threshold, re-rank, truncate ─────────────────────
        kept = [item for item in fused if item.score >= query.min_score]
        reranked = query.rerank and bool(kept)
        if reranked:
            kept = [
                item for item in rerank(kept, text, query.category)
                if item.score >= query.min_score
            ]
        kept.sort(key=lambda item: (-item.score, item.id))

        total_found = len(kept)
        results = kept[:query.max_results]

        # ── Phase 4: Subgraph expansion ───────────────────────────────
        subgraph = None
        if query.include_related and results and not cancelled:
            seeds = [r.id for r in results if self._graph_store.get_node(r.id) is not None]
            if seeds:
                subgraph = self._graph_store.get_subgraph(seeds, query.related_depth)

        breakdown = {source.value: 0 for source in RetrievalSource}
        for item in results:
            breakdown[item.source.value] += 1

        elapsed = int((time.monotonic() - start) * 1000)
        log.info(
            "retrieve.complete",
            total_found=total_found,
            returned=len(results),
            cancelled=cancelled,
            retrieval_time_ms=elapsed,
        )
        return RetrieveResult(
            results=results,
            subgraph=subgraph,
            metadata={
                "query": text,
                "strategy": query.strategy.value,
                "mode": query.mode.value if query.mode else None,
                "total_found": total_found,
                "returned": len(results),
                "truncated": total_found > len(results),
                "cancelled": cancelled,
                "source_breakdown": breakdown,
                "retrieval_time_ms": elapsed,
                "reranked": reranked,
            },
        )

    # ------------------------------------------------------------------
    # Source execution
    # ------------------------------------------------------------------

    def _run_sources(
        self,
        query: RetrieveInput,
        text: str,
        scorers: list[str],
        cancel: CancellationToken | None,
    ) -> tuple[dict[RetrievalSource, list[RetrievedItem]], bool]:
        tasks: dict[RetrievalSource, Callable[[], list[RetrievedItem]]] = {}
        for source in dict.fromkeys(query.sources):
            if source == RetrievalSource.CODE:
                tasks[source] = lambda: self._score_code(query, text, scorers, cancel)
            elif scorers != [GRAPH] and self._corpus_store is not None:
                tasks[source] = (
                    lambda s=source: self._score_corpus(s, query, text, scorers, cancel)
                )

        results: dict[RetrievalSource, list[RetrievedItem]] = {}
        if not tasks or is_cancelled(cancel):
            return results, is_cancelled(cancel)

        with ThreadPoolExecutor(max_workers=max(1, min(self._max_workers, len(tasks)))) as pool:
            futures: dict[Future, RetrievalSource] = {
                pool.submit(fn): source for source, fn in tasks.items()
            }
            pending = set(futures)
            while pending:
                if is_cancelled(cancel):
                    for future in pending:
                        future.cancel()
                    break
                done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    source = futures[future]
                    try:
                        results[source] = future.result()
                    except Exception as e:
                        logger.warning("retrieve.source.failed", source=source.value, error=str(e))
                        results[source] = []

        return results, is_cancelled(cancel)

    def _score_code(
        self,
        query: RetrieveInput,
        text: str,
        scorers: list[str],
        cancel: CancellationToken | None,
    ) -> list[RetrievedItem]:
        lowered = text.lower()
        pattern = query.pattern or text
        best: dict[str, tuple[float, str]] = {}

        def offer(node_id: str, score: float, scorer: str) -> None:
            if score > 0 and score > best.get(node_id, (0.0, ""))[0]:
                best[node_id] = (score, scorer)

        nodes = [n for n in self._graph_store.all_nodes() if n.type != NodeType.WORKSPACE.value]
        for i, node in enumerate(nodes):
            if i % 256 == 0 and is_cancelled(cancel):
                return []
            fields = _node_fields(node)
            if KEYWORD in scorers:
                offer(node.id, max(scoring.exact_score(f.lower(), lowered) for f in fields), KEYWORD)
            if FUZZY in scorers:
                offer(node.id, max(scoring.fuzzy_score(f.lower(), lowered) for f in fields), FUZZY)
            if REGEX in scorers:
                offer(node.id, max(scoring.regex_score(f, pattern) for f in fields), REGEX)

        if GRAPH in scorers:
            seeds = [n.id for n in nodes if _is_graph_seed(n, lowered)]
            if seeds:
                distances = self._graph_store.distances_from(seeds, GRAPH_SCORER_DEPTH)
                for node_id, distance in distances.items():
                    offer(node_id, scoring.graph_score(distance), GRAPH)

        tokens = scoring.tokenize(text)
        items: list[RetrievedItem] = []
        for node_id, (score, scorer) in best.items():
            node = self._graph_store.get_node(node_id)
            if node is None or node.type == NodeType.WORKSPACE.value:
                continue
            file_path = _node_file_path(node)
            content = str(node.metadata.get("content") or node.metadata.get("summary") or node.label)
            items.append(RetrievedItem(
                id=node.id,
                title=node.label,
                source=_code_source(node, file_path),
                score=min(score, 1.0),
                snippet=scoring.extract_snippet(content, tokens),
                category=str(node.metadata.get("semantic_category") or node.type),
                file_path=file_path,
                last_modified=node.updated_at,
                match_source=scorer,
                metadata={"node_type": node.type, "content": content},
            ))
        return items

    def _score_corpus(
        self,
        source: RetrievalSource,
        query: RetrieveInput,
        text: str,
        scorers: list[str],
        cancel: CancellationToken | None,
    ) -> list[RetrievedItem]:
        entries = self._corpus_store.load(SOURCE_KINDS[source]) if self._corpus_store else []
        tokens = scoring.tokenize(text)
        lowered = text.lower()
        pattern = query.pattern or text

        items: list[RetrievedItem] = []
        for entry in entries:
            if is_cancelled(cancel):
                return []
            candidates: list[tuple[float, str]] = []
            if query.mode is None:
                candidates.append((scoring.corpus_score(entry, tokens, query.category), KEYWORD))
            fields = [entry.title, entry.content]
            if KEYWORD in scorers:
                candidates.append((max(scoring.exact_score(f.lower(), lowered) for f in fields), KEYWORD))
            if FUZZY in scorers:
                candidates.append((max(scoring.fuzzy_score(f.lower(), lowered) for f in fields), FUZZY))
            if REGEX in scorers:
                candidates.append((max(scoring.regex_score(f, pattern) for f in fields), REGEX))
            score, scorer = max(candidates, key=lambda c: c[0])
            if score < CORPUS_MIN_SCORE:
                continue
            items.append(RetrievedItem(
                id=entry.id,
                title=entry.title,
                source=source,
                score=score,
                snippet=scoring.extract_snippet(entry.content, tokens),
                category=entry.category,
                file_path=entry.path or None,
                last_modified=entry.last_modified,
                match_source=scorer,
                metadata={"keywords": entry.keywords, "content": entry.content},
            ))
        return items


# ---------------------------------------------------------------------------
# Validation and scorer selection
# ---------------------------------------------------------------------------


def validate_retrieve_input(query: RetrieveInput) -> dict[RetrievalSource, float]:
    """Reject bad input before any work starts; return the effective weights."""
    if not query.query or not query.query.strip():
        raise ValidationError("Query cannot be empty", field="query")
    if not 0.0 <= query.min_score <= 1.0:
        raise ValidationError("min_score must be between 0 and 1", field="min_score")
    if isinstance(query.max_results, bool) or not isinstance(query.max_results, int) or query.max_results < 1:
        raise ValidationError("max_results must be a positive integer", field="max_results")
    if isinstance(query.related_depth, bool) or not isinstance(query.related_depth, int) or query.related_depth < 1:
        raise ValidationError("related_depth must be a positive integer", field="related_depth")
    if not query.sources:
        raise ValidationError("At least one source is required", field="sources")

    weights = dict(DEFAULT_WEIGHTS)
    for source, weight in (query.weights or {}).items():
        if weight < 0:
            raise ValidationError(
                f"Weight for '{RetrievalSource(source).value}' must be non-negative",
                field="weights",
            )
        weights[RetrievalSource(source)] = weight
    return weights


def select_scorers(
    strategy: RetrievalStrategy,
    mode: SearchMode | None,
    pattern: str | None = None,
) -> list[str]:
    """Scorers run over the code source; an explicit mode wins over the strategy."""
    if mode is not None:
        return {
            SearchMode.EXACT: [KEYWORD],
            SearchMode.FUZZY: [FUZZY],
            SearchMode.SEMANTIC: [FUZZY],
            SearchMode.REGEX: [REGEX],
        }[mode]
    if strategy == RetrievalStrategy.SEMANTIC:
        return [FUZZY]
    if strategy == RetrievalStrategy.KEYWORD:
        return [KEYWORD]
    if strategy == RetrievalStrategy.GRAPH:
        return [GRAPH]
    scorers = [KEYWORD, FUZZY, GRAPH]
    if pattern:
        scorers.append(REGEX)
    return scorers


# ---------------------------------------------------------------------------
# Fusion and re-ranking
# ---------------------------------------------------------------------------


def fuse(
    per_source: dict[RetrievalSource, list[RetrievedItem]],
    weights: dict[RetrievalSource, float],
) -> list[RetrievedItem]:
    """Scale each item by its source's normalized weight; keep the max per id.

    Weights are normalized over the sources that returned results.  With a
    single responding source the raw scores are kept.
    """
    responding = [source for source, items in per_source.items() if items]
    all_items = [item for items in per_source.values() for item in items]
    if len({item.source for item in all_items}) > 1:
        present = {item.source for item in all_items}
        total = sum(weights.get(s, 0.0) for s in present)
        factors = {
            s: (weights.get(s, 0.0) / total if total > 0 else 1.0) for s in present
        }
    else:
        factors = {}

    best: dict[str, RetrievedItem] = {}
    for item in all_items:
        score = item.score * factors.get(item.source, 1.0)
        current = best.get(item.id)
        if current is None or score > current.score:
            best[item.id] = item.model_copy(update={"score": score})

    logger.debug("retrieve.fuse", sources=[s.value for s in responding], pooled=len(best))
    return list(best.values())


def rerank(
    items: list[RetrievedItem],
    query: str,
    category: str | None = None,
    now: datetime | None = None,
) -> list[RetrievedItem]:
    now = now or datetime.now()
    tokens = scoring.tokenize(query)
    reranked = []
    for item in items:
        text = " ".join([
            item.title, item.snippet, str(item.metadata.get("content") or ""),
        ]).lower()
        overlap = sum(1 for t in tokens if t in text) / len(tokens) if tokens else 0.0
        recency = recency_boost(item.last_modified, now)
        category_match = (
            1.0 if category and item.category and item.category.lower() == category.lower() else 0.0
        )
        final = (
            item.score * _RERANK_BASE
            + overlap * _RERANK_OVERLAP
            + recency * _RERANK_RECENCY
            + category_match * _RERANK_CATEGORY
        )
        reranked.append(item.model_copy(update={
            "score": min(max(final, 0.0), 1.0),
            "metadata": {**item.metadata, "base_score": item.score},
        }))
    return reranked


def recency_boost(modified: datetime | None, now: datetime) -> float:
    """1.0 for brand-new content, halving every ``RECENCY_HALF_LIFE_DAYS``."""
    if modified is None:
        return 0.0
    if modified.tzinfo is not None and now.tzinfo is None:
        modified = modified.replace(tzinfo=None)
    age_days = max((now - modified).total_seconds() / 86400, 0.0)
    return math.pow(0.5, age_days / RECENCY_HALF_LIFE_DAYS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _node_fields(node: GraphNode) -> list[str]:
    fields = [node.label, node.id]
    for key in ("content", "summary"):
        value = node.metadata.get(key)
        if value:
            fields.append(str(value))
    return fields


def _node_file_path(node: GraphNode) -> str | None:
    for key in ("file_path", "path", "file_name"):
        value = node.metadata.get(key)
        if value:
            return str(value)
    return None


def _code_source(node: GraphNode, file_path: str | None) -> RetrievalSource:
    if file_path and PurePath(file_path).suffix.lower() in DOCUMENT_EXTENSIONS:
        return RetrievalSource.DOCUMENTATION
    return RetrievalSource.CODE


def _is_graph_seed(node: GraphNode, lowered_query: str) -> bool:
    label = node.label.lower()
    if lowered_query in label or lowered_query in node.id.lower():
        return True
    return label in scoring.tokenize(lowered_query, min_length=3)


def _matches_file_types(item: RetrievedItem, file_types: list[str]) -> bool:
    if not item.file_path:
        return False
    suffix = PurePath(item.file_path).suffix.lower()
    wanted = {ft.lower() if ft.startswith(".") else f".{ft.lower()}" for ft in file_types}
    return suffix in wanted
