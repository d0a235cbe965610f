"""Tests for the RetrieveHybrid query."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from codegraph.application.cancellation import CancellationToken
from codegraph.application.queries.retrieve_hybrid import (
    DEFAULT_WEIGHTS,
    HybridRetriever,
    RetrieveInput,
    fuse,
    recency_boost,
    rerank,
    select_scorers,
)
from codegraph.core.exceptions import ValidationError
from codegraph.domain.entities import CorpusEntry, GraphEdge, GraphNode, RetrievedItem
from codegraph.domain.enums import RetrievalSource, RetrievalStrategy, SearchMode
from codegraph.infrastructure.corpus.filesystem import FilesystemCorpusStore
from codegraph.infrastructure.graph.networkx_store import NetworkXGraphStore

CODE = RetrievalSource.CODE
DOCS = RetrievalSource.DOCUMENTATION


def _node(id: str, label: str) -> GraphNode:
    return GraphNode(id=id, label=label)


def _item(id: str, source: RetrievalSource, score: float, **fields) -> RetrievedItem:
    return RetrievedItem(id=id, title=fields.pop("title", id), source=source, score=score, **fields)


@pytest.fixture
def corpus(tmp_path):
    store = FilesystemCorpusStore(tmp_path)
    store.write("docs", [
        CorpusEntry(
            id="docs:auth.md",
            title="Authentication",
            path="auth.md",
            content="Tokens are issued by the auth service.",
            category="security",
            keywords=["jwt"],
            last_modified=datetime(2024, 1, 1),
        ),
        CorpusEntry(id="docs:billing.md", title="Billing", path="billing.md", content="Invoices."),
    ])
    return store


class TestValidation:
    @pytest.mark.parametrize("overrides,field", [
        ({"query": "   "}, "query"),
        ({"min_score": 1.5}, "min_score"),
        ({"max_results": 0}, "max_results"),
        ({"related_depth": 0}, "related_depth"),
        ({"sources": []}, "sources"),
        ({"weights": {RetrievalSource.CODE: -1.0}}, "weights"),
    ])
    def test_rejects_bad_input(self, sample_store, overrides, field):
        params = {"query": "auth", **overrides}
        with pytest.raises(ValidationError) as exc:
            HybridRetriever(sample_store).retrieve(RetrieveInput(**params))
        assert exc.value.field == field


class TestSelectScorers:
    def test_hybrid(self):
        assert select_scorers(RetrievalStrategy.HYBRID, None) == ["keyword", "fuzzy", "graph"]
        assert select_scorers(RetrievalStrategy.HYBRID, None, "auth.*") == ["keyword", "fuzzy", "graph", "regex"]

    def test_mode_wins(self):
        assert select_scorers(RetrievalStrategy.GRAPH, SearchMode.EXACT) == ["keyword"]
        assert select_scorers(RetrievalStrategy.HYBRID, SearchMode.SEMANTIC) == ["fuzzy"]

    def test_single_strategies(self):
        assert select_scorers(RetrievalStrategy.KEYWORD, None) == ["keyword"]
        assert select_scorers(RetrievalStrategy.GRAPH, None) == ["graph"]


class TestCodeRetrieval:
    def test_exact_mode_ranks_exact_above_substring(self, store):
        store.upsert_node(_node("entity:login", "login"))
        store.upsert_node(_node("entity:login-handler", "login handler"))
        result = HybridRetriever(store).retrieve(RetrieveInput(
            query="login", mode=SearchMode.EXACT, min_score=0.0, rerank=False, sources=[CODE],
        ))
        assert [r.id for r in result.results] == ["entity:login", "entity:login-handler"]
        assert result.results[0].score == pytest.approx(1.0)
        assert result.results[1].score == pytest.approx(0.8)
        assert result.metadata["mode"] == "exact"

    def test_truncation(self):
        store = NetworkXGraphStore()
        for i in range(100):
            store.upsert_node(_node(f"entity:widget-{i:03d}", f"widget {i}"))
        result = HybridRetriever(store).retrieve(RetrieveInput(
            query="widget", max_results=10, rerank=False, sources=[CODE],
        ))
        assert len(result.results) == 10
        assert result.metadata["total_found"] == 100
        assert result.metadata["truncated"] is True
        assert [r.id for r in result.results] == sorted(r.id for r in result.results)

    def test_graph_strategy_scores_by_distance(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(
            query="auth service", strategy=RetrievalStrategy.GRAPH, rerank=False, sources=[CODE],
        ))
        scores = {r.id: r.score for r in result.results}
        assert scores["entity:auth-service"] == pytest.approx(1.0)
        assert scores["entity:user-repository"] == pytest.approx(0.5)
        assert "workspace:ws" not in scores
        assert "entity:billing" not in scores
        assert all(r.match_source == "graph" for r in result.results)

    def test_results_sorted_and_above_threshold(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(query="auth", sources=[CODE]))
        scores = [r.score for r in result.results]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= 0.5 for s in scores)
        assert result.metadata["reranked"] is True
        assert all("base_score" in r.metadata for r in result.results)

    def test_threshold_applies_to_reranked_score(self, store):
        store.upsert_node(_node("entity:auth-service", "Auth Service"))
        store.upsert_node(_node("entity:user-repository", "User Repository"))
        store.upsert_edge(GraphEdge(source="entity:auth-service", target="entity:user-repository"))

        result = HybridRetriever(store).retrieve(RetrieveInput(query="auth", sources=[CODE], min_score=0.5))
        assert [r.id for r in result.results] == ["entity:auth-service"]
        assert all(r.score >= 0.5 for r in result.results)
        assert result.metadata["total_found"] == 1
        assert result.metadata["truncated"] is False

    def test_file_types_filter(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(
            query="auth", file_types=["py"], rerank=False, sources=[CODE], min_score=0.0,
        ))
        assert result.results
        assert all(r.file_path.endswith(".py") for r in result.results)

    def test_include_related_builds_subgraph(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(
            query="Auth Service",
            sources=[CODE],
            max_results=1,
            rerank=False,
            include_related=True,
            related_depth=1,
        ))
        assert [r.id for r in result.results] == ["entity:auth-service"]
        ids = {n.id for n in result.subgraph.nodes}
        assert {"entity:auth-service", "entity:user-repository", "entity:token-cache"} <= ids
        assert "entity:billing" not in ids
        assert all(e.source in ids and e.target in ids for e in result.subgraph.edges)

    def test_no_subgraph_by_default(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(query="auth", sources=[CODE]))
        assert result.subgraph is None


class TestCorpusRetrieval:
    def test_documentation_source(self, store, corpus):
        result = HybridRetriever(store, corpus).retrieve(RetrieveInput(
            query="authentication tokens", sources=[DOCS], rerank=False,
        ))
        assert [r.id for r in result.results] == ["docs:auth.md"]
        item = result.results[0]
        assert item.source == DOCS
        assert item.score == pytest.approx(0.6)
        assert item.category == "security"
        assert result.metadata["source_breakdown"]["documentation"] == 1

    def test_graph_strategy_skips_corpora(self, sample_store, corpus):
        result = HybridRetriever(sample_store, corpus).retrieve(RetrieveInput(
            query="auth service", strategy=RetrievalStrategy.GRAPH, sources=[CODE, DOCS], rerank=False,
        ))
        assert all(r.source == CODE for r in result.results)

    def test_missing_corpus_store_is_ignored(self, sample_store):
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(query="auth", sources=[CODE, DOCS]))
        assert all(r.source == CODE for r in result.results)


class TestCancellation:
    def test_cancelled_before_start(self, sample_store):
        token = CancellationToken()
        token.cancel()
        result = HybridRetriever(sample_store).retrieve(RetrieveInput(query="auth"), cancel=token)
        assert result.results == []
        assert result.metadata["cancelled"] is True


class TestFuse:
    def test_single_source_keeps_raw_scores(self):
        fused = fuse({CODE: [_item("a", CODE, 0.8)]}, DEFAULT_WEIGHTS)
        assert fused[0].score == pytest.approx(0.8)

    def test_weights_normalized_over_present_sources(self):
        fused = {i.id: i.score for i in fuse(
            {CODE: [_item("a", CODE, 1.0)], DOCS: [_item("b", DOCS, 1.0)]},
            DEFAULT_WEIGHTS,
        )}
        assert fused["a"] == pytest.approx(0.4 / 0.7)
        assert fused["b"] == pytest.approx(0.3 / 0.7)

    def test_max_per_id(self):
        fused = fuse(
            {CODE: [_item("x", CODE, 0.5)], DOCS: [_item("x", DOCS, 1.0)]},
            {CODE: 0.5, DOCS: 0.5},
        )
        assert len(fused) == 1
        assert fused[0].score == pytest.approx(0.5)
        assert fused[0].source == DOCS


class TestRerank:
    def test_blend(self):
        now = datetime(2024, 6, 1)
        item = _item(
            "a", CODE, 1.0,
            title="auth service",
            category="service",
            last_modified=now,
        )
        (ranked,) = rerank([item], "auth", category="service", now=now)
        assert ranked.score == pytest.approx(1.0)
        assert ranked.metadata["base_score"] == 1.0

    def test_stale_unrelated_item_drops(self):
        now = datetime(2024, 6, 1)
        item = _item("a", CODE, 1.0, title="billing", last_modified=now - timedelta(days=365))
        (ranked,) = rerank([item], "auth", now=now)
        assert ranked.score < 0.45

    def test_recency_half_life(self):
        now = datetime(2024, 6, 1)
        assert recency_boost(now, now) == pytest.approx(1.0)
        assert recency_boost(now - timedelta(days=30), now) == pytest.approx(0.5)
        assert recency_boost(None, now) == 0.0
