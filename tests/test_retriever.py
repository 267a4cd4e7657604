"""Tests for the Retriever facade: strategy selection, fallback, deletion."""
from unittest.mock import MagicMock, PropertyMock, patch

import pytest

from conftest import frag, meta
from fraglens.analyzer import QueryAnalyzer
from fraglens.errors import DimensionMismatchError, StoreError
from fraglens.models import (
    Complexity,
    QueryAnalysis,
    SearchFilter,
    SearchStrategy,
    Specificity,
)
from fraglens.retriever import contextual_query


def fixed_analysis(strategy, complexity=Complexity.SIMPLE):
    return QueryAnalysis(complexity, Specificity.FOCUSED, strategy, 0.8, ["fixed"])


@pytest.fixture
def corpus(retriever):
    retriever.ingest([
        frag("postgres connection pooling with pgbouncer", source="docs", project_id="db"),
        frag("tuning postgres autovacuum settings", source="docs", project_id="db"),
        frag("postgres replication and failover", source="wiki", project_id="db"),
        frag("react hooks and component state", source="docs", project_id="web"),
        frag("css grid layout basics", source="chat", project_id="web"),
        frag("gardening tips for tomatoes", source="chat"),
    ])
    return retriever


class TestRetrieve:
    def test_blank_query_empty_result(self, corpus):
        with patch.object(QueryAnalyzer, "analyze") as analyze:
            result = corpus.retrieve("   ")
        assert result.fragments == []
        assert result.analysis is None
        analyze.assert_not_called()

    @pytest.mark.parametrize("strategy", list(SearchStrategy))
    def test_each_strategy_annotates(self, corpus, strategy):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(strategy)):
            result = corpus.retrieve("tuning postgres autovacuum settings", use_cache=False)
        assert result.fragments
        assert result.config.strategy is strategy
        assert len(result.fragments) <= 4
        for sf in result.fragments:
            assert sf.annotations["retrieval_strategy"] == strategy.value
            assert sf.annotations["query_complexity"] == "simple"
            assert sf.annotations["strategy_confidence"] == pytest.approx(0.8)
            assert sf.annotations["fallback_used"] is False

    def test_relevance_threshold_applied(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.RELEVANCE)):
            result = corpus.retrieve("tuning postgres autovacuum settings", use_cache=False)
        assert [sf.fragment.content for sf in result.fragments] == ["tuning postgres autovacuum settings"]

    def test_hybrid_no_duplicates(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.HYBRID)):
            result = corpus.retrieve("postgres", k=5, use_cache=False)
        hashes = [sf.fragment.content_hash for sf in result.fragments]
        assert len(hashes) == len(set(hashes))
        assert len(hashes) <= 5

    def test_caller_k(self, corpus):
        result = corpus.retrieve("tell me about postgres", k=2)
        assert len(result.fragments) <= 2

    def test_invalid_k(self, corpus):
        with pytest.raises(ValueError):
            corpus.retrieve("postgres", k=0)

    def test_sources_extracted(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)):
            result = corpus.retrieve("postgres", k=6, use_cache=False)
        assert set(result.sources) <= {"docs", "wiki", "chat"}
        assert len(result.sources) == len(set(result.sources))

    def test_filter_respected(self, corpus):
        result = corpus.retrieve("postgres", filter=SearchFilter(project_id="web"))
        assert all(sf.fragment.metadata.project_id == "web" for sf in result.fragments)

    def test_elapsed_recorded(self, corpus):
        assert corpus.retrieve("postgres").elapsed_ms >= 0


class TestFallback:
    def test_resolution_failure_falls_back(self, corpus, health):
        with patch("fraglens.retriever.resolve", side_effect=RuntimeError("bad table")):
            result = corpus.retrieve("postgres replication", use_cache=False)
        assert result.fallback_used
        assert result.config.strategy is SearchStrategy.RELEVANCE
        assert result.fragments
        assert all(sf.annotations["fallback_used"] for sf in result.fragments)
        assert health.status["fallbacks"] == 1

    def test_merge_failure_falls_back(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.HYBRID)), \
                patch("fraglens.retriever.merge", side_effect=RuntimeError("merge broke")):
            result = corpus.retrieve("postgres", use_cache=False)
        assert result.fallback_used
        assert result.fragments

    def test_empty_strategic_result_retries_relevance(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)), \
                patch.object(corpus.mmr, "mmr_search", return_value=[]):
            result = corpus.retrieve("postgres", use_cache=False)
        assert result.fallback_used
        assert result.config.strategy is SearchStrategy.RELEVANCE
        assert result.fragments

    def test_fallback_failure_gives_empty(self, corpus):
        with patch("fraglens.retriever.resolve", side_effect=RuntimeError("x")), \
                patch.object(corpus.executor, "search", side_effect=RuntimeError("y")):
            result = corpus.retrieve("postgres", use_cache=False)
        assert result.fragments == []
        assert result.fallback_used

    def test_store_outage_gives_empty(self, corpus, monkeypatch):
        monkeypatch.setattr(corpus.store, "vector_search", MagicMock(side_effect=StoreError("down")))
        monkeypatch.setattr(corpus.store, "scan", MagicMock(side_effect=StoreError("down")))
        result = corpus.retrieve("postgres", use_cache=False)
        assert result.fragments == []

    def test_dimension_mismatch_propagates(self, corpus, monkeypatch):
        monkeypatch.setattr(corpus.embeddings, "embed_query", lambda text: [1.0, 0.0])
        with pytest.raises(DimensionMismatchError):
            corpus.retrieve("postgres", use_cache=False)

    def test_annotation_error_ignored(self, corpus):
        analysis = MagicMock(recommended_strategy=SearchStrategy.RELEVANCE, complexity=Complexity.SIMPLE)
        type(analysis).specificity = PropertyMock(side_effect=RuntimeError("bad"))
        with patch.object(QueryAnalyzer, "analyze", return_value=analysis):
            result = corpus.retrieve("postgres replication and failover", use_cache=False)
        assert result.fragments
        assert result.fragments[0].annotations["retrieval_strategy"] == "relevance"
        assert not result.fallback_used


class TestCacheAndAccess:
    def test_second_call_hits_cache(self, corpus, health, embedding_fn):
        first = corpus.retrieve("postgres replication")
        embedding_fn.calls.clear()
        second = corpus.retrieve("postgres replication")
        assert not first.cache_hit
        assert second.cache_hit
        assert embedding_fn.calls == []
        assert [s.fragment.id for s in second.fragments] == [s.fragment.id for s in first.fragments]
        assert health.status["cache_hits"] == 1

    def test_use_cache_false_bypasses(self, corpus):
        corpus.retrieve("postgres replication")
        assert not corpus.retrieve("postgres replication", use_cache=False).cache_hit

    def test_ingest_invalidates_cache(self, corpus):
        corpus.retrieve("postgres replication")
        corpus.ingest([frag("postgres logical replication slots")])
        assert not corpus.retrieve("postgres replication").cache_hit

    def test_access_counts_updated(self, corpus):
        result = corpus.retrieve("tuning postgres autovacuum settings", k=1, use_cache=False)
        assert corpus.access.flush(5.0)
        fid = result.fragments[0].fragment.id
        assert corpus.get([fid])[0].access_count == 1

    def test_health_records_search(self, corpus, health):
        corpus.retrieve("postgres", use_cache=False)
        assert health.status["searches_total"] == 1


class TestDelete:
    def test_deleted_never_returned(self, corpus):
        victim = corpus.search("css grid layout basics", k=1)[0].fragment
        assert corpus.delete(ids=[victim.id]) == 1
        for strategy in SearchStrategy:
            with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(strategy)):
                result = corpus.retrieve("css grid layout basics", k=6, use_cache=False)
            assert victim.id not in [sf.fragment.id for sf in result.fragments]
        assert victim.id not in [sf.fragment.id for sf in corpus.search("css grid", k=10)]
        assert victim.id not in [sf.fragment.id for sf in corpus.mmr_search("css grid", k=6)]

    def test_idempotent(self, corpus):
        fid = corpus.search("gardening tips for tomatoes", k=1)[0].fragment.id
        assert corpus.delete(ids=[fid]) == 1
        assert corpus.delete(ids=[fid]) == 0

    def test_by_filter(self, corpus):
        assert corpus.delete(filter=SearchFilter(project_id="web")) == 2
        assert corpus.stats()["active_fragments"] == 4

    def test_requires_scope(self, corpus):
        with pytest.raises(ValueError):
            corpus.delete()

    def test_empty_id_list_noop(self, corpus):
        assert corpus.delete(ids=[]) == 0

    def test_invalidates_cache(self, corpus):
        first = corpus.retrieve("css grid layout basics")
        corpus.delete(ids=[first.fragments[0].fragment.id])
        assert not corpus.retrieve("css grid layout basics").cache_hit


class TestIngestAndStats:
    def test_ingest_document(self, retriever):
        text = "# Title\n\n" + "A paragraph about vector search and embeddings. " * 3
        ids = retriever.ingest_document(text, meta(document_id="doc-1"))
        assert len(ids) == 1
        assert retriever.last_ingest_report.inserted == 1

    def test_add_vectors(self, retriever, embedding_fn):
        ids = retriever.add_vectors([embedding_fn.vector("hello world")], [frag("hello world")])
        assert retriever.search("hello world", k=1)[0].fragment.id == ids[0]

    def test_stats(self, corpus):
        stats = corpus.stats()
        assert stats["active_fragments"] == 6
        assert stats["deleted_fragments"] == 0
        assert stats["by_source"] == {"docs": 3, "wiki": 1, "chat": 2}
        assert stats["dimension"] == 64
        assert "cache" in stats and "health" in stats

    def test_stats_scoped(self, corpus):
        assert corpus.stats(SearchFilter(project_id="db"))["active_fragments"] == 3

    def test_explain_query(self, retriever):
        assert "Strategy:" in retriever.explain_query("tell me about gardening")

    def test_from_config_wires_components(self, config, health, monkeypatch):
        from fraglens import retriever as retriever_module
        monkeypatch.setattr(
            retriever_module.ChromaEmbeddingProvider, "from_config",
            classmethod(lambda cls, cfg: MagicMock()),
        )
        r = retriever_module.Retriever.from_config(config, health=health)
        try:
            assert r.cache is not None
            assert r.access is not None
            assert r.config is config
        finally:
            r.close()


class TestCacheBehaviour:
    def test_stores_into_empty_cache(self, corpus):
        assert len(corpus.cache) == 0
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)):
            result = corpus.retrieve("postgres replication")
        assert result.fragments and not result.fallback_used
        assert len(corpus.cache) == 1

    def test_long_queries_sharing_prefix_do_not_collide(self, corpus):
        prefix = "please help me with a question about our database setup " * 5
        assert len(prefix) > 256
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)):
            first = corpus.retrieve(prefix + "autovacuum tuning", k=1)
            second = corpus.retrieve(prefix + "react hooks component state", k=1)
            again = corpus.retrieve(prefix + "autovacuum tuning", k=1)
        assert first.fragments
        assert not second.cache_hit
        assert again.cache_hit

    def test_hit_returns_independent_copies(self, corpus):
        first = corpus.retrieve("postgres replication")
        first.fragments[0].annotations["note"] = "caller edit"
        second = corpus.retrieve("postgres replication")
        assert second.cache_hit
        assert "note" not in second.fragments[0].annotations
        second.fragments[0].annotations["note"] = "again"
        assert "note" not in corpus.retrieve("postgres replication").fragments[0].annotations

    def test_hit_records_access_and_search(self, corpus, health):
        first = corpus.retrieve("postgres replication")
        assert corpus.retrieve("postgres replication").cache_hit
        assert health.status["searches_total"] == 2
        assert corpus.access.flush(5.0)
        fid = first.fragments[0].fragment.id
        assert corpus.get([fid])[0].access_count == 2


class TestHybridEmbedding:
    def test_query_embedded_once(self, corpus, embedding_fn):
        embedding_fn.calls.clear()
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.HYBRID)):
            result = corpus.retrieve("postgres", use_cache=False)
        assert result.fragments
        assert embedding_fn.calls == [["postgres"]]


class TestDeleteScope:
    def test_empty_filter_rejected(self, corpus):
        with pytest.raises(ValueError):
            corpus.delete(filter=SearchFilter())
        assert corpus.stats()["active_fragments"] == 6

    def test_ids_with_empty_filter(self, corpus):
        fid = corpus.search("gardening tips for tomatoes", k=1)[0].fragment.id
        assert corpus.delete(ids=[fid], filter=SearchFilter()) == 1
        assert corpus.stats()["active_fragments"] == 5


class TestRerank:
    def test_boosts_frequently_accessed(self, corpus):
        popular = corpus.search("postgres replication and failover", k=1)[0].fragment
        for _ in range(11):
            corpus.store.increment_access([popular.id])
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)):
            result = corpus.retrieve("postgres", k=6, use_cache=False, rerank=True)
        scores = [sf.score for sf in result.fragments]
        assert scores == sorted(scores, reverse=True)
        boosted = next(sf for sf in result.fragments if sf.fragment.id == popular.id)
        # one term match, ingested just now, accessed more than ten times
        assert boosted.score == pytest.approx(boosted.annotations["base_score"] + 0.1 + 0.5 + 0.3)
        assert boosted.annotations["retrieval_strategy"] == "diversity"

    def test_off_by_default(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)):
            result = corpus.retrieve("postgres", use_cache=False)
        assert all("base_score" not in sf.annotations for sf in result.fragments)

    def test_boost_failure_keeps_search_order(self, corpus):
        with patch.object(QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY)), \
                patch("fraglens.retriever.boost", side_effect=RuntimeError("boom")):
            result = corpus.retrieve("postgres", use_cache=False, rerank=True)
        assert result.fragments
        assert not result.fallback_used


class TestRetrieveWithContext:
    def test_query_expanded_and_reranked(self, corpus):
        with patch.object(
            QueryAnalyzer, "analyze", return_value=fixed_analysis(SearchStrategy.DIVERSITY),
        ) as analyze:
            result = corpus.retrieve_with_context(
                "how do I tune it",
                recent_messages=["hello", "we run postgres", "autovacuum is slow"],
                current_topic="databases",
                use_cache=False,
            )
        assert analyze.call_args.args[0] == (
            "we run postgres autovacuum is slow\ndatabases: how do I tune it"
        )
        assert result.fragments
        assert all("base_score" in sf.annotations for sf in result.fragments)

    def test_blank_query(self, corpus):
        assert corpus.retrieve_with_context("  ", recent_messages=["postgres"]).fragments == []

    def test_contextual_query_without_context(self):
        assert contextual_query("plain question") == "plain question"
