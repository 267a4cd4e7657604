# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Retriever – the one object callers talk to.

retrieve() walks:

    idle -> analyzing -> relevance | diversity | hybrid -> annotated -> done
                 \\_____________ any error _____________/
                                   |
                           fallback relevance

The analyzer picks a strategy, the resolver turns it into k / fetch_k /
lambda, and the matching executor runs. Any failure on the way (or an
empty strategic result) degrades to plain relevance search, flagged with
fallback_used. A vector dimension mismatch is never absorbed.

With rerank=True the results are boosted by term matches, recency and
access count before they are annotated (see boosting.py).
"""
import logging
import time
from dataclasses import replace
from typing import Optional, Sequence

from .activity import AccessRecorder
from .analyzer import QueryAnalyzer, explain
from .boosting import boost
from .cache import ResultCache, cache_key
from .chunking import ChunkStrategy, Chunker
from .config import Config
from .embeddings import ChromaEmbeddingProvider, EmbeddingProvider
from .errors import DimensionMismatchError
from .executor import SimilaritySearchExecutor
from .health import HealthTracker
from .hybrid import merge
from .ingestion import IngestionPipeline
from .mmr import MMRReranker
from .models import (
    FragmentInput,
    FragmentMetadata,
    FragmentStatus,
    QueryAnalysis,
    RetrievalResult,
    ScoredFragment,
    SearchConfig,
    SearchFilter,
    SearchStrategy,
)
from .store import ChromaDocumentStore, DocumentStore
from .strategy import resolve, with_k

logger = logging.getLogger(__name__)

CONTEXT_MESSAGES = 2


def extract_sources(fragments: Sequence[ScoredFragment]) -> list[str]:
    """Distinct fragment sources, in result order."""
    sources: list[str] = []
    for sf in fragments:
        source = sf.fragment.metadata.source
        if source and source not in sources:
            sources.append(source)
    return sources


def contextual_query(
    query: str, recent_messages: Sequence[str] = (), current_topic: Optional[str] = None,
) -> str:
    """Prefix the query with the topic and the last few conversation messages."""
    if current_topic and current_topic.strip():
        query = f"{current_topic.strip()}: {query}"
    recent = [m.strip() for m in recent_messages if m and m.strip()][-CONTEXT_MESSAGES:]
    if recent:
        query = f"{' '.join(recent)}\n{query}"
    return query


def _copy_fragments(fragments: Sequence[ScoredFragment]) -> list[ScoredFragment]:
    return [replace(sf, annotations=dict(sf.annotations)) for sf in fragments]


class Retriever:
    def __init__(
        self,
        store: DocumentStore,
        embeddings: EmbeddingProvider,
        config: Optional[Config] = None,
        analyzer: Optional[QueryAnalyzer] = None,
        cache: Optional[ResultCache] = None,
        access: Optional[AccessRecorder] = None,
        health: Optional[HealthTracker] = None,
        chunker: Optional[Chunker] = None,
    ):
        self.config = config or Config()
        self.store = store
        self.embeddings = embeddings
        self.analyzer = analyzer or QueryAnalyzer()
        self.cache = cache
        self.access = access
        self.health = health
        self.pipeline = IngestionPipeline(
            store, embeddings, chunker or Chunker.from_config(self.config), health,
        )
        self.executor = SimilaritySearchExecutor(
            embeddings, store,
            over_fetch_factor=self.config.over_fetch_factor,
            fallback_scan_limit=self.config.fallback_scan_limit,
        )
        self.mmr = MMRReranker(embeddings, self.executor, max_fetch_k=self.config.max_fetch_k)

    @classmethod
    def from_config(cls, config: Config, health: Optional[HealthTracker] = None) -> "Retriever":
        store = ChromaDocumentStore.from_config(config)
        cache = None
        if config.cache_enabled:
            cache = ResultCache(config.cache_ttl_seconds, config.cache_max_entries)
        return cls(
            store=store,
            embeddings=ChromaEmbeddingProvider.from_config(config),
            config=config,
            cache=cache,
            access=AccessRecorder(store, config.access_queue_size, health),
            health=health,
        )

    def close(self):
        if self.access is not None:
            self.access.stop()

    # ── Ingestion ────────────────────────────────────

    def _invalidate(self):
        if self.cache is not None:
            self.cache.clear()

    def ingest(self, fragments: Sequence[FragmentInput]) -> list[str]:
        ids = self.pipeline.ingest(fragments)
        self._invalidate()
        return ids

    def ingest_document(
        self, text: str, metadata: FragmentMetadata,
        strategy: Optional[ChunkStrategy] = None,
    ) -> list[str]:
        ids = self.pipeline.ingest_document(text, metadata, strategy)
        self._invalidate()
        return ids

    def add_vectors(
        self, vectors: Sequence[Sequence[float]], fragments: Sequence[FragmentInput],
    ) -> list[str]:
        ids = self.pipeline.add_vectors(vectors, fragments)
        self._invalidate()
        return ids

    @property
    def last_ingest_report(self):
        return self.pipeline.last_report

    # ── Direct search ────────────────────────────────

    def search(
        self, query: str, k: Optional[int] = None, filter: Optional[SearchFilter] = None,
    ) -> list[ScoredFragment]:
        """Plain relevance search."""
        return self.executor.search(query, k or self.config.default_k, filter)

    def mmr_search(
        self, query: str, k: Optional[int] = None, fetch_k: Optional[int] = None,
        lambda_mult: float = 0.5, filter: Optional[SearchFilter] = None,
    ) -> list[ScoredFragment]:
        k = k or self.config.default_k
        return self.mmr.mmr_search(query, k, fetch_k or k * 5, lambda_mult, filter)

    def explain_query(self, query: str) -> str:
        return explain(self.analyzer.analyze(query))

    # ── Adaptive retrieval ───────────────────────────

    def _execute(
        self, query: str, config: SearchConfig, filter: Optional[SearchFilter],
    ) -> list[ScoredFragment]:
        if config.strategy is SearchStrategy.RELEVANCE:
            return self.executor.search(
                query, config.k, filter, score_threshold=config.score_threshold,
            )
        if config.strategy is SearchStrategy.DIVERSITY:
            return self.mmr.mmr_search(
                query, config.k, config.fetch_k, config.lambda_mult, filter,
            )
        # Both halves of a hybrid search share one query embedding.
        query_vector = self.embeddings.embed_query(query)
        relevance = self.executor.search_by_vector(query_vector, config.k, filter)
        diversity = self.mmr.mmr_search_by_vector(
            query_vector, config.k, config.fetch_k, config.lambda_mult, filter,
        )
        return merge(relevance, diversity, config.k, self.config.hybrid_diversity_boost)

    def _fallback(
        self, query: str, k: int, filter: Optional[SearchFilter],
    ) -> tuple[SearchConfig, list[ScoredFragment]]:
        config = SearchConfig(
            strategy=SearchStrategy.RELEVANCE, k=k, fetch_k=k, lambda_mult=1.0,
        )
        try:
            return config, self.executor.search(query, k, filter)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.error("Fallback relevance search failed: %s", e)
            return config, []

    @staticmethod
    def _annotate(
        fragments: list[ScoredFragment], analysis: Optional[QueryAnalysis],
        config: SearchConfig, fallback_used: bool,
    ):
        for sf in fragments:
            try:
                sf.annotations.update({
                    "retrieval_strategy": config.strategy.value,
                    "fallback_used": fallback_used,
                })
                if analysis is not None:
                    sf.annotations.update({
                        "query_complexity": analysis.complexity.value,
                        "query_specificity": analysis.specificity.value,
                        "strategy_confidence": analysis.confidence,
                    })
            except Exception as e:
                logger.warning("Could not annotate fragment %s: %s", sf.fragment.id, e)

    def _boost(
        self, query: str, fragments: list[ScoredFragment],
    ) -> list[ScoredFragment]:
        try:
            return boost(query, fragments, len(fragments))
        except Exception as e:
            logger.warning("Re-ranking failed, keeping search order: %s", e)
            return fragments

    def _record_search(self, result: RetrievalResult):
        if self.access is not None and result.fragments:
            self.access.record([sf.fragment.id for sf in result.fragments])
        if self.health:
            strategy = result.config.strategy.value if result.config else "relevance"
            self.health.record_search(strategy, hit=bool(result.fragments))

    def retrieve(
        self, query: str, k: Optional[int] = None,
        filter: Optional[SearchFilter] = None, use_cache: bool = True,
        rerank: bool = False,
    ) -> RetrievalResult:
        """Analyse the query, pick a strategy, search, annotate."""
        return self._retrieve(query, query, k, filter, use_cache, rerank)

    def retrieve_with_context(
        self, query: str, recent_messages: Sequence[str] = (),
        current_topic: Optional[str] = None, k: Optional[int] = None,
        filter: Optional[SearchFilter] = None, use_cache: bool = True,
    ) -> RetrievalResult:
        """Retrieve for a conversation turn.

        The search runs on the query expanded with the topic and the last
        messages; results are always re-ranked, with term boosts taken from
        the query alone.
        """
        if not query or not query.strip():
            return self._retrieve(query, query, k, filter, use_cache, True)
        expanded = contextual_query(query, recent_messages, current_topic)
        return self._retrieve(expanded, query, k, filter, use_cache, True)

    def _retrieve(
        self, query: str, boost_query: str, k: Optional[int],
        filter: Optional[SearchFilter], use_cache: bool, rerank: bool,
    ) -> RetrievalResult:
        start = time.monotonic()
        if k is not None and k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if not query or not query.strip():
            return RetrievalResult(elapsed_ms=(time.monotonic() - start) * 1000)

        key = cache_key(query, k, filter, rerank)
        if use_cache and self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                if self.health:
                    self.health.record_cache_hit()
                result = replace(
                    cached, fragments=_copy_fragments(cached.fragments), cache_hit=True,
                    elapsed_ms=(time.monotonic() - start) * 1000,
                )
                self._record_search(result)
                return result

        fallback_k = k or self.config.default_k
        analysis: Optional[QueryAnalysis] = None
        config: Optional[SearchConfig] = None
        fallback_used = False
        state = "analyzing"
        try:
            analysis = self.analyzer.analyze(query)
            state = "resolving"
            config = resolve(
                analysis.recommended_strategy, analysis.complexity,
                max_fetch_k=self.config.max_fetch_k,
            )
            if k is not None:
                config = with_k(config, k, max_fetch_k=self.config.max_fetch_k)
            state = config.strategy.value
            fragments = self._execute(query, config, filter)
            if not fragments and config.strategy is not SearchStrategy.RELEVANCE:
                logger.info("%s search returned nothing, trying relevance", config.strategy.value)
                fallback_config, fallback_fragments = self._fallback(query, fallback_k, filter)
                if fallback_fragments:
                    config, fragments = fallback_config, fallback_fragments
                    fallback_used = True
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("Retrieval failed while %s, falling back to relevance: %s", state, e)
            if self.health:
                self.health.record_fallback(f"{state}: {e}")
            fallback_used = True
            config, fragments = self._fallback(query, fallback_k, filter)

        if rerank and fragments:
            fragments = self._boost(boost_query, fragments)
        self._annotate(fragments, analysis, config, fallback_used)
        result = RetrievalResult(
            fragments=fragments,
            analysis=analysis,
            config=config,
            sources=extract_sources(fragments),
            fallback_used=fallback_used,
            elapsed_ms=(time.monotonic() - start) * 1000,
        )

        self._record_search(result)
        if use_cache and self.cache is not None and fragments and not fallback_used:
            self.cache.set(key, replace(result, fragments=_copy_fragments(fragments)))
        logger.info(
            "Retrieved %d fragments with %s in %.0fms%s",
            len(fragments), config.strategy.value, result.elapsed_ms,
            " (fallback)" if fallback_used else "",
        )
        return result

    # ── Deletion & stats ─────────────────────────────

    def delete(
        self, ids: Optional[Sequence[str]] = None, filter: Optional[SearchFilter] = None,
    ) -> int:
        """Soft-delete active fragments by ids and/or filter; returns how many changed.

        A filter with no fields set scopes nothing, so it never deletes the
        whole collection.
        """
        if filter is not None and filter.is_empty():
            filter = None
        if ids is None and filter is None:
            raise ValueError("delete needs ids or a non-empty filter")
        if ids is not None and not ids and filter is None:
            return 0
        count = self.store.soft_delete(ids=list(ids) if ids else None, filter=filter)
        self._invalidate()
        if self.health:
            self.health.record_delete(count)
        logger.info("Soft-deleted %d fragments", count)
        return count

    def get(self, ids: Sequence[str]):
        return self.store.get(ids)

    def stats(self, filter: Optional[SearchFilter] = None) -> dict:
        data = {
            "active_fragments": self.store.count(filter),
            "deleted_fragments": self.store.count(filter, status=FragmentStatus.DELETED.value),
            "by_source": self.store.source_distribution(filter),
            "dimension": self.store.dimension,
        }
        if self.cache is not None:
            data["cache"] = self.cache.stats()
        if self.access is not None:
            data["access_updates_dropped"] = self.access.dropped
        if self.health:
            data["health"] = self.health.status
        return data
