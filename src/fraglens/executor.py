# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Similarity search: query -> embedding -> ANN over active fragments.

The ANN query over-fetches (k * over_fetch_factor candidates) so the HNSW
graph has room to satisfy the metadata filter. If the index errors or
comes back empty, a bounded filtered scan is ranked by exact cosine
similarity instead.

Search never raises for dependency failures: it logs and returns []. Only a
vector dimension mismatch propagates, since that is a configuration fault.
"""
import logging
from typing import Optional, Sequence

from .embeddings import EmbeddingProvider
from .errors import DimensionMismatchError
from .models import Fragment, ScoredFragment, SearchFilter
from .similarity import cosine_similarities
from .store import DocumentStore

logger = logging.getLogger(__name__)


class SimilaritySearchExecutor:
    def __init__(
        self,
        embeddings: EmbeddingProvider,
        store: DocumentStore,
        over_fetch_factor: int = 10,
        fallback_scan_limit: int = 1000,
    ):
        self.embeddings = embeddings
        self.store = store
        self.over_fetch_factor = max(1, over_fetch_factor)
        self.fallback_scan_limit = fallback_scan_limit

    def search(
        self, query: str, k: int, filter: Optional[SearchFilter] = None,
        score_threshold: Optional[float] = None,
    ) -> list[ScoredFragment]:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if not query or not query.strip():
            return []
        try:
            vector = self.embeddings.embed_query(query)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("Query embedding failed, returning no results: %s", e)
            return []
        return self.search_by_vector(vector, k, filter, score_threshold)

    def search_by_vector(
        self, vector: Sequence[float], k: int, filter: Optional[SearchFilter] = None,
        score_threshold: Optional[float] = None,
    ) -> list[ScoredFragment]:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        hits: list[tuple[Fragment, float]] = []
        try:
            hits = self.store.vector_search(
                vector, num_candidates=k * self.over_fetch_factor, limit=k, filter=filter,
            )
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("Vector search failed, falling back to scan: %s", e)

        if not hits:
            try:
                hits = self._scan_rank(vector, k, filter)
            except DimensionMismatchError:
                raise
            except Exception as e:
                logger.warning("Fallback scan failed, returning no results: %s", e)
                return []

        results = []
        for fragment, score in hits:
            score = max(-1.0, min(1.0, float(score)))
            if score_threshold is not None and score < score_threshold:
                continue
            results.append(ScoredFragment(fragment=fragment, score=score))
        return results[:k]

    def _scan_rank(
        self, vector: Sequence[float], k: int, filter: Optional[SearchFilter],
    ) -> list[tuple[Fragment, float]]:
        fragments = [
            f for f in self.store.scan(filter, limit=self.fallback_scan_limit)
            if f.is_embedded
        ]
        if not fragments:
            return []
        scores = cosine_similarities(vector, [f.embedding for f in fragments])
        ranked = sorted(zip(fragments, scores), key=lambda h: h[1], reverse=True)
        logger.debug("Fallback scan ranked %d fragments", len(ranked))
        return ranked[:k]
