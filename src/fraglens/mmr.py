# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Maximal Marginal Relevance re-ranking.

    mmr(c) = lambda * cos(q, c) + (1 - lambda) * (1 - max_{s in S} cos(c, s))

Greedy selection from fetch_k candidates, first-seen candidate wins ties.
The returned score is the MMR value at the moment of selection, and the
plain query similarity is kept in the "relevance" annotation.
"""
import logging
import math
from typing import Optional, Sequence

from .embeddings import EmbeddingProvider
from .errors import DimensionMismatchError
from .executor import SimilaritySearchExecutor
from .models import Fragment, ScoredFragment, SearchFilter
from .similarity import cosine_similarities

logger = logging.getLogger(__name__)


def _validate(k: int, lambda_mult: float):
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    if not 0.0 <= lambda_mult <= 1.0:
        raise ValueError(f"lambda_mult must be within [0, 1], got {lambda_mult}")


def rerank(
    query_vector: Sequence[float],
    candidates: Sequence[tuple[Fragment, Sequence[float]]],
    k: int,
    lambda_mult: float,
) -> list[ScoredFragment]:
    """Pure greedy MMR over (fragment, vector) pairs."""
    _validate(k, lambda_mult)
    if not candidates:
        return []

    vectors = [list(v) for _, v in candidates]
    relevance = cosine_similarities(query_vector, vectors)
    closest = [-math.inf] * len(candidates)
    remaining = list(range(len(candidates)))
    selected: list[ScoredFragment] = []

    for _ in range(min(k, len(candidates))):
        best = None
        best_score = -math.inf
        for i in remaining:
            diversity = 1.0 if not selected else 1.0 - closest[i]
            score = lambda_mult * relevance[i] + (1.0 - lambda_mult) * diversity
            if not math.isfinite(score):
                continue
            if best is None or score > best_score:
                best, best_score = i, score
        if best is None:
            break

        remaining.remove(best)
        selected.append(ScoredFragment(
            fragment=candidates[best][0],
            score=best_score,
            annotations={"relevance": relevance[best]},
        ))
        if remaining:
            sims = cosine_similarities(vectors[best], [vectors[i] for i in remaining])
            for i, sim in zip(remaining, sims):
                closest[i] = max(closest[i], sim)

    return selected


class MMRReranker:
    def __init__(
        self,
        embeddings: EmbeddingProvider,
        executor: SimilaritySearchExecutor,
        max_fetch_k: int = 200,
    ):
        self.embeddings = embeddings
        self.executor = executor
        self.max_fetch_k = max_fetch_k

    def mmr_search(
        self, query: str, k: int, fetch_k: int, lambda_mult: float = 0.5,
        filter: Optional[SearchFilter] = None,
    ) -> list[ScoredFragment]:
        _validate(k, lambda_mult)
        if not query or not query.strip():
            return []
        try:
            query_vector = self.embeddings.embed_query(query)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("MMR query embedding failed, returning no results: %s", e)
            return []
        return self.mmr_search_by_vector(query_vector, k, fetch_k, lambda_mult, filter)

    def mmr_search_by_vector(
        self, query_vector: Sequence[float], k: int, fetch_k: int,
        lambda_mult: float = 0.5, filter: Optional[SearchFilter] = None,
    ) -> list[ScoredFragment]:
        """MMR for a query that is already embedded."""
        _validate(k, lambda_mult)
        fetch_k = max(1, min(fetch_k, self.max_fetch_k))
        try:
            candidates = self.executor.search_by_vector(query_vector, fetch_k, filter)
            pairs = self._candidate_vectors(candidates)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("MMR search failed, returning no results: %s", e)
            return []
        return rerank(query_vector, pairs, k, lambda_mult)

    def _candidate_vectors(
        self, candidates: list[ScoredFragment],
    ) -> list[tuple[Fragment, list[float]]]:
        """Stored vectors where present; missing ones re-embedded in one batch."""
        usable = [c.fragment for c in candidates if c.fragment.content.strip()]
        missing = [f for f in usable if not f.is_embedded]
        fresh: dict[str, list[float]] = {}
        if missing:
            vectors = self.embeddings.embed_batch([f.content.strip() for f in missing])
            fresh = {f.id: v for f, v in zip(missing, vectors)}
        return [(f, f.embedding if f.is_embedded else fresh[f.id]) for f in usable]
