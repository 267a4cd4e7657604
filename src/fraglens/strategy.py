# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Strategy + complexity -> concrete search parameters."""
import math

from .models import Complexity, SearchConfig, SearchStrategy

BASE_K = {
    Complexity.SIMPLE: 4,
    Complexity.MODERATE: 6,
    Complexity.COMPLEX: 10,
}

# strategy: (fetch multiplier, lambda, score threshold)
PROFILES = {
    SearchStrategy.RELEVANCE: (1, 1.0, 0.7),
    SearchStrategy.DIVERSITY: (5, 0.5, None),
    SearchStrategy.HYBRID: (3, 0.7, None),
}

DEFAULT_MAX_FETCH_K = 200


def _bounded(k: int, multiplier: float, max_fetch_k: int) -> tuple[int, int]:
    if max_fetch_k < 1:
        raise ValueError(f"max_fetch_k must be >= 1, got {max_fetch_k}")
    k = min(k, max_fetch_k)
    fetch_k = min(max(math.ceil(k * multiplier), k), max_fetch_k)
    return k, fetch_k


def resolve(
    strategy: SearchStrategy, complexity: Complexity,
    max_fetch_k: int = DEFAULT_MAX_FETCH_K,
) -> SearchConfig:
    """Pure lookup: k from complexity, fetch_k/lambda/threshold from strategy.

    Always 1 <= k <= fetch_k <= max_fetch_k and 0 <= lambda <= 1.
    """
    strategy = SearchStrategy(strategy)
    multiplier, lambda_mult, threshold = PROFILES[strategy]
    k, fetch_k = _bounded(BASE_K[Complexity(complexity)], multiplier, max_fetch_k)
    return SearchConfig(
        strategy=strategy,
        k=k,
        fetch_k=fetch_k,
        lambda_mult=lambda_mult,
        score_threshold=threshold,
    )


def with_k(config: SearchConfig, k: int, max_fetch_k: int = DEFAULT_MAX_FETCH_K) -> SearchConfig:
    """Same strategy for a caller-chosen k, keeping the fetch multiplier."""
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    multiplier = PROFILES[config.strategy][0]
    k, fetch_k = _bounded(k, multiplier, max_fetch_k)
    return SearchConfig(
        strategy=config.strategy,
        k=k,
        fetch_k=fetch_k,
        lambda_mult=config.lambda_mult,
        score_threshold=config.score_threshold,
    )
