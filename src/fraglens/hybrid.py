# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Merge relevance and diversity result lists into one ranked list."""
from itertools import zip_longest
from typing import Sequence

from .models import ScoredFragment


def merge(
    relevance: Sequence[ScoredFragment],
    diversity: Sequence[ScoredFragment],
    k: int,
    diversity_boost: float = 1.05,
) -> list[ScoredFragment]:
    """Interleave diversity[0], relevance[0], diversity[1], ... then rank.

    Duplicates (same content hash) keep their first occurrence. Scores of
    diversity-sourced entries are multiplied by diversity_boost. At most k
    results, best first; equal scores keep interleave order.
    """
    if k < 1:
        return []
    merged: list[ScoredFragment] = []
    seen: set[str] = set()
    for div, rel in zip_longest(diversity, relevance):
        for item, origin in ((div, "diversity"), (rel, "relevance")):
            if item is None or item.fragment.content_hash in seen:
                continue
            seen.add(item.fragment.content_hash)
            score = item.score * diversity_boost if origin == "diversity" else item.score
            merged.append(ScoredFragment(
                fragment=item.fragment,
                score=score,
                annotations={**item.annotations, "origin": origin},
            ))
    merged.sort(key=lambda sf: sf.score, reverse=True)
    return merged[:k]
