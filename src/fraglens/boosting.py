# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Post-retrieval boosting: nudges search scores with signals the vector
index cannot see.

  +0.1  per occurrence of a query term in the fragment text
  +0.5  if the fragment was ingested within the last 7 days
  +0.3  if the fragment was returned more than 10 times before

The boosted value replaces the score; the search score is kept in the
"base_score" annotation.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from .models import ScoredFragment

TERM_WEIGHT = 0.1
RECENT_WINDOW = timedelta(days=7)
RECENT_BOOST = 0.5
POPULAR_ACCESS_COUNT = 10
POPULAR_BOOST = 0.3


def query_terms(query: str) -> list[str]:
    return [t for t in query.lower().split() if t]


def boost_score(
    sf: ScoredFragment, terms: Sequence[str], now: datetime,
) -> float:
    fragment = sf.fragment
    content = fragment.content.lower()
    score = sf.score + TERM_WEIGHT * sum(content.count(t) for t in terms)

    ingested_at = fragment.ingested_at
    if ingested_at.tzinfo is None:
        ingested_at = ingested_at.replace(tzinfo=timezone.utc)
    if now - ingested_at < RECENT_WINDOW:
        score += RECENT_BOOST
    if fragment.access_count > POPULAR_ACCESS_COUNT:
        score += POPULAR_BOOST
    return score


def boost(
    query: str, fragments: Sequence[ScoredFragment], k: int,
    now: Optional[datetime] = None,
) -> list[ScoredFragment]:
    """Re-score and re-sort; equal scores keep their search order."""
    now = now or datetime.now(timezone.utc)
    terms = query_terms(query)
    boosted = [
        ScoredFragment(
            fragment=sf.fragment,
            score=boost_score(sf, terms, now),
            annotations={**sf.annotations, "base_score": sf.score},
        )
        for sf in fragments
    ]
    boosted.sort(key=lambda sf: sf.score, reverse=True)
    return boosted[:k]
