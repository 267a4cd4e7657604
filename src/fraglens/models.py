# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Data model: fragments and their metadata, plus the ephemeral analysis,
config and result types that flow through a retrieval call.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import InvalidFragmentError

MAX_CUSTOM_METADATA_KEYS = 32
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")
_SCALARS = (str, int, float, bool)


class FragmentStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class SearchStrategy(str, Enum):
    RELEVANCE = "relevance"
    DIVERSITY = "diversity"
    HYBRID = "hybrid"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @property
    def level(self) -> int:
        return list(Complexity).index(self)


class Specificity(str, Enum):
    GENERAL = "general"
    FOCUSED = "focused"
    SPECIFIC = "specific"

    @property
    def level(self) -> int:
        return list(Specificity).index(self)


def validate_identifier(value: Optional[str], name: str, required: bool = False) -> None:
    if value is None:
        if required:
            raise InvalidFragmentError(f"{name} is required")
        return
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise InvalidFragmentError(
            f"{name} must be 1-128 chars of [A-Za-z0-9_.:@-], got {value!r}"
        )


@dataclass(frozen=True)
class FragmentMetadata:
    owner_id: str
    project_id: Optional[str] = None
    document_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    source: str = "user-upload"
    source_type: str = "text"
    tags: tuple[str, ...] = ()
    custom_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        validate_identifier(self.owner_id, "owner_id", required=True)
        validate_identifier(self.project_id, "project_id")
        validate_identifier(self.document_id, "document_id")

        if self.chunk_index is not None and self.chunk_index < 0:
            raise InvalidFragmentError("chunk_index must be >= 0")
        if self.total_chunks is not None and self.total_chunks < 1:
            raise InvalidFragmentError("total_chunks must be >= 1")
        if (
            self.chunk_index is not None
            and self.total_chunks is not None
            and self.chunk_index >= self.total_chunks
        ):
            raise InvalidFragmentError(
                f"chunk_index {self.chunk_index} must be < total_chunks {self.total_chunks}"
            )

        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))
        for tag in self.tags:
            if not isinstance(tag, str) or not tag.strip():
                raise InvalidFragmentError(f"tags must be non-empty strings, got {tag!r}")

        if len(self.custom_metadata) > MAX_CUSTOM_METADATA_KEYS:
            raise InvalidFragmentError(
                f"custom_metadata is limited to {MAX_CUSTOM_METADATA_KEYS} keys"
            )
        for key, value in self.custom_metadata.items():
            if not isinstance(key, str) or not isinstance(value, _SCALARS):
                raise InvalidFragmentError(
                    f"custom_metadata[{key!r}] must map a string to a scalar value"
                )

    def with_chunk(self, chunk_index: int, total_chunks: int, **custom: Any) -> "FragmentMetadata":
        merged = {**self.custom_metadata, **custom}
        return FragmentMetadata(
            owner_id=self.owner_id,
            project_id=self.project_id,
            document_id=self.document_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            source=self.source,
            source_type=self.source_type,
            tags=self.tags,
            custom_metadata=merged,
        )


@dataclass
class Fragment:
    id: str
    content: str
    content_hash: str
    embedding: list[float]
    metadata: FragmentMetadata
    status: FragmentStatus = FragmentStatus.ACTIVE
    ingested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    access_count: int = 0

    @property
    def is_embedded(self) -> bool:
        return len(self.embedding) > 0

    def to_dict(self, include_embedding: bool = False) -> dict:
        d = {
            "id": self.id,
            "content": self.content,
            "content_hash": self.content_hash,
            "owner_id": self.metadata.owner_id,
            "project_id": self.metadata.project_id,
            "document_id": self.metadata.document_id,
            "chunk_index": self.metadata.chunk_index,
            "total_chunks": self.metadata.total_chunks,
            "source": self.metadata.source,
            "source_type": self.metadata.source_type,
            "tags": list(self.metadata.tags),
            "custom_metadata": dict(self.metadata.custom_metadata),
            "status": self.status.value,
            "ingested_at": self.ingested_at.isoformat(),
            "access_count": self.access_count,
        }
        if include_embedding:
            d["embedding"] = list(self.embedding)
        return d


@dataclass
class FragmentInput:
    """A fragment as handed to the ingestion pipeline."""
    content: str
    metadata: FragmentMetadata
    embedding: Optional[list[float]] = None
    id: Optional[str] = None


@dataclass
class SearchFilter:
    """Caller filter; always combined with status=active by the store."""
    owner_id: Optional[str] = None
    project_id: Optional[str] = None
    document_ids: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    ingested_after: Optional[datetime] = None
    ingested_before: Optional[datetime] = None

    def __post_init__(self):
        validate_identifier(self.owner_id, "owner_id")
        validate_identifier(self.project_id, "project_id")
        self.document_ids = tuple(self.document_ids)
        self.sources = tuple(self.sources)
        self.tags = tuple(self.tags)

    def cache_key(self) -> str:
        parts = [
            self.owner_id or "",
            self.project_id or "",
            ",".join(sorted(self.document_ids)),
            ",".join(sorted(self.sources)),
            ",".join(sorted(self.tags)),
            self.ingested_after.isoformat() if self.ingested_after else "",
            self.ingested_before.isoformat() if self.ingested_before else "",
        ]
        return "|".join(parts)

    def is_empty(self) -> bool:
        return not any((
            self.owner_id, self.project_id, self.document_ids, self.sources,
            self.tags, self.ingested_after, self.ingested_before,
        ))


@dataclass
class ScoredFragment:
    fragment: Fragment
    score: float
    annotations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = self.fragment.to_dict()
        d["score"] = self.score
        d.update(self.annotations)
        return d


@dataclass
class QueryFeatures:
    length: int = 0
    word_count: int = 0
    technical_terms: int = 0
    entities: int = 0
    question_type: str = "unknown"
    has_comparison: bool = False
    has_constraints: bool = False
    has_spatial_temporal: bool = False
    has_enumeration: bool = False


@dataclass
class QueryAnalysis:
    complexity: Complexity
    specificity: Specificity
    recommended_strategy: SearchStrategy
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    features: QueryFeatures = field(default_factory=QueryFeatures)

    def __post_init__(self):
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    def to_dict(self) -> dict:
        return {
            "complexity": self.complexity.value,
            "specificity": self.specificity.value,
            "strategy": self.recommended_strategy.value,
            "confidence": round(self.confidence, 3),
            "reasoning": list(self.reasoning),
        }


@dataclass(frozen=True)
class SearchConfig:
    strategy: SearchStrategy
    k: int
    fetch_k: int
    lambda_mult: float
    score_threshold: Optional[float] = None


@dataclass
class RetrievalResult:
    fragments: list[ScoredFragment] = field(default_factory=list)
    analysis: Optional[QueryAnalysis] = None
    config: Optional[SearchConfig] = None
    sources: list[str] = field(default_factory=list)
    cache_hit: bool = False
    fallback_used: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "fragments": [sf.to_dict() for sf in self.fragments],
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "sources": list(self.sources),
            "cache_hit": self.cache_hit,
            "fallback_used": self.fallback_used,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }
