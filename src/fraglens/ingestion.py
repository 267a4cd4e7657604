# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Fragments -> Embeddings -> Document store

1. Blank fragments get ids but no embedding; they are stored for audit and
   never match a search.
2. Non-blank fragments without a precomputed vector are embedded in ONE
   batch call; vectors are mapped back by position.
3. Records are bulk-inserted unordered. Duplicates (same owner + content
   hash among active fragments, or a reused id) are rejected per record,
   logged and counted; the batch carries on. Re-ingesting unchanged content
   is a no-op, and the stored fragment is left untouched.

Embedding failures abort the call (EmbeddingError). Store outages raise
StoreError. Duplicate rejections never raise.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from .chunking import ChunkStrategy, Chunker
from .embeddings import EmbeddingProvider
from .errors import DimensionMismatchError, EmbeddingError, FraglensError
from .hashing import content_hash
from .health import HealthTracker
from .models import Fragment, FragmentInput, FragmentMetadata, FragmentStatus
from .store import DocumentStore, WriteError

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    attempted: int = 0
    inserted: int = 0
    duplicates: int = 0
    empty: int = 0
    rejected: list[WriteError] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "empty": self.empty,
            "rejected_ids": [e.id for e in self.rejected],
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class IngestionPipeline:
    def __init__(
        self,
        store: DocumentStore,
        embeddings: EmbeddingProvider,
        chunker: Optional[Chunker] = None,
        health: Optional[HealthTracker] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.chunker = chunker or Chunker()
        self.health = health
        self.last_report: Optional[IngestionReport] = None

    def ingest(self, fragments: Sequence[FragmentInput]) -> list[str]:
        """Embed (where needed) and store fragments; returns ids for all of them."""
        return self._ingest(list(fragments))

    def add_vectors(
        self, vectors: Sequence[Sequence[float]], fragments: Sequence[FragmentInput],
    ) -> list[str]:
        """Store fragments with caller-computed embeddings (no provider call)."""
        if len(vectors) != len(fragments):
            raise ValueError(
                f"Got {len(vectors)} vectors for {len(fragments)} fragments"
            )
        dim: Optional[int] = None
        inputs: list[FragmentInput] = []
        for vector, fragment in zip(vectors, fragments):
            vector = [float(x) for x in vector]
            if fragment.content.strip() and not vector:
                raise ValueError("add_vectors needs a vector for every non-blank fragment")
            if vector:
                if dim is None:
                    dim = len(vector)
                elif len(vector) != dim:
                    raise DimensionMismatchError(len(vector), dim)
            inputs.append(replace(fragment, embedding=vector))
        return self._ingest(inputs, embed_missing=False)

    def ingest_document(
        self, text: str, metadata: FragmentMetadata,
        strategy: Optional[ChunkStrategy] = None,
    ) -> list[str]:
        """Chunk a whole document and ingest the chunks in order."""
        chunks = self.chunker.chunk(text, strategy)
        if not chunks:
            logger.info("Document for owner %s produced no chunks", metadata.owner_id)
            return []
        total = len(chunks)
        inputs = [
            FragmentInput(
                content=chunk.text,
                metadata=metadata.with_chunk(i, total, **chunk.custom_metadata()),
            )
            for i, chunk in enumerate(chunks)
        ]
        return self._ingest(inputs)

    # ── Internals ────────────────────────────────────

    def _embed(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self.embeddings.embed_batch(texts)
        except EmbeddingError:
            raise
        except (FraglensError, ValueError) as e:
            raise EmbeddingError(f"Embedding {len(texts)} fragments failed: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Provider returned {len(vectors)} vectors for {len(texts)} texts")
        return vectors

    def _ingest(self, inputs: list[FragmentInput], embed_missing: bool = True) -> list[str]:
        start = time.monotonic()
        report = IngestionReport(attempted=len(inputs))
        if not inputs:
            self.last_report = report
            return []

        ids = [f.id or uuid.uuid4().hex for f in inputs]
        vectors: list[list[float]] = [[] for _ in inputs]

        to_embed: list[int] = []
        for i, f in enumerate(inputs):
            if not f.content.strip():
                report.empty += 1
            elif f.embedding:
                vectors[i] = list(f.embedding)
            elif embed_missing:
                to_embed.append(i)

        if report.empty:
            logger.warning("%d of %d fragments are blank; stored without embeddings",
                           report.empty, len(inputs))

        if to_embed:
            try:
                embedded = self._embed([inputs[i].content.strip() for i in to_embed])
            except EmbeddingError as e:
                if self.health:
                    self.health.record_ingest(ok=False, attempted=len(inputs), error=str(e))
                logger.error("Ingestion aborted: %s", e)
                raise
            for i, vector in zip(to_embed, embedded):
                vectors[i] = vector

        now = datetime.now(timezone.utc)
        records = [
            Fragment(
                id=fid,
                content=f.content,
                content_hash=content_hash(f.content),
                embedding=vector,
                metadata=f.metadata,
                status=FragmentStatus.ACTIVE,
                ingested_at=now,
                access_count=0,
            )
            for fid, f, vector in zip(ids, inputs, vectors)
        ]

        try:
            result = self.store.bulk_insert(records)
        except FraglensError as e:
            if self.health:
                self.health.record_ingest(ok=False, attempted=len(inputs), error=str(e))
            logger.error("Ingestion write failed: %s", e)
            raise

        report.inserted = result.inserted_count
        report.rejected = result.errors
        report.duplicates = sum(1 for e in result.errors if e.code.startswith("duplicate"))
        report.elapsed_ms = (time.monotonic() - start) * 1000
        self.last_report = report

        if result.errors:
            logger.info(
                "Fragments inserted with duplicates skipped: %d inserted, %d rejected (%s)",
                report.inserted, len(result.errors),
                ", ".join(f"{e.id}:{e.code}" for e in result.errors[:20]),
            )
        logger.info("Ingested %d/%d fragments in %.0fms",
                    report.inserted, report.attempted, report.elapsed_ms)
        if self.health:
            self.health.record_ingest(
                ok=True, attempted=report.attempted,
                inserted=report.inserted, duplicates=report.duplicates,
            )
        return ids
