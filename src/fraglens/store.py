# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Document store adapter: Fragments <-> ChromaDB

Two collections back one logical store:
- "<name>":            embedded fragments, HNSW index in cosine space
- "<name>_unembedded": blank fragments kept for audit; they hold a 1-d
                       placeholder vector and are never searched

ChromaDB has no unique indexes, so the (owner_id, content_hash) constraint
over active fragments is enforced here before each bulk insert, with the
check and the write serialised per store. Records that violate it are
rejected individually; the rest of the batch is written.

Metadata is flattened to ChromaDB scalars: tags become one boolean key per
tag ("tag:<name>") plus a comma-joined copy, custom_metadata is stored as
JSON, and ingestion time is kept both as ISO text and epoch seconds so date
filters can use numeric comparisons.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

import chromadb

from .config import Config
from .errors import DimensionMismatchError, FraglensError, StoreError
from .models import Fragment, FragmentMetadata, FragmentStatus, SearchFilter
from .timeouts import call_with_timeout

logger = logging.getLogger(__name__)

BATCH_SIZE = 5000
_PLACEHOLDER_VECTOR = [1.0]
_TAG_PREFIX = "tag:"


@dataclass
class WriteError:
    index: int
    id: str
    code: str
    message: str


@dataclass
class BulkWriteResult:
    inserted_ids: list[str] = field(default_factory=list)
    errors: list[WriteError] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


class DocumentStore(Protocol):
    @property
    def dimension(self) -> Optional[int]: ...

    def bulk_insert(self, fragments: Sequence[Fragment]) -> BulkWriteResult: ...

    def vector_search(
        self, vector: Sequence[float], num_candidates: int, limit: int,
        filter: Optional[SearchFilter] = None,
    ) -> list[tuple[Fragment, float]]: ...

    def scan(self, filter: Optional[SearchFilter] = None, limit: int = 1000) -> list[Fragment]: ...

    def get(self, ids: Sequence[str]) -> list[Fragment]: ...

    def soft_delete(
        self, ids: Optional[Sequence[str]] = None, filter: Optional[SearchFilter] = None,
    ) -> int: ...

    def increment_access(self, ids: Sequence[str]) -> int: ...

    def count(self, filter: Optional[SearchFilter] = None, status: Optional[str] = "active") -> int: ...

    def source_distribution(self, filter: Optional[SearchFilter] = None) -> dict[str, int]: ...


# ── Filter translation ───────────────────────────────

def build_where(filter: Optional[SearchFilter] = None, status: Optional[str] = "active") -> Optional[dict]:
    """Translate a SearchFilter into a ChromaDB where clause."""
    clauses: list[dict] = []
    if status is not None:
        clauses.append({"status": status})
    if filter is not None:
        if filter.owner_id:
            clauses.append({"owner_id": filter.owner_id})
        if filter.project_id:
            clauses.append({"project_id": filter.project_id})
        if filter.document_ids:
            clauses.append({"document_id": {"$in": list(filter.document_ids)}})
        if filter.sources:
            clauses.append({"source": {"$in": list(filter.sources)}})
        if filter.tags:
            tag_clauses = [{f"{_TAG_PREFIX}{t}": True} for t in filter.tags]
            clauses.append(tag_clauses[0] if len(tag_clauses) == 1 else {"$or": tag_clauses})
        if filter.ingested_after:
            clauses.append({"ingested_ts": {"$gte": filter.ingested_after.timestamp()}})
        if filter.ingested_before:
            clauses.append({"ingested_ts": {"$lte": filter.ingested_before.timestamp()}})
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


# ── Record (de)serialisation ─────────────────────────

def to_record_metadata(fragment: Fragment) -> dict[str, Any]:
    meta = fragment.metadata
    record: dict[str, Any] = {
        "owner_id": meta.owner_id,
        "content_hash": fragment.content_hash,
        "status": fragment.status.value,
        "ingested_at": fragment.ingested_at.isoformat(),
        "ingested_ts": fragment.ingested_at.timestamp(),
        "access_count": fragment.access_count,
        "source": meta.source,
        "source_type": meta.source_type,
        "embedded": fragment.is_embedded,
        "tags": ",".join(meta.tags),
    }
    for key in ("project_id", "document_id", "chunk_index", "total_chunks"):
        value = getattr(meta, key)
        if value is not None:
            record[key] = value
    for tag in meta.tags:
        record[f"{_TAG_PREFIX}{tag}"] = True
    if meta.custom_metadata:
        record["custom_metadata"] = json.dumps(meta.custom_metadata, sort_keys=True)
    return record


def from_record(
    fragment_id: str, document: Optional[str], embedding, record: dict[str, Any],
) -> Fragment:
    tags = tuple(t for t in (record.get("tags") or "").split(",") if t)
    custom = json.loads(record["custom_metadata"]) if record.get("custom_metadata") else {}
    metadata = FragmentMetadata(
        owner_id=record["owner_id"],
        project_id=record.get("project_id"),
        document_id=record.get("document_id"),
        chunk_index=record.get("chunk_index"),
        total_chunks=record.get("total_chunks"),
        source=record.get("source", "user-upload"),
        source_type=record.get("source_type", "text"),
        tags=tags,
        custom_metadata=custom,
    )
    if record.get("embedded", True) and embedding is not None:
        vector = [float(x) for x in embedding]
    else:
        vector = []
    ingested_at = record.get("ingested_at")
    return Fragment(
        id=fragment_id,
        content=document or "",
        content_hash=record["content_hash"],
        embedding=vector,
        metadata=metadata,
        status=FragmentStatus(record.get("status", "active")),
        ingested_at=(
            datetime.fromisoformat(ingested_at) if ingested_at
            else datetime.now(timezone.utc)
        ),
        access_count=int(record.get("access_count", 0)),
    )


def _column(result: dict, key: str, n: int) -> list:
    values = result.get(key)
    if values is None:
        return [None] * n
    return list(values)


class ChromaDocumentStore:
    def __init__(self, client, collection_name: str = "fragments", timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout
        self._collection_name = collection_name
        self.collection = client.get_or_create_collection(
            collection_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )
        self.unembedded = client.get_or_create_collection(
            f"{collection_name}_unembedded",
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )
        self._dimension: Optional[int] = None
        self._write_lock = threading.Lock()
        self._load_dimension()

    @classmethod
    def from_config(cls, config: Config) -> "ChromaDocumentStore":
        if config.in_memory:
            client = chromadb.EphemeralClient()
        else:
            client = chromadb.PersistentClient(path=config.vectorstore_path)
        return cls(client, config.collection_name, timeout=config.store_timeout)

    def _load_dimension(self):
        """Read the stored vector dimension from one existing record."""
        if self.collection.count() == 0:
            return
        probe = self.collection.get(limit=1, include=["embeddings"])
        embs = probe.get("embeddings")
        if embs is not None and len(embs) > 0 and embs[0] is not None:
            self._dimension = len(embs[0])

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _run(self, fn, *args, operation: str, **kwargs):
        try:
            return call_with_timeout(fn, *args, timeout=self.timeout, operation=operation, **kwargs)
        except FraglensError:
            raise
        except Exception as e:
            raise StoreError(f"{operation} failed: {e}") from e

    def _check_dimension(self, vector: Sequence[float]):
        if self._dimension is not None and len(vector) != self._dimension:
            raise DimensionMismatchError(len(vector), self._dimension)

    def _collections(self):
        return (self.collection, self.unembedded)

    # ── Writes ───────────────────────────────────────

    def _existing_ids(self, ids: list[str]) -> set[str]:
        found: set[str] = set()
        for coll in self._collections():
            for i in range(0, len(ids), BATCH_SIZE):
                result = self._run(coll.get, ids=ids[i:i + BATCH_SIZE], include=[], operation="get ids")
                found.update(result["ids"])
        return found

    def _active_hash_keys(self, hashes: list[str]) -> set[tuple[str, str]]:
        """(owner_id, content_hash) pairs already held by active fragments."""
        keys: set[tuple[str, str]] = set()
        unique = sorted(set(hashes))
        for coll in self._collections():
            for i in range(0, len(unique), BATCH_SIZE):
                where = {"$and": [
                    {"status": FragmentStatus.ACTIVE.value},
                    {"content_hash": {"$in": unique[i:i + BATCH_SIZE]}},
                ]}
                result = self._run(coll.get, where=where, include=["metadatas"], operation="get hashes")
                for record in result.get("metadatas") or []:
                    keys.add((record["owner_id"], record["content_hash"]))
        return keys

    def bulk_insert(self, fragments: Sequence[Fragment]) -> BulkWriteResult:
        """Unordered insert: each record succeeds or fails on its own.

        The duplicate check and the write run under one lock, so concurrent
        inserts of the same content for one owner keep a single active copy.
        """
        if not fragments:
            return BulkWriteResult()
        with self._write_lock:
            return self._insert(fragments)

    def _insert(self, fragments: Sequence[Fragment]) -> BulkWriteResult:
        result = BulkWriteResult()

        dim = self._dimension
        for f in fragments:
            if f.is_embedded:
                if dim is None:
                    dim = len(f.embedding)
                elif len(f.embedding) != dim:
                    raise DimensionMismatchError(len(f.embedding), dim)

        existing_ids = self._existing_ids([f.id for f in fragments])
        taken = self._active_hash_keys([f.content_hash for f in fragments])
        seen_ids: set[str] = set()

        embedded: list[Fragment] = []
        blank: list[Fragment] = []
        for idx, f in enumerate(fragments):
            if f.id in existing_ids or f.id in seen_ids:
                result.errors.append(WriteError(idx, f.id, "duplicate_id", f"id {f.id} already exists"))
                continue
            key = (f.metadata.owner_id, f.content_hash)
            if f.status == FragmentStatus.ACTIVE and key in taken:
                result.errors.append(WriteError(
                    idx, f.id, "duplicate_content",
                    f"owner {f.metadata.owner_id} already has an active fragment with this content",
                ))
                continue
            seen_ids.add(f.id)
            if f.status == FragmentStatus.ACTIVE:
                taken.add(key)
            (embedded if f.is_embedded else blank).append(f)

        for coll, batch_source, use_placeholder in (
            (self.collection, embedded, False),
            (self.unembedded, blank, True),
        ):
            for i in range(0, len(batch_source), BATCH_SIZE):
                batch = batch_source[i:i + BATCH_SIZE]
                self._run(
                    coll.add,
                    ids=[f.id for f in batch],
                    documents=[f.content for f in batch],
                    embeddings=[
                        _PLACEHOLDER_VECTOR if use_placeholder else f.embedding for f in batch
                    ],
                    metadatas=[to_record_metadata(f) for f in batch],
                    operation="bulk insert",
                )
                result.inserted_ids.extend(f.id for f in batch)

        if embedded and self._dimension is None:
            self._dimension = dim
        return result

    def _update_matching(self, where: Optional[dict], ids: Optional[list[str]], mutate) -> int:
        changed = 0
        for coll in self._collections():
            kwargs: dict[str, Any] = {"include": ["metadatas"]}
            if ids is not None:
                kwargs["ids"] = ids
            if where is not None:
                kwargs["where"] = where
            found = self._run(coll.get, operation="get for update", **kwargs)
            if not found["ids"]:
                continue
            metadatas = [mutate(dict(m)) for m in found["metadatas"]]
            for i in range(0, len(found["ids"]), BATCH_SIZE):
                self._run(
                    coll.update,
                    ids=found["ids"][i:i + BATCH_SIZE],
                    metadatas=metadatas[i:i + BATCH_SIZE],
                    operation="update",
                )
            changed += len(found["ids"])
        return changed

    def soft_delete(
        self, ids: Optional[Sequence[str]] = None, filter: Optional[SearchFilter] = None,
    ) -> int:
        """Set status=deleted on active fragments matching ids and/or filter."""
        if not ids and (filter is None or filter.is_empty()):
            raise ValueError("soft_delete needs ids or a filter")

        def _mark(record: dict) -> dict:
            record["status"] = FragmentStatus.DELETED.value
            return record

        where = build_where(filter, status=FragmentStatus.ACTIVE.value)
        return self._update_matching(where, list(ids) if ids else None, _mark)

    def increment_access(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0

        def _bump(record: dict) -> dict:
            record["access_count"] = int(record.get("access_count", 0)) + 1
            return record

        return self._update_matching(None, list(dict.fromkeys(ids)), _bump)

    # ── Reads ────────────────────────────────────────

    def vector_search(
        self, vector: Sequence[float], num_candidates: int, limit: int,
        filter: Optional[SearchFilter] = None,
    ) -> list[tuple[Fragment, float]]:
        """Nearest active fragments by cosine similarity, best first."""
        self._check_dimension(vector)
        total = self._run(self.collection.count, operation="count")
        if total == 0 or limit <= 0:
            return []
        kwargs: dict[str, Any] = {
            "query_embeddings": [list(vector)],
            "n_results": min(max(num_candidates, limit), total),
            "include": ["documents", "metadatas", "embeddings", "distances"],
        }
        where = build_where(filter)
        if where is not None:
            kwargs["where"] = where
        results = self._run(self.collection.query, operation="vector search", **kwargs)

        ids = results["ids"][0] if results.get("ids") else []
        if not ids:
            return []
        n = len(ids)
        documents = _column(results, "documents", 1)[0] or [None] * n
        metadatas = _column(results, "metadatas", 1)[0] or [None] * n
        embeddings = _column(results, "embeddings", 1)[0]
        if embeddings is None:
            embeddings = [None] * n
        distances = _column(results, "distances", 1)[0] or [1.0] * n

        hits = [
            (from_record(fid, doc, emb, meta), 1.0 - float(dist))
            for fid, doc, emb, meta, dist in zip(ids, documents, embeddings, metadatas, distances)
        ]
        hits.sort(key=lambda h: h[1], reverse=True)
        return hits[:limit]

    def scan(self, filter: Optional[SearchFilter] = None, limit: int = 1000) -> list[Fragment]:
        """Active embedded fragments matching filter, with their vectors."""
        kwargs: dict[str, Any] = {
            "limit": limit,
            "include": ["documents", "metadatas", "embeddings"],
        }
        where = build_where(filter)
        if where is not None:
            kwargs["where"] = where
        found = self._run(self.collection.get, operation="scan", **kwargs)
        return self._fragments_from_get(found)

    def get(self, ids: Sequence[str]) -> list[Fragment]:
        """Fragments by id, any status, including blank ones."""
        if not ids:
            return []
        fragments: list[Fragment] = []
        for coll in self._collections():
            found = self._run(
                coll.get, ids=list(ids),
                include=["documents", "metadatas", "embeddings"], operation="get",
            )
            fragments.extend(self._fragments_from_get(found))
        order = {fid: i for i, fid in enumerate(ids)}
        fragments.sort(key=lambda f: order.get(f.id, len(order)))
        return fragments

    @staticmethod
    def _fragments_from_get(found: dict) -> list[Fragment]:
        ids = found.get("ids") or []
        n = len(ids)
        documents = _column(found, "documents", n)
        metadatas = _column(found, "metadatas", n)
        embeddings = _column(found, "embeddings", n)
        return [
            from_record(fid, doc, emb, meta)
            for fid, doc, emb, meta in zip(ids, documents, embeddings, metadatas)
        ]

    def count(self, filter: Optional[SearchFilter] = None, status: Optional[str] = "active") -> int:
        total = 0
        where = build_where(filter, status=status)
        for coll in self._collections():
            if where is None:
                total += self._run(coll.count, operation="count")
            else:
                found = self._run(coll.get, where=where, include=[], operation="count")
                total += len(found["ids"])
        return total

    def source_distribution(self, filter: Optional[SearchFilter] = None) -> dict[str, int]:
        """Active fragment counts per source tag."""
        counts: dict[str, int] = {}
        where = build_where(filter)
        for coll in self._collections():
            found = self._run(coll.get, where=where, include=["metadatas"], operation="stats")
            for record in found.get("metadatas") or []:
                source = record.get("source", "unknown")
                counts[source] = counts.get(source, 0) + 1
        return counts
