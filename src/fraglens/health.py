# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Centralized health/status tracker – shared across ingestion, retriever,
access recorder and the tool server.
Thread-safe, no external dependencies.
"""
import threading
from datetime import datetime, timezone


class HealthTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {
            "last_ingest_at": None,
            "last_ingest_ok": False,
            "last_ingest_attempted": 0,
            "last_ingest_inserted": 0,
            "last_ingest_duplicates": 0,
            "last_ingest_error": None,
            "started_at": datetime.now(timezone.utc).isoformat(),

            "searches_total": 0,
            "searches_hits": 0,
            "searches_misses": 0,
            "searches_by_strategy": {
                "relevance": 0,
                "diversity": 0,
                "hybrid": 0,
            },
            "last_search_at": None,
            "fallbacks": 0,
            "last_fallback_error": None,
            "cache_hits": 0,

            "deleted_total": 0,
            "access_updates_dropped": 0,
        }

    def record_ingest(
        self, ok: bool, attempted: int = 0, inserted: int = 0,
        duplicates: int = 0, error: str | None = None,
    ):
        with self._lock:
            self._data["last_ingest_at"] = datetime.now(timezone.utc).isoformat()
            self._data["last_ingest_ok"] = ok
            self._data["last_ingest_attempted"] = attempted
            self._data["last_ingest_inserted"] = inserted
            self._data["last_ingest_duplicates"] = duplicates
            self._data["last_ingest_error"] = error

    def record_search(self, strategy: str, hit: bool):
        with self._lock:
            self._data["searches_total"] += 1
            if hit:
                self._data["searches_hits"] += 1
            else:
                self._data["searches_misses"] += 1
            by_strategy = self._data["searches_by_strategy"]
            if strategy in by_strategy:
                by_strategy[strategy] += 1
            self._data["last_search_at"] = datetime.now(timezone.utc).isoformat()

    def record_fallback(self, error: str | None = None):
        with self._lock:
            self._data["fallbacks"] += 1
            self._data["last_fallback_error"] = error

    def record_cache_hit(self):
        with self._lock:
            self._data["cache_hits"] += 1

    def record_delete(self, count: int):
        with self._lock:
            self._data["deleted_total"] += count

    def record_access_dropped(self, batches: int = 1):
        with self._lock:
            self._data["access_updates_dropped"] += batches

    @property
    def status(self) -> dict:
        with self._lock:
            data = dict(self._data)
            data["searches_by_strategy"] = dict(self._data["searches_by_strategy"])
            return data

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._data["last_ingest_error"] is None
