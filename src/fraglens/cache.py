# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Retrieval result cache: TTL expiry plus LRU eviction, thread-safe.

One instance is created per process and handed to the Retriever; it is
cleared whenever fragments are ingested or deleted.
"""
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

from .hashing import content_hash
from .models import SearchFilter


def cache_key(
    query: str, k: Optional[int], filter: Optional[SearchFilter], rerank: bool = False,
) -> tuple:
    """Whitespace- and case-insensitive key over the whole query."""
    return (
        content_hash(" ".join(query.split()).lower()),
        k,
        filter.cache_key() if filter else "",
        rerank,
    )


class ResultCache:
    def __init__(
        self, ttl_seconds: float = 3600.0, max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, tuple[float, Any]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any):
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttl_seconds": self.ttl_seconds,
                "max_entries": self.max_entries,
            }
