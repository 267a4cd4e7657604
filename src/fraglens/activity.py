# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Access recorder – bumps access_count for returned fragments off the read path.
Runs as a background daemon thread fed by a bounded queue.

A full queue drops the batch (counted, never blocks the caller). Store
failures are logged; reads never see them.
"""
import logging
import queue
import threading
import time
from typing import Sequence

from .health import HealthTracker
from .store import DocumentStore

logger = logging.getLogger(__name__)

_STOP = object()


class AccessRecorder:
    def __init__(
        self,
        store: DocumentStore,
        maxsize: int = 256,
        health: HealthTracker | None = None,
    ):
        self.store = store
        self.health = health
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self.dropped = 0

    def _ensure_started(self):
        with self._start_lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._loop, daemon=True, name="fraglens-access",
                )
                self._thread.start()

    def record(self, ids: Sequence[str]) -> bool:
        """Queue one batch of ids; False if it had to be dropped."""
        ids = [i for i in ids if i]
        if not ids:
            return True
        self._ensure_started()
        try:
            self._queue.put_nowait(ids)
        except queue.Full:
            self.dropped += 1
            if self.health:
                self.health.record_access_dropped()
            logger.debug("Access queue full, dropped update for %d fragments", len(ids))
            return False
        return True

    def _loop(self):
        while True:
            batch = self._queue.get()
            try:
                if batch is _STOP:
                    return
                self.store.increment_access(batch)
            except Exception as e:
                logger.warning("Access count update failed for %d fragments: %s", len(batch), e)
            finally:
                self._queue.task_done()

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued updates are applied; False on timeout."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, timeout: float = 5.0):
        if self._thread is None or not self._thread.is_alive():
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Access recorder did not stop: queue still full")
            return
        self._thread.join(timeout)
