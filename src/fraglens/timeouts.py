# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Timeout wrapper for calls into the embedding provider and the document store.

Python threads cannot be killed, so a call that times out keeps running on
its worker thread; the caller just stops waiting for it.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from .errors import DependencyTimeout

T = TypeVar("T")

_pool: Optional[ThreadPoolExecutor] = None
_pool_lock = threading.Lock()


def _get_pool() -> ThreadPoolExecutor:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(max_workers=16, thread_name_prefix="fraglens-io")
        return _pool


def call_with_timeout(
    fn: Callable[..., T], *args, timeout: Optional[float] = None,
    operation: str = "external call", **kwargs,
) -> T:
    """Run fn(*args, **kwargs), raising DependencyTimeout after `timeout` seconds.

    timeout=None (or <= 0) runs the call inline without a deadline.
    Exceptions raised by fn propagate unchanged.
    """
    if timeout is None or timeout <= 0:
        return fn(*args, **kwargs)
    future = _get_pool().submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise DependencyTimeout(operation, timeout) from None
