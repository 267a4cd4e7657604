# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Exception taxonomy.

Blank input is never an exception (it yields empty results). Everything
below is raised for real faults:

- InvalidFragmentError:   caller-supplied fragment/metadata failed validation
- DimensionMismatchError: vectors of different length met (store corruption)
- EmbeddingError:         the embedding provider failed
- StoreError:             the document store failed
- DependencyTimeout:      an external call exceeded its timeout
"""


class FraglensError(Exception):
    """Base class for all Fraglens errors."""


class InvalidFragmentError(FraglensError, ValueError):
    pass


class DimensionMismatchError(FraglensError, ValueError):
    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimensions don't match: {left} vs {right}")
        self.left = left
        self.right = right


class EmbeddingError(FraglensError):
    pass


class StoreError(FraglensError):
    pass


class DependencyTimeout(FraglensError, TimeoutError):
    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:.1f}s")
        self.operation = operation
        self.timeout = timeout
