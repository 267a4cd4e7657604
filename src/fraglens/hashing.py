# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Content fingerprints used to scope deduplication per owner."""
import hashlib


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the raw (untrimmed) content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
