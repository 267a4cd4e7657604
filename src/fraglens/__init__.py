# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Fraglens: semantic retrieval over text fragments with per-query strategy selection."""

__version__ = "0.1.0"
