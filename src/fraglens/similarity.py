# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Cosine similarity, total over zero vectors, loud on dimension drift."""
from typing import Sequence

import numpy as np

from .errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either norm is 0.

    Raises DimensionMismatchError when the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(va.size, vb.size)
    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    sim = float(np.dot(va, vb)) / norm
    # rounding can push parallel vectors just past +/-1
    return max(-1.0, min(1.0, sim))


def cosine_similarities(query: Sequence[float], matrix: Sequence[Sequence[float]]) -> list[float]:
    """cosine_similarity(query, row) for every row, vectorised."""
    if len(matrix) == 0:
        return []
    q = np.asarray(query, dtype=np.float64)
    for row in matrix:
        if len(row) != q.size:
            raise DimensionMismatchError(q.size, len(row))
    m = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms == 0.0, 0.0, dots / np.where(norms == 0.0, 1.0, norms))
    return [max(-1.0, min(1.0, float(s))) for s in sims]
