"""Vector similarity helpers for semantic context retrieval.

Scores candidates with cosine similarity and keeps the ``top_k`` best,
similarity descending.  Ties keep their input order.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Sequence, Tuple, TypeVar

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 when either is all zeros."""
    if len(a) != len(b):
        raise ValueError(f"vector length mismatch: {len(a)} != {len(b)}")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[Tuple[T, Sequence[float]]],
    *,
    top_k: int | None = None,
) -> List[Tuple[T, float]]:
    """Score ``(item, vector)`` pairs against *query*.

    Candidates whose dimensionality differs from the query are skipped
    rather than failing the whole ranking.
    """
    scored: List[Tuple[T, float]] = []
    for item, vector in candidates:
        if len(vector) != len(query):
            continue
        scored.append((item, cosine_similarity(query, vector)))

    scored.sort(key=lambda pair: pair[1], reverse=True)

    if top_k is not None:
        scored = scored[: max(0, top_k)]

    return scored
