"""Cosine similarity ranking over caller-supplied candidates."""

from __future__ import annotations

import math
from typing import Callable, Generic, List, Sequence, Tuple, TypeVar

from openassist.errors import DimensionMismatch

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return dot(a, b) / (|a| * |b|), or 0.0 when either vector has zero norm."""

    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    value = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, value))


class VectorIndex(Generic[T]):
    """Ranks candidates by similarity to a query vector.

    The index owns no storage; candidates are read through ``vector_of`` and
    never mutated.
    """

    def __init__(self, vector_of: Callable[[T], Sequence[float]] | None = None) -> None:
        self._vector_of = vector_of or (lambda candidate: candidate.vector)  # type: ignore[attr-defined]

    @staticmethod
    def similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    def top_k(self, query_vector: Sequence[float], candidates: Sequence[T], k: int) -> List[Tuple[T, float]]:
        if k <= 0 or not candidates:
            return []
        scored = [(candidate, cosine_similarity(query_vector, self._vector_of(candidate))) for candidate in candidates]
        # sorted() is stable, so equal scores keep insertion order
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:k]
