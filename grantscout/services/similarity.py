"""
Vector similarity helpers.

Nearest-neighbour search runs in-process over stored embeddings, which is
plenty for a catalogue of a few thousand opportunities and keeps the
schema free of database vector extensions.
"""

import heapq
import math
from typing import Iterable, Sequence, TypeVar

from grantscout.errors import VectorDimensionMismatch

T = TypeVar('T')


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine of the angle between two vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        VectorDimensionMismatch: vectors differ in length
    """
    if len(vec_a) != len(vec_b):
        raise VectorDimensionMismatch(len(vec_a), len(vec_b))

    dot = 0.0
    magnitude_a = 0.0
    magnitude_b = 0.0
    for a, b in zip(vec_a, vec_b):
        dot += a * b
        magnitude_a += a * a
        magnitude_b += b * b

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    return dot / (math.sqrt(magnitude_a) * math.sqrt(magnitude_b))


def nearest_neighbors(
    query: Sequence[float],
    candidates: Iterable[tuple[T, Sequence[float]]],
    limit: int,
) -> list[tuple[T, float]]:
    """
    Top `limit` candidates by cosine similarity to the query, best first.

    Candidates whose vectors have a different dimension are skipped.
    """
    scored = []
    for key, vector in candidates:
        if not vector or len(vector) != len(query):
            continue
        scored.append((key, cosine_similarity(query, vector)))
    return heapq.nlargest(limit, scored, key=lambda pair: pair[1])
