"""Vector math and the on-disk float32 codec.

Every vector that reaches the store or a query passes through
``normalize`` first, so similarity is a plain dot product.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Sequence

import numpy as np
import numpy.typing as npt

Vector = npt.NDArray[np.float32]

_WIRE_DTYPE = np.dtype("<f4")


def as_vector(values: Sequence[float] | npt.ArrayLike) -> Vector:
    """Coerce any float sequence into a 1-D float32 array."""
    arr = np.asarray(values, dtype=np.float32)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {arr.shape}")
    return arr


def normalize(values: Sequence[float] | npt.ArrayLike) -> Vector:
    """Scale to unit length. All-zero vectors are returned unchanged."""
    vec = as_vector(values)
    norm = float(np.sqrt(np.dot(vec.astype(np.float64), vec.astype(np.float64))))
    if norm == 0.0:
        return vec.copy()
    return (vec / norm).astype(np.float32)


def dot(a: Vector, b: Vector) -> float:
    """Similarity of two unit vectors (cosine reduces to a dot product)."""
    if a.shape != b.shape:
        raise ValueError(f"Dimension mismatch: {a.shape[0]} vs {b.shape[0]}")
    return float(np.dot(a, b))


def top_k(scored: Iterable[tuple[int, float]], k: int) -> list[tuple[int, float]]:
    """Select the ``k`` best ``(item_id, score)`` pairs with a bounded min-heap.

    Ties are broken toward the lower item id so results are deterministic.
    Output is sorted by descending score.
    """
    if k <= 0:
        return []
    # Heap key (score, -item_id): the root is the weakest kept candidate.
    heap: list[tuple[float, int]] = []
    for item_id, score in scored:
        entry = (score, -item_id)
        if len(heap) < k:
            heapq.heappush(heap, entry)
        elif entry > heap[0]:
            heapq.heapreplace(heap, entry)
    return [(-neg_id, score) for score, neg_id in sorted(heap, reverse=True)]


def encode_vector(vec: Vector) -> bytes:
    """Little-endian float32, tightly packed, no header."""
    return np.asarray(vec, dtype=_WIRE_DTYPE).tobytes()


def decode_vector(blob: bytes, dimension: int) -> Vector | None:
    """Decode a stored blob; ``None`` when its length disagrees with ``dimension``."""
    if dimension <= 0 or len(blob) != dimension * _WIRE_DTYPE.itemsize:
        return None
    return np.frombuffer(blob, dtype=_WIRE_DTYPE).astype(np.float32)
