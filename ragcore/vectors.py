"""Vector similarity and normalization helpers."""

from collections.abc import Sequence

import numpy as np

from ragcore.exceptions import DimensionMismatchError

Vector = Sequence[float]

NORMALIZATION_METHODS = ("none", "l2", "minmax")


def _as_array(vector: Vector | np.ndarray) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def cosine_similarity(vector_a: Vector, vector_b: Vector) -> float:
    """Cosine similarity ``dot(a, b) / (|a| * |b|)`` in [-1, 1].

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    a = _as_array(vector_a)
    b = _as_array(vector_b)
    if a.shape != b.shape:
        raise DimensionMismatchError(len(a), len(b))
    if a.size == 0:
        return 0.0

    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


def cosine_similarities(query: Vector, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``.

    Rows with zero magnitude score 0.0, as does everything when the query
    has zero magnitude.

    Raises:
        DimensionMismatchError: If the query length differs from the row length.
    """
    q = _as_array(query)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        expected = matrix.shape[1] if matrix.ndim == 2 else 0
        raise DimensionMismatchError(expected, q.shape[0])

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return np.clip(scores, -1.0, 1.0)


def normalize_l2(vector: Vector) -> list[float]:
    """Scale to unit length; a zero vector is returned unchanged."""
    v = _as_array(vector)
    magnitude = float(np.linalg.norm(v))
    if magnitude == 0.0:
        return v.tolist()
    return (v / magnitude).tolist()


def normalize_min_max(vector: Vector) -> list[float]:
    """Rescale values to [0, 1]; a constant vector maps to all 0.5."""
    v = _as_array(vector)
    if v.size == 0:
        return []
    low, high = float(v.min()), float(v.max())
    if high == low:
        return [0.5] * v.size
    return ((v - low) / (high - low)).tolist()


def normalize(vector: Vector, method: str) -> list[float]:
    """Apply a named normalization ("none", "l2" or "minmax")."""
    if method == "none":
        return [float(x) for x in vector]
    if method == "l2":
        return normalize_l2(vector)
    if method == "minmax":
        return normalize_min_max(vector)
    raise ValueError(f"Unknown normalization method: {method}")


def euclidean_distance(vector_a: Vector, vector_b: Vector) -> float:
    a = _as_array(vector_a)
    b = _as_array(vector_b)
    if a.shape != b.shape:
        raise DimensionMismatchError(len(a), len(b))
    return float(np.linalg.norm(a - b))
