from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from loculus.core.errors import ValidationError, VectorDimensionMismatchError

VECTOR_DTYPE = np.float64
FLOAT_SIZE = np.dtype(VECTOR_DTYPE).itemsize


def _as_vector(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=VECTOR_DTYPE).reshape(-1)


def _check_dimensions(v1: np.ndarray, v2: np.ndarray) -> None:
    if v1.shape[0] != v2.shape[0]:
        raise VectorDimensionMismatchError(expected=int(v1.shape[0]), got=int(v2.shape[0]))


def cosine_similarity(v1: Sequence[float], v2: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 when either has zero length."""
    a = _as_vector(v1)
    b = _as_vector(v2)
    _check_dimensions(a, b)
    n1 = np.linalg.norm(a)
    n2 = np.linalg.norm(b)
    if n1 == 0.0 or n2 == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (n1 * n2), -1.0, 1.0))


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``.

    Rows with zero length, and every row when the query has zero length, score 0.0.
    """
    q = _as_vector(query)
    if matrix.ndim != 2:
        raise ValidationError(f"Expected a 2-D matrix, got {matrix.ndim} dimensions")
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=VECTOR_DTYPE)
    if matrix.shape[1] != q.shape[0]:
        raise VectorDimensionMismatchError(expected=int(q.shape[0]), got=int(matrix.shape[1]))

    q_norm = np.linalg.norm(q)
    if q_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=VECTOR_DTYPE)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    scores = np.zeros(matrix.shape[0], dtype=VECTOR_DTYPE)
    nonzero = denom > 0.0
    scores[nonzero] = (matrix[nonzero] @ q) / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)


def rank_descending(scores: np.ndarray) -> np.ndarray:
    """Indices by score, best first; equal scores keep their original order."""
    return np.argsort(-scores, kind="stable")


def normalize(vector: Sequence[float]) -> list[float]:
    v = _as_vector(vector)
    length = np.linalg.norm(v)
    if length == 0.0:
        return v.tolist()
    return (v / length).tolist()


def average_vectors(vectors: Sequence[Sequence[float]]) -> list[float]:
    if len(vectors) == 0:
        raise ValidationError("Cannot average an empty list of vectors")
    first = _as_vector(vectors[0])
    rows = [first]
    for other in vectors[1:]:
        row = _as_vector(other)
        _check_dimensions(first, row)
        rows.append(row)
    return np.mean(np.vstack(rows), axis=0).tolist()


def euclidean_distance(v1: Sequence[float], v2: Sequence[float]) -> float:
    a = _as_vector(v1)
    b = _as_vector(v2)
    _check_dimensions(a, b)
    return float(np.linalg.norm(a - b))


def pack_vector(vector: Sequence[float]) -> bytes:
    """Native-endian float64 bytes, len(vector) * 8 long."""
    return _as_vector(vector).tobytes()


def unpack_array(blob: bytes) -> np.ndarray:
    if len(blob) % FLOAT_SIZE:
        raise ValidationError(f"Vector blob length {len(blob)} is not a multiple of {FLOAT_SIZE}")
    return np.frombuffer(blob, dtype=VECTOR_DTYPE)


def unpack_vector(blob: bytes) -> list[float]:
    return unpack_array(blob).tolist()
