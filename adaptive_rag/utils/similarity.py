# utils/similarity.py
"""Similarity math shared by the vector store and the retrieval pipeline."""
import re
from typing import Sequence, Set

import numpy as np

from adaptive_rag.core.exceptions import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity dot(a,b) / (|a|*|b|).

    Returns 0.0 when either vector has zero magnitude.
    Raises DimensionMismatchError when lengths differ.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb) / magnitude)
    # Clamp to [-1,1] for numerical stability
    return max(-1.0, min(1.0, similarity))


def cosine_similarity_matrix(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one query against every row of `matrix` (N, D).
    Zero-magnitude rows score 0.0.
    """
    q = np.asarray(query, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    if matrix.shape[1] != q.shape[0]:
        raise DimensionMismatchError(q.shape[0], matrix.shape[1])

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm

    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom > 0
    if np.any(nonzero):
        scores[nonzero] = (matrix[nonzero] @ q) / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)


def word_set(text: str) -> Set[str]:
    """Lowercased whitespace-delimited words."""
    return set(re.split(r'\s+', text.lower().strip())) - {''}


def jaccard_similarity(text1: str, text2: str) -> float:
    """Word-level Jaccard coefficient of two texts."""
    words1 = word_set(text1)
    words2 = word_set(text2)
    union = words1 | words2
    if not union:
        return 1.0
    return len(words1 & words2) / len(union)
