"""
Vector Math

Cosine similarity, centroids and cohesion over embedding vectors.

Every centroid or similarity computation over a group of records goes
through usable_embeddings() first, so members without an embedding (or
with one of the wrong width) are dropped in exactly one place.
"""

from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        dot(a, b) / (|a| |b|) clamped to [-1, 1]; 0.0 if either norm is zero

    Raises:
        ValueError: if the vectors have different dimensions
    """
    v1 = np.asarray(vec1, dtype=float)
    v2 = np.asarray(vec2, dtype=float)

    if v1.shape != v2.shape:
        raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0.0 or norm2 == 0.0:
        return 0.0

    similarity = float(np.dot(v1, v2) / (norm1 * norm2))
    return max(-1.0, min(1.0, similarity))


def batch_cosine_similarity(query_vec: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between a query and every row of a matrix.

    Rows (or a query) with zero norm score 0.0.
    """
    query = np.asarray(query_vec, dtype=float)
    if matrix.size == 0:
        return np.zeros(0)

    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    if query_norm == 0.0:
        return np.zeros(matrix.shape[0])

    dots = matrix @ query
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return np.clip(sims, -1.0, 1.0)


def usable_embeddings(
    ids: Iterable[str],
    embeddings: Dict[str, Optional[Sequence[float]]],
    dimensions: Optional[int] = None,
) -> Dict[str, np.ndarray]:
    """
    Collect the embeddings of the given ids that can take part in vector math.

    Ids with no embedding, an empty one, or (when ``dimensions`` is given)
    one of a different width are skipped. If ``dimensions`` is None the
    width of the first usable vector is used.

    Returns:
        Ordered mapping of id -> vector
    """
    usable: Dict[str, np.ndarray] = {}
    width = dimensions
    for record_id in ids:
        vector = embeddings.get(record_id)
        if vector is None or len(vector) == 0:
            continue
        if width is None:
            width = len(vector)
        if len(vector) != width:
            continue
        usable[record_id] = np.asarray(vector, dtype=float)
    return usable


def centroid(vectors: Sequence[np.ndarray]) -> Optional[np.ndarray]:
    """Component-wise mean of the vectors, or None for an empty group."""
    if len(vectors) == 0:
        return None
    return np.mean(np.vstack(vectors), axis=0)


def mean_pairwise_similarity(vectors: Sequence[np.ndarray]) -> float:
    """
    Mean cosine similarity over all distinct pairs.

    A group with fewer than two vectors is trivially coherent (1.0).
    """
    count = len(vectors)
    if count < 2:
        return 1.0

    matrix = np.vstack(vectors)
    norms = np.linalg.norm(matrix, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    unit = matrix / safe[:, None]
    unit[norms == 0] = 0.0
    sims = np.clip(unit @ unit.T, -1.0, 1.0)

    upper = np.triu_indices(count, k=1)
    return float(np.mean(sims[upper]))


def to_list(vector: np.ndarray) -> List[float]:
    """Convert a numpy vector to a plain JSON-friendly list"""
    return [float(x) for x in vector]
