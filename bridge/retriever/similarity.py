"""
Similarity Index

Brute-force cosine ranking over every stored vector. Corpora are
single-user sized, so a linear scan over one numpy matrix is enough.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..common.schemas import ExperienceRecord
from ..common.vectors import batch_cosine_similarity


@dataclass
class SimilarityResult:
    """One ranked hit"""
    id: str
    similarity: float


class SimilarityIndex:
    """
    In-memory vector index.

    Vectors are grouped by width; a query only scans vectors of its own
    width, so entries with a mismatched dimension are skipped.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[str, Sequence[float]]]] = None):
        self._ids: Dict[int, List[str]] = {}
        self._vectors: Dict[int, List[Sequence[float]]] = {}
        self._matrices: Dict[int, np.ndarray] = {}
        for record_id, vector in entries or []:
            self.add(record_id, vector)

    @classmethod
    def from_records(cls, records: Iterable[ExperienceRecord]) -> "SimilarityIndex":
        """Index every record that carries an embedding"""
        return cls((r.id, r.embedding) for r in records if r.embedding)

    def add(self, record_id: str, vector: Sequence[float]) -> None:
        if not vector:
            return
        width = len(vector)
        self._ids.setdefault(width, []).append(record_id)
        self._vectors.setdefault(width, []).append(vector)
        self._matrices.pop(width, None)

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._ids.values())

    def _matrix(self, width: int) -> np.ndarray:
        if width not in self._matrices:
            self._matrices[width] = np.asarray(self._vectors[width], dtype=float)
        return self._matrices[width]

    def similarities(self, query_vector: Sequence[float]) -> Dict[str, float]:
        """Cosine similarity of the query to every same-width entry"""
        width = len(query_vector)
        if width == 0 or width not in self._ids:
            return {}
        sims = batch_cosine_similarity(query_vector, self._matrix(width))
        return {record_id: float(s) for record_id, s in zip(self._ids[width], sims)}

    def find_similar(
        self,
        query_vector: Sequence[float],
        limit: int = 50,
        threshold: float = 0.0,
    ) -> List[SimilarityResult]:
        """
        Rank stored vectors by cosine similarity to the query.

        Args:
            query_vector: Query embedding
            limit: Maximum results
            threshold: Minimum similarity to keep

        Returns:
            At most ``limit`` results, all >= threshold, highest first
        """
        if limit <= 0:
            return []
        scored = [
            SimilarityResult(id=record_id, similarity=sim)
            for record_id, sim in self.similarities(query_vector).items()
            if sim >= threshold
        ]
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:limit]
