"""Tests for vector math -- cosine, centroids, cohesion."""

import numpy as np
import pytest

from bridge.common.vectors import (
    batch_cosine_similarity,
    centroid,
    cosine_similarity,
    mean_pairwise_similarity,
    usable_embeddings,
)


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            a = rng.normal(size=16)
            b = rng.normal(size=16)
            ab = cosine_similarity(a, b)
            assert ab == pytest.approx(cosine_similarity(b, a))
            assert -1.0 <= ab <= 1.0

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
        assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestBatchCosine:
    def test_matches_pairwise(self):
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [0.0, 0.0]])
        sims = batch_cosine_similarity([1.0, 0.0], matrix)
        assert sims[0] == pytest.approx(1.0)
        assert sims[1] == pytest.approx(0.0)
        assert sims[2] == pytest.approx(1 / np.sqrt(2))
        assert sims[3] == 0.0

    def test_empty_matrix(self):
        assert batch_cosine_similarity([1.0], np.zeros((0, 1))).size == 0


class TestUsableEmbeddings:
    def test_skips_missing_empty_and_wrong_width(self):
        embeddings = {
            "a": [1.0, 0.0],
            "b": None,
            "c": [],
            "d": [1.0, 0.0, 0.0],
            "e": [0.0, 1.0],
        }
        usable = usable_embeddings(["a", "b", "c", "d", "e", "missing"], embeddings)
        assert list(usable) == ["a", "e"]

    def test_explicit_width(self):
        embeddings = {"a": [1.0, 0.0], "d": [1.0, 0.0, 0.0]}
        assert list(usable_embeddings(["a", "d"], embeddings, dimensions=3)) == ["d"]


class TestGroupMath:
    def test_centroid_is_mean(self):
        center = centroid([np.array([1.0, 0.0]), np.array([0.0, 1.0])])
        assert center.tolist() == [0.5, 0.5]

    def test_centroid_empty(self):
        assert centroid([]) is None

    def test_cohesion_single_member(self):
        assert mean_pairwise_similarity([np.array([1.0, 0.0])]) == 1.0

    def test_cohesion_mixed(self):
        vectors = [np.array([1.0, 0.0]), np.array([1.0, 0.0]), np.array([0.0, 1.0])]
        # pairs: 1.0, 0.0, 0.0
        assert mean_pairwise_similarity(vectors) == pytest.approx(1 / 3)
