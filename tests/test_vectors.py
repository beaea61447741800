"""Tests for vector similarity and normalization helpers."""

import math

import numpy as np
import pytest

from ragcore.exceptions import DimensionMismatchError
from ragcore.vectors import (
    cosine_similarities,
    cosine_similarity,
    euclidean_distance,
    normalize,
    normalize_l2,
    normalize_min_max,
)


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [-1.0, -2.0, -3.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_scale_invariant(self) -> None:
        assert cosine_similarity([1.0, 1.0], [5.0, 5.0]) == pytest.approx(1.0)

    def test_zero_vector_scores_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_empty_vectors_score_zero(self) -> None:
        assert cosine_similarity([], []) == 0.0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError) as exc_info:
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])
        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3


class TestCosineSimilarities:
    def test_matches_pairwise(self) -> None:
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        scores = cosine_similarities([1.0, 0.0], matrix)
        expected = [cosine_similarity([1.0, 0.0], row) for row in matrix]
        assert scores.tolist() == pytest.approx(expected)

    def test_zero_row_scores_zero(self) -> None:
        matrix = np.array([[0.0, 0.0], [2.0, 0.0]])
        scores = cosine_similarities([1.0, 0.0], matrix)
        assert scores.tolist() == pytest.approx([0.0, 1.0])

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError):
            cosine_similarities([1.0, 0.0, 0.0], np.array([[1.0, 0.0]]))


class TestNormalization:
    def test_l2_unit_length(self) -> None:
        result = normalize_l2([3.0, 4.0])
        assert result == pytest.approx([0.6, 0.8])
        assert math.hypot(*result) == pytest.approx(1.0)

    def test_l2_zero_vector_unchanged(self) -> None:
        assert normalize_l2([0.0, 0.0]) == [0.0, 0.0]

    def test_min_max_range(self) -> None:
        assert normalize_min_max([2.0, 4.0, 6.0]) == pytest.approx([0.0, 0.5, 1.0])

    def test_min_max_constant_vector(self) -> None:
        assert normalize_min_max([7.0, 7.0, 7.0]) == [0.5, 0.5, 0.5]

    def test_named_methods(self) -> None:
        assert normalize([1, 2], "none") == [1.0, 2.0]
        assert normalize([3.0, 4.0], "l2") == pytest.approx([0.6, 0.8])
        assert normalize([1.0, 3.0], "minmax") == pytest.approx([0.0, 1.0])

    def test_unknown_method(self) -> None:
        with pytest.raises(ValueError):
            normalize([1.0], "zscore")


class TestEuclideanDistance:
    def test_distance(self) -> None:
        assert euclidean_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError):
            euclidean_distance([0.0], [1.0, 2.0])
