"""Unit tests for optimal-k selection and partition diagnostics."""

from __future__ import annotations

import pytest
import numpy as np
from libpysal import weights

from regionalization.distance import DistanceMatrix
from regionalization.errors import DimensionMismatch, InsufficientData
from regionalization.evaluation import (
    ClusterEvaluator,
    contiguity_score,
    cophenetic_correlation,
    partition_stability,
    select_optimal_k,
    silhouette_scores,
)
from regionalization.partition import Partition
from regionalization.upgma import cluster


class TestSilhouette:
    """Test per-unit silhouette coefficients."""

    def test_scores_in_range(self, random_matrix):
        d = cluster(random_matrix)
        for k in range(2, random_matrix.size()):
            scores = silhouette_scores(random_matrix, d.cut(k))
            assert scores.shape == (random_matrix.size(),)
            assert np.all(scores >= -1.0) and np.all(scores <= 1.0)

    def test_known_values(self, four_unit_matrix):
        partition = Partition(['A', 'B', 'C', 'D'], [1, 1, 2, 2])
        np.testing.assert_allclose(silhouette_scores(four_unit_matrix, partition), [0.9] * 4)

    def test_singletons_score_zero(self, four_unit_matrix):
        partition = Partition(['A', 'B', 'C', 'D'], [1, 1, 2, 3])
        scores = silhouette_scores(four_unit_matrix, partition)
        np.testing.assert_allclose(scores, [0.9, 0.9, 0.0, 0.0])

    def test_partition_must_match_units(self, four_unit_matrix):
        partition = Partition(['A', 'B', 'C'], [1, 1, 2])
        with pytest.raises(DimensionMismatch):
            silhouette_scores(four_unit_matrix, partition)

    def test_k_out_of_range(self, four_unit_matrix):
        with pytest.raises(ValueError):
            silhouette_scores(four_unit_matrix, Partition(['A', 'B', 'C', 'D'], [1, 1, 1, 1]))


class TestClusterEvaluator:
    """Test choice of k over the score curve."""

    def test_end_to_end_two_pairs(self, four_unit_matrix):
        """d(A,B)=d(C,D)=1, all else 10: k=2 with {A,B},{C,D}."""
        result = ClusterEvaluator(four_unit_matrix).evaluate(cluster(four_unit_matrix), 3)
        assert result.k == 2
        assert result.partition.clusters() == {1: ('A', 'B'), 2: ('C', 'D')}
        assert result.score == pytest.approx(0.9)
        assert [k for k, _ in result.curve] == [2, 3]
        assert result.curve[1][1] == pytest.approx(0.45)

    def test_well_separated_blobs(self, two_blob_matrix):
        k, score, curve = select_optimal_k(cluster(two_blob_matrix), two_blob_matrix)
        assert k == 2
        assert score > 0.9
        assert [c[0] for c in curve] == [2, 3, 4, 5]

    def test_uniform_matrix_prefers_smallest_k(self, uniform_matrix):
        result = ClusterEvaluator(uniform_matrix).evaluate(cluster(uniform_matrix))
        assert result.k == 2
        assert all(score == pytest.approx(0.0) for _, score in result.curve)

    def test_default_k_max_capped(self):
        rng = np.random.default_rng(7)
        points = rng.normal(size=(30, 2))
        values = np.sqrt(((points[:, None] - points[None, :]) ** 2).sum(axis=-1))
        dm = DistanceMatrix(range(30), values)
        result = ClusterEvaluator(dm).evaluate(cluster(dm))
        assert result.curve[-1][0] == 20
        assert 2 <= result.k <= 20

    def test_k_max_clamped_to_n_minus_one(self, four_unit_matrix):
        result = ClusterEvaluator(four_unit_matrix).evaluate(cluster(four_unit_matrix), 50)
        assert [k for k, _ in result.curve] == [2, 3]

    def test_k_max_too_small(self, four_unit_matrix):
        with pytest.raises(ValueError):
            ClusterEvaluator(four_unit_matrix).evaluate(cluster(four_unit_matrix), 1)

    def test_insufficient_data(self):
        dm = DistanceMatrix(['a', 'b'], [[0, 1], [1, 0]])
        with pytest.raises(InsufficientData):
            ClusterEvaluator(dm).evaluate(cluster(dm))

    def test_dendrogram_from_other_matrix(self, four_unit_matrix, two_blob_matrix):
        with pytest.raises(DimensionMismatch):
            ClusterEvaluator(four_unit_matrix).evaluate(cluster(two_blob_matrix))

    def test_deterministic(self, random_matrix):
        first = ClusterEvaluator(random_matrix).evaluate(cluster(random_matrix))
        second = ClusterEvaluator(random_matrix).evaluate(cluster(random_matrix))
        assert first == second

    def test_curve_frame(self, four_unit_matrix):
        result = ClusterEvaluator(four_unit_matrix).evaluate(cluster(four_unit_matrix))
        frame = result.curve_frame()
        assert list(frame.columns) == ['k', 'silhouette']
        assert frame['k'].tolist() == [2, 3]


class TestCopheneticCorrelation:
    """Test dendrogram fit diagnostics."""

    def test_perfect_ultrametric(self, four_unit_matrix):
        assert cophenetic_correlation(cluster(four_unit_matrix), four_unit_matrix) == pytest.approx(1.0)

    def test_constant_distances_nan(self, uniform_matrix):
        assert np.isnan(cophenetic_correlation(cluster(uniform_matrix), uniform_matrix))


class TestPartitionStability:
    """Test partition stability comparison."""

    def test_stability_identical_partitions(self):
        a = Partition(['a', 'b', 'c', 'd', 'e'], [0, 0, 1, 1, 2])
        b = Partition(['a', 'b', 'c', 'd', 'e'], [5, 5, 3, 3, 1])

        scores = partition_stability(a, b)

        assert scores['ari'] == 1.0
        assert scores['jaccard'] == 1.0

    def test_stability_completely_different(self):
        a = Partition(['a', 'b', 'c', 'd', 'e'], [0, 0, 0, 0, 0])
        b = Partition(['a', 'b', 'c', 'd', 'e'], [0, 1, 2, 3, 4])

        scores = partition_stability(a, b)

        assert scores['ari'] <= 0.0
        assert scores['jaccard'] == 0.0

    def test_stability_different_units(self):
        with pytest.raises(ValueError):
            partition_stability(Partition(['a', 'b'], [1, 2]), Partition(['a', 'c'], [1, 2]))


class TestContiguityScore:
    """Test contiguity scoring."""

    def test_contiguity_perfect_connected(self):
        # Linear graph: A-B-C
        w = weights.W({'A': ['B'], 'B': ['A', 'C'], 'C': ['B']}, id_order=['A', 'B', 'C'])
        partition = Partition(['A', 'B', 'C'], [0, 0, 1])

        scores = contiguity_score(partition, w)

        assert scores['connected_fraction'] == 1.0
        assert scores['violating_clusters'] == 0
        assert scores['n_clusters'] == 2

    def test_contiguity_disconnected_cluster(self):
        w = weights.W({'A': ['B'], 'B': ['A'], 'C': []}, id_order=['A', 'B', 'C'], silence_warnings=True)
        partition = Partition(['A', 'B', 'C'], [0, 1, 0])

        scores = contiguity_score(partition, w)

        assert scores['connected_fraction'] == 0.5
        assert scores['violating_clusters'] == 1

    def test_bfs_networkx_parity(self):
        w = weights.W({'A': ['B'], 'B': ['A'], 'C': ['D'], 'D': ['C']}, id_order=['A', 'B', 'C', 'D'])
        partition = Partition(['A', 'B', 'C', 'D'], [0, 0, 1, 0])

        bfs_result = contiguity_score(partition, w, use_bfs=True)
        nx_result = contiguity_score(partition, w, use_bfs=False)

        assert bfs_result == nx_result
        assert bfs_result['violating_clusters'] == 1
