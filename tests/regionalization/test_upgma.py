"""Unit tests for UPGMA clustering and dendrogram cuts."""

from __future__ import annotations

import pytest
import numpy as np
from scipy.cluster.hierarchy import is_valid_linkage, linkage

from regionalization.distance import DistanceMatrix
from regionalization.errors import InsufficientData
from regionalization.upgma import Dendrogram, Merge, cluster, cut_dendrogram, unit_sort_key


class TestCluster:
    """Test dendrogram construction."""

    def test_merge_count_and_root(self, random_matrix):
        d = cluster(random_matrix)
        assert len(d.merges) == random_matrix.size() - 1
        assert d.merges[-1].size == random_matrix.size()
        assert set(d.merges[-1].members) == set(random_matrix.units())

    def test_heights_monotone(self, random_matrix):
        heights = cluster(random_matrix).heights()
        assert np.all(np.diff(heights) >= 0)

    def test_heights_match_scipy_average_linkage(self, random_matrix):
        """Lance-Williams updates reproduce true average-linkage heights."""
        ours = cluster(random_matrix).heights()
        reference = linkage(random_matrix.condensed(), method='average')[:, 2]
        np.testing.assert_allclose(ours, reference)

    def test_linkage_matrix_is_valid(self, random_matrix):
        z = cluster(random_matrix).to_linkage_matrix()
        assert z.shape == (random_matrix.size() - 1, 4)
        assert is_valid_linkage(z)

    def test_average_of_member_distances(self):
        """Height of a merge is the mean pairwise distance between the two clusters."""
        values = [
            [0, 1, 4, 6],
            [1, 0, 5, 7],
            [4, 5, 0, 9],
            [6, 7, 9, 0],
        ]
        d = cluster(DistanceMatrix(['a', 'b', 'c', 'd'], values))
        first, second, third = d.merges
        assert first.members == ('a', 'b') and first.height == 1.0
        # {a,b} to c = (4+5)/2 = 4.5; {a,b} to d = 6.5; c-d = 9
        assert second.members == ('a', 'b', 'c') and second.height == pytest.approx(4.5)
        # {a,b,c} to d = (6+7+9)/3
        assert third.height == pytest.approx(22 / 3)

    def test_tie_break_lexicographic(self):
        """Equal distances merge the lexicographically smallest combined id set first."""
        values = np.ones((4, 4))
        np.fill_diagonal(values, 0.0)
        d = cluster(DistanceMatrix(['D', 'B', 'C', 'A'], values))
        assert [set(m.members) for m in d.merges] == [
            {'A', 'B'},
            {'A', 'B', 'C'},
            {'A', 'B', 'C', 'D'},
        ]
        assert list(d.heights()) == [1.0, 1.0, 1.0]

    def test_tie_break_end_to_end_pairs(self, four_unit_matrix):
        d = cluster(four_unit_matrix)
        assert [m.members for m in d.merges] == [('A', 'B'), ('C', 'D'), ('A', 'B', 'C', 'D')]
        assert list(d.heights()) == [1.0, 1.0, 10.0]

    def test_merge_node_ids(self, four_unit_matrix):
        d = cluster(four_unit_matrix)
        assert (d.merges[0].left, d.merges[0].right) == (0, 1)
        assert (d.merges[1].left, d.merges[1].right) == (2, 3)
        assert (d.merges[2].left, d.merges[2].right) == (4, 5)

    def test_deterministic(self, random_matrix, uniform_matrix):
        assert cluster(random_matrix) == cluster(random_matrix)
        assert cluster(uniform_matrix) == cluster(uniform_matrix)

    def test_two_units(self):
        d = cluster(DistanceMatrix(['x', 'y'], [[0, 3], [3, 0]]))
        assert d.merges == (Merge(0, 1, 3.0, 2, ('x', 'y')),)

    def test_insufficient_data(self):
        with pytest.raises(InsufficientData):
            cluster(DistanceMatrix(['only'], [[0]]))

    def test_numeric_ids_sort_numerically(self):
        assert unit_sort_key(2) < unit_sort_key(10)
        assert unit_sort_key(10) < unit_sort_key('1')


class TestDendrogram:
    """Test dendrogram validation."""

    def test_rejects_wrong_merge_count(self):
        with pytest.raises(ValueError):
            Dendrogram(['a', 'b', 'c'], [Merge(0, 1, 1.0, 2, ('a', 'b'))])

    def test_rejects_decreasing_heights(self):
        merges = [Merge(0, 1, 2.0, 2, ('a', 'b')), Merge(2, 3, 1.0, 3, ('a', 'b', 'c'))]
        with pytest.raises(ValueError, match="non-decreasing"):
            Dendrogram(['a', 'b', 'c'], merges)


class TestCut:
    """Test flat partitions cut from the dendrogram."""

    @pytest.mark.parametrize("k", range(1, 13))
    def test_cut_covers_units_with_labels_1_to_k(self, random_matrix, k):
        partition = cut_dendrogram(cluster(random_matrix), k)
        assert set(partition) == set(random_matrix.units())
        assert sorted(set(partition.values())) == list(range(1, k + 1))
        assert all(size > 0 for size in partition.sizes().values())

    def test_cut_two_pairs(self, four_unit_matrix):
        partition = cluster(four_unit_matrix).cut(2)
        assert partition.clusters() == {1: ('A', 'B'), 2: ('C', 'D')}

    def test_labels_by_first_appearance(self, four_unit_matrix):
        partition = cluster(four_unit_matrix).cut(3)
        assert partition['A'] == 1
        assert partition.clusters() == {1: ('A', 'B'), 2: ('C',), 3: ('D',)}

    def test_cut_height(self, four_unit_matrix):
        d = cluster(four_unit_matrix)
        assert d.cut_height(0.5).k == 4
        assert d.cut_height(1.0).k == 2
        assert d.cut_height(10.0).k == 1

    def test_invalid_k(self, four_unit_matrix):
        d = cluster(four_unit_matrix)
        with pytest.raises(ValueError):
            cut_dendrogram(d, 0)
        with pytest.raises(ValueError):
            cut_dendrogram(d, 5)
