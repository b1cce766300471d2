"""Unit tests for contiguity graphs over unit geometries."""

from __future__ import annotations

import pytest
import geopandas as gpd
from shapely.geometry import box

from regionalization.adjacency import contiguity_graph
from regionalization.evaluation import contiguity_score
from regionalization.partition import Partition


@pytest.fixture
def two_by_two():
    """Four unit squares: NW, NE, SW, SE."""
    return {
        'NW': box(0, 1, 1, 2),
        'NE': box(1, 1, 2, 2),
        'SW': box(0, 0, 1, 1),
        'SE': box(1, 0, 2, 1),
    }


class TestContiguityGraph:
    """Test contiguity graph creation."""

    def test_rook_neighbors(self, two_by_two):
        w = contiguity_graph(two_by_two, rule='rook')

        assert w.n == 4
        assert set(w.neighbors['NW']) == {'NE', 'SW'}
        assert set(w.neighbors['SE']) == {'NE', 'SW'}

    def test_queen_adds_corner_neighbors(self, two_by_two):
        w = contiguity_graph(two_by_two, rule='queen')

        assert set(w.neighbors['NW']) == {'NE', 'SW', 'SE'}

    def test_symmetric(self, two_by_two):
        w = contiguity_graph(two_by_two)
        for node, neighbors in w.neighbors.items():
            for other in neighbors:
                assert node in w.neighbors[other]

    def test_geodataframe_input(self, two_by_two):
        gdf = gpd.GeoDataFrame(geometry=list(two_by_two.values()), index=list(two_by_two))
        w = contiguity_graph(gdf)
        assert set(w.neighbors['NE']) == {'NW', 'SE'}

    def test_unsupported_rule(self, two_by_two):
        with pytest.raises(ValueError):
            contiguity_graph(two_by_two, rule='bishop')

    def test_contiguity_of_partition(self, two_by_two):
        w = contiguity_graph(two_by_two, rule='rook')
        units = list(two_by_two)

        columns = Partition(units, [1, 2, 1, 2])
        diagonal = Partition(units, [1, 2, 2, 1])

        assert contiguity_score(columns, w)['connected_fraction'] == 1.0
        assert contiguity_score(diagonal, w)['violating_clusters'] == 2
