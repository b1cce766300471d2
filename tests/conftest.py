"""
pytest configuration with shared distance-matrix fixtures.
"""

import pytest
import numpy as np

from regionalization.distance import DistanceMatrix


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def four_unit_matrix():
    """A,B close; C,D close; the two pairs far apart."""
    values = [
        [0, 1, 10, 10],
        [1, 0, 10, 10],
        [10, 10, 0, 1],
        [10, 10, 1, 0],
    ]
    return DistanceMatrix(['A', 'B', 'C', 'D'], values)


@pytest.fixture
def two_blob_matrix():
    """Two tight groups of three units far apart."""
    units = ['a1', 'a2', 'a3', 'b1', 'b2', 'b3']
    groups = np.array([0, 0, 0, 1, 1, 1])
    values = np.where(groups[:, None] == groups[None, :], 0.1, 10.0)
    np.fill_diagonal(values, 0.0)
    return DistanceMatrix(units, values)


@pytest.fixture
def uniform_matrix():
    """Six mutually equidistant units."""
    values = np.ones((6, 6))
    np.fill_diagonal(values, 0.0)
    return DistanceMatrix([f'u{i}' for i in range(6)], values)


@pytest.fixture
def random_matrix():
    """Euclidean distances between 12 random points (no ties)."""
    rng = np.random.default_rng(42)
    points = rng.normal(size=(12, 2))
    values = np.sqrt(((points[:, None, :] - points[None, :, :]) ** 2).sum(axis=-1))
    return DistanceMatrix([f'S{i:02d}' for i in range(12)], values)
