"""
Synthetic data generators for testing and development.

This module provides deterministic generators for creating lattice datasets
with known ground-truth regions: cells, cell geometries, block-structured
distance matrices and block-endemic community tables.
"""

from .lattice import lattice_grid, cell_geometries, block_distance_matrix, block_community

__all__ = ['lattice_grid', 'cell_geometries', 'block_distance_matrix', 'block_community']
