"""
Average-linkage (UPGMA) agglomerative clustering over a DistanceMatrix.
"""

from __future__ import annotations

import heapq
import logging
import numbers
from dataclasses import dataclass
from typing import Hashable, List, Sequence, Tuple

import numpy as np

from .distance import DistanceMatrix
from .errors import InsufficientData
from .partition import Partition

logger = logging.getLogger(__name__)

# Relative tolerance for treating two candidate merge distances as tied
TIE_RTOL = 1e-12


def unit_sort_key(unit: Hashable) -> Tuple[int, object]:
    """Total order over mixed unit identifiers: numbers numerically, then strings."""
    if isinstance(unit, numbers.Real) and not isinstance(unit, bool):
        return (0, float(unit))
    return (1, str(unit))


@dataclass(frozen=True)
class Merge:
    """
    One internal node of a dendrogram.

    ``left`` and ``right`` are node ids: ``0..N-1`` are leaves in unit order,
    ``N + i`` is the cluster created by the i-th merge.
    """

    left: int
    right: int
    height: float
    size: int
    members: Tuple[Hashable, ...]


class Dendrogram:
    """
    Binary merge tree over the units of a DistanceMatrix.

    Parameters
    ----------
    units : sequence of hashable
        Leaf identifiers in distance-matrix order.
    merges : sequence of Merge
        Exactly ``len(units) - 1`` merges with non-decreasing heights.
    """

    __slots__ = ("_units", "_merges")

    def __init__(self, units: Sequence[Hashable], merges: Sequence[Merge]):
        units = tuple(units)
        merges = tuple(merges)
        if len(merges) != len(units) - 1:
            raise ValueError(f"Expected {len(units) - 1} merges for {len(units)} units, got {len(merges)}")
        heights = [m.height for m in merges]
        if any(b < a for a, b in zip(heights, heights[1:])):
            raise ValueError("Merge heights must be non-decreasing")
        self._units = units
        self._merges = merges

    @property
    def units(self) -> Tuple[Hashable, ...]:
        return self._units

    @property
    def merges(self) -> Tuple[Merge, ...]:
        return self._merges

    @property
    def n_leaves(self) -> int:
        return len(self._units)

    def heights(self) -> np.ndarray:
        return np.array([m.height for m in self._merges], dtype=float)

    def to_linkage_matrix(self) -> np.ndarray:
        """
        Scipy linkage layout: one row ``[left, right, height, size]`` per merge.

        The result can be handed to ``scipy.cluster.hierarchy.dendrogram`` or
        ``cophenet``.
        """
        z = np.zeros((len(self._merges), 4), dtype=float)
        for i, m in enumerate(self._merges):
            z[i] = (m.left, m.right, m.height, m.size)
        return z

    def cut(self, k: int) -> Partition:
        return cut_dendrogram(self, k)

    def cut_height(self, height: float) -> Partition:
        """Partition formed by every merge at or below ``height``."""
        applied = int(np.searchsorted(self.heights(), height, side="right"))
        return cut_dendrogram(self, self.n_leaves - applied)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Dendrogram):
            return NotImplemented
        return self._units == other._units and self._merges == other._merges

    __hash__ = None

    def __repr__(self) -> str:
        top = self._merges[-1].height if self._merges else 0.0
        return f"Dendrogram(n_leaves={self.n_leaves}, height={top:.4g})"


def cluster(dm: DistanceMatrix) -> Dendrogram:
    """
    Build a UPGMA dendrogram from a distance matrix.

    Parameters
    ----------
    dm : DistanceMatrix
        Pairwise dissimilarities between N >= 2 spatial units.

    Returns
    -------
    Dendrogram
        N-1 merges with non-decreasing heights.

    Raises
    ------
    InsufficientData
        If fewer than 2 units are supplied.

    Notes
    -----
    Distances from a merged cluster to every other active cluster follow the
    Lance-Williams update for average linkage,
    ``d(ij, k) = (n_i d(i, k) + n_j d(j, k)) / (n_i + n_j)``.
    Pairs tied at the minimum distance are broken by the lexicographically
    smallest sorted union of member identifiers, so the tree does not depend
    on floating-point scan order. Heights are clamped to the running maximum.
    """
    n = dm.size()
    if n < 2:
        raise InsufficientData(f"Clustering needs at least 2 spatial units, got {n}")

    units = dm.units()
    work = dm.to_array()
    np.fill_diagonal(work, np.inf)

    sizes = np.ones(n, dtype=float)
    node_ids = list(range(n))
    members: List[List[int]] = [[i] for i in range(n)]
    keys: List[Tuple] = [(unit_sort_key(u),) for u in units]

    merges: List[Merge] = []
    running_max = 0.0

    for step in range(n - 1):
        d_min = float(work.min())
        tol = TIE_RTOL * max(1.0, abs(d_min))
        tied = np.argwhere(np.triu(work <= d_min + tol, k=1))

        if len(tied) == 1:
            i, j = (int(x) for x in tied[0])
        else:
            i, j = min(
                ((int(a), int(b)) for a, b in tied),
                key=lambda pair: tuple(heapq.merge(keys[pair[0]], keys[pair[1]])),
            )

        height = d_min
        if height < running_max:
            logger.debug(f"Clamped merge height {height!r} to {running_max!r} at step {step}")
            height = running_max
        running_max = height

        left, right = sorted((node_ids[i], node_ids[j]))
        merged = sorted(members[i] + members[j])
        size = int(sizes[i] + sizes[j])
        merges.append(Merge(left, right, height, size, tuple(units[p] for p in merged)))

        # Lance-Williams average-linkage update into slot i, retire slot j
        row = (sizes[i] * work[i] + sizes[j] * work[j]) / (sizes[i] + sizes[j])
        work[i, :] = row
        work[:, i] = row
        work[i, i] = np.inf
        work[j, :] = np.inf
        work[:, j] = np.inf

        sizes[i] = size
        node_ids[i] = n + step
        members[i] = merged
        keys[i] = tuple(heapq.merge(keys[i], keys[j]))
        members[j] = []

    logger.info(f"UPGMA completed: {n} units, {len(merges)} merges, root height {running_max:.4g}")
    return Dendrogram(units, merges)


def cut_dendrogram(dendrogram: Dendrogram, k: int) -> Partition:
    """
    Cut a dendrogram into exactly ``k`` clusters by undoing the last k-1 merges.

    Raises
    ------
    ValueError
        Unless ``1 <= k <= n_leaves``.
    """
    n = dendrogram.n_leaves
    if not 1 <= k <= n:
        raise ValueError(f"k must be in [1, {n}], got {k}")

    groups = {i: [i] for i in range(n)}
    for step, merge in enumerate(dendrogram.merges[: n - k]):
        groups[n + step] = groups.pop(merge.left) + groups.pop(merge.right)

    labels = np.empty(n, dtype=int)
    for group_id, positions in groups.items():
        labels[positions] = group_id
    return Partition(dendrogram.units, labels.tolist())
