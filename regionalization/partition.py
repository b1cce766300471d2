"""
Flat cluster assignments of spatial units.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Dict, Hashable, Iterable, Iterator, Sequence, Tuple

import numpy as np
import pandas as pd


class Partition(Mapping):
    """
    Read-only mapping of spatial unit to cluster label.

    Labels are contiguous integers ``1..k``, numbered in order of first
    appearance along ``units``; every unit belongs to exactly one cluster and
    no cluster is empty.
    """

    __slots__ = ("_units", "_labels")

    def __init__(self, units: Sequence[Hashable], labels: Sequence):
        units = tuple(units)
        if len(units) != len(labels):
            raise ValueError(f"Got {len(labels)} labels for {len(units)} units")
        if len(set(units)) != len(units):
            raise ValueError("Duplicate spatial units in partition")

        # Relabel to 1..k by first appearance
        relabel: Dict = {}
        for raw in labels:
            if raw not in relabel:
                relabel[raw] = len(relabel) + 1

        self._units = units
        self._labels = {unit: relabel[raw] for unit, raw in zip(units, labels)}

    @classmethod
    def from_clusters(cls, units: Sequence[Hashable], clusters: Iterable[Iterable[Hashable]]) -> "Partition":
        """Build from groups of units; ``units`` fixes the order used for labelling."""
        owner = {}
        for i, group in enumerate(clusters):
            for unit in group:
                if unit in owner:
                    raise ValueError(f"Unit {unit!r} appears in more than one cluster")
                owner[unit] = i
        missing = [u for u in units if u not in owner]
        if missing:
            raise ValueError(f"Units without a cluster: {missing[:5]}")
        extra = set(owner) - set(units)
        if extra:
            raise ValueError(f"Clusters contain unknown units: {sorted(map(str, extra))[:5]}")
        return cls(units, [owner[u] for u in units])

    def __getitem__(self, unit) -> int:
        return self._labels[unit]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)

    @property
    def units(self) -> Tuple[Hashable, ...]:
        return self._units

    @property
    def k(self) -> int:
        """Number of clusters."""
        return max(self._labels.values(), default=0)

    def labels(self) -> np.ndarray:
        """Cluster labels aligned to ``units``."""
        return np.array([self._labels[u] for u in self._units], dtype=int)

    def clusters(self) -> Dict[int, Tuple[Hashable, ...]]:
        """Members per label, each in unit order."""
        groups: Dict[int, list] = {label: [] for label in range(1, self.k + 1)}
        for unit in self._units:
            groups[self._labels[unit]].append(unit)
        return {label: tuple(members) for label, members in groups.items()}

    def sizes(self) -> Dict[int, int]:
        return {label: len(members) for label, members in self.clusters().items()}

    def to_series(self, name: str = "cluster") -> pd.Series:
        return pd.Series(self.labels(), index=list(self._units), name=name)

    def __eq__(self, other) -> bool:
        if isinstance(other, Partition):
            return self._units == other._units and self._labels == other._labels
        return super().__eq__(other)

    __hash__ = None

    def __repr__(self) -> str:
        return f"Partition(n={len(self)}, k={self.k})"
