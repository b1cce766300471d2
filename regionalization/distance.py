"""
Immutable symmetric dissimilarity matrix over spatial units.
"""

from __future__ import annotations

import logging
from typing import Callable, Hashable, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.spatial.distance import squareform

from .errors import AsymmetryError, DimensionMismatch, UnknownUnit

logger = logging.getLogger(__name__)

DEFAULT_ATOL = 1e-9


class DistanceMatrix:
    """
    Pairwise dissimilarities between a fixed, ordered set of spatial units.

    Parameters
    ----------
    units : sequence of hashable
        Spatial-unit identifiers (grid cells, sites). Order is kept as given.
    values : array-like
        Square (N, N) table of non-negative dissimilarities aligned to ``units``.
    atol : float
        Absolute tolerance for the symmetry and zero-diagonal checks.

    Raises
    ------
    DimensionMismatch
        If ``values`` is not an (N, N) table for N units.
    AsymmetryError
        If ``values`` differs from its transpose by more than ``atol``.
    ValueError
        On duplicate units, negative or non-finite values, or a non-zero diagonal.

    Notes
    -----
    The stored array is symmetrized (mean of the table and its transpose), its
    diagonal is set to exactly zero and it is marked read-only.
    """

    __slots__ = ("_units", "_index", "_values")

    def __init__(self, units: Sequence[Hashable], values, atol: float = DEFAULT_ATOL):
        units = tuple(units)
        index = {unit: i for i, unit in enumerate(units)}
        if len(index) != len(units):
            seen = set()
            dupes = [u for u in units if u in seen or seen.add(u)]
            raise ValueError(f"Duplicate spatial units: {dupes[:5]}")

        arr = np.array(values, dtype=float)
        n = len(units)
        if arr.ndim != 2 or arr.shape != (n, n):
            raise DimensionMismatch(
                f"Value table has shape {arr.shape}, expected ({n}, {n}) for {n} units"
            )

        if not np.isfinite(arr).all():
            raise ValueError("Distance values must be finite (no NaN/Inf values)")

        if n and not np.allclose(arr, arr.T, rtol=0.0, atol=atol):
            worst = float(np.max(np.abs(arr - arr.T)))
            raise AsymmetryError(
                f"Value table is not symmetric (max |d(a,b) - d(b,a)| = {worst:.3g} > {atol:g})"
            )

        diagonal = np.diag(arr)
        if np.any(np.abs(diagonal) > atol):
            raise ValueError("Distance of a unit to itself must be zero")

        if np.any(arr < -atol):
            raise ValueError("Distance values must be non-negative")

        arr = (arr + arr.T) / 2.0
        np.fill_diagonal(arr, 0.0)
        arr = np.clip(arr, 0.0, None)
        arr.flags.writeable = False

        self._units = units
        self._index = index
        self._values = arr

    @classmethod
    def from_function(
        cls,
        units: Iterable[Hashable],
        func: Callable[[Hashable, Hashable], float],
        atol: float = DEFAULT_ATOL,
    ) -> "DistanceMatrix":
        """Build from a symmetric dissimilarity function evaluated on each pair once."""
        units = tuple(units)
        n = len(units)
        arr = np.zeros((n, n), dtype=float)
        for i in range(n):
            for j in range(i + 1, n):
                arr[i, j] = arr[j, i] = float(func(units[i], units[j]))
        return cls(units, arr, atol=atol)

    @classmethod
    def from_condensed(
        cls, units: Sequence[Hashable], condensed, atol: float = DEFAULT_ATOL
    ) -> "DistanceMatrix":
        """Build from a scipy-style condensed distance vector."""
        units = tuple(units)
        n = len(units)
        condensed = np.asarray(condensed, dtype=float)
        expected = n * (n - 1) // 2
        if condensed.ndim != 1 or condensed.shape[0] != expected:
            raise DimensionMismatch(
                f"Condensed vector has shape {condensed.shape}, expected ({expected},) for {n} units"
            )
        if n < 2:
            return cls(units, np.zeros((n, n)), atol=atol)
        return cls(units, squareform(condensed, checks=False), atol=atol)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, atol: float = DEFAULT_ATOL) -> "DistanceMatrix":
        """
        Build from a square DataFrame indexed and labelled by unit id.

        Columns are reordered to follow the index, so the unit order is the
        row order of ``df``.
        """
        if df.shape[0] != df.shape[1]:
            raise DimensionMismatch(f"DataFrame has shape {df.shape}, expected a square table")
        if set(df.index) != set(df.columns):
            missing = sorted(map(str, set(df.index) ^ set(df.columns)))
            raise DimensionMismatch(f"Row and column labels differ: {missing[:5]}")
        units = list(df.index)
        return cls(units, df.loc[units, units].to_numpy(dtype=float), atol=atol)

    def distance(self, a: Hashable, b: Hashable) -> float:
        """Dissimilarity between units ``a`` and ``b``."""
        return float(self._values[self.index_of(a), self.index_of(b)])

    def index_of(self, unit: Hashable) -> int:
        try:
            return self._index[unit]
        except (KeyError, TypeError):
            raise UnknownUnit(unit) from None

    def units(self) -> Tuple[Hashable, ...]:
        """Unit identifiers in insertion order."""
        return self._units

    def size(self) -> int:
        return len(self._units)

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit) -> bool:
        try:
            return unit in self._index
        except TypeError:
            return False

    @property
    def values(self) -> np.ndarray:
        """Read-only (N, N) view of the dissimilarities."""
        return self._values

    def to_array(self) -> np.ndarray:
        """Writable copy of the (N, N) dissimilarities."""
        return self._values.copy()

    def condensed(self) -> np.ndarray:
        """Upper triangle as a scipy condensed vector."""
        return squareform(self._values, checks=False)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_array(), index=list(self._units), columns=list(self._units))

    def subset(self, units: Iterable[Hashable]) -> "DistanceMatrix":
        """
        Restrict to ``units``, keeping this matrix's unit order.

        Raises
        ------
        UnknownUnit
            If any requested unit is absent.
        """
        wanted = set()
        for unit in units:
            self.index_of(unit)
            wanted.add(unit)
        keep: List[int] = [i for i, u in enumerate(self._units) if u in wanted]
        sub = self._values[np.ix_(keep, keep)]
        logger.debug(f"Restricted distance matrix to {len(keep)} of {self.size()} units")
        return DistanceMatrix([self._units[i] for i in keep], sub)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DistanceMatrix):
            return NotImplemented
        return self._units == other._units and np.array_equal(self._values, other._values)

    __hash__ = None

    def __repr__(self) -> str:
        return f"DistanceMatrix(n={self.size()})"
