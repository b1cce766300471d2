"""
Error kinds raised while building, clustering and assembling regions.
"""

from __future__ import annotations


class RegionalizationError(Exception):
    """Base class for all regionalization failures."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class UnknownUnit(RegionalizationError, KeyError):
    """A spatial unit identifier is not part of the distance matrix."""

    def __init__(self, unit):
        self.unit = unit
        super().__init__(f"Unknown spatial unit: {unit!r}")

    def __reduce__(self):
        return (type(self), (self.unit,))

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return self.args[0]


class DimensionMismatch(RegionalizationError, ValueError):
    """A value table does not match the number of spatial units."""


class AsymmetryError(RegionalizationError, ValueError):
    """A value table is not symmetric within tolerance."""


class InsufficientData(RegionalizationError, ValueError):
    """Too few spatial units for the requested operation."""


class MissingGeometry(RegionalizationError):
    """A spatial unit in a partition has no geometry."""

    def __init__(self, unit, label=None):
        self.unit = unit
        self.label = label
        msg = f"No geometry for spatial unit {unit!r}"
        if label is not None:
            msg += f" (cluster {label})"
        super().__init__(msg)

    def __reduce__(self):
        return (type(self), (self.unit, self.label))
