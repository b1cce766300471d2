"""
Turn a partition into regions: merged geometries, member counts and colors.
"""

from __future__ import annotations

import colorsys
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence, Tuple, Union

import geopandas as gpd
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .errors import MissingGeometry
from .partition import Partition

logger = logging.getLogger(__name__)

# ColorBrewer "Paired", dark tones first; cycled by label
DEFAULT_PALETTE: Tuple[str, ...] = (
    "#1f78b4", "#33a02c", "#e31a1c", "#ff7f00", "#6a3d9a", "#b15928",
    "#a6cee3", "#b2df8a", "#fb9a99", "#fdbf6f", "#cab2d6", "#ffff99",
)

GeometryLookup = Union[Mapping, gpd.GeoSeries, gpd.GeoDataFrame]


@dataclass(frozen=True)
class Region:
    """A cluster label with its member units and their merged geometry."""

    label: int
    members: Tuple[Hashable, ...]
    geometry: BaseGeometry
    color: str

    @property
    def n_members(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class AssemblyResult:
    """Regions in output order plus any units skipped for lack of geometry."""

    regions: Tuple[Region, ...]
    warnings: Tuple[MissingGeometry, ...] = field(default_factory=tuple)

    @property
    def skipped_units(self) -> Tuple[Hashable, ...]:
        return tuple(w.unit for w in self.warnings)

    def __iter__(self):
        return iter(self.regions)

    def __len__(self) -> int:
        return len(self.regions)


def as_geometry_lookup(lookup: GeometryLookup) -> Dict[Hashable, BaseGeometry]:
    """Normalize a mapping, GeoSeries or GeoDataFrame (indexed by unit) to a dict."""
    if isinstance(lookup, gpd.GeoDataFrame):
        lookup = lookup.geometry
    if isinstance(lookup, gpd.GeoSeries):
        if not lookup.index.is_unique:
            raise ValueError("Geometry index must be unique per spatial unit")
        return {unit: geom for unit, geom in lookup.items()}
    return dict(lookup)


def region_colors(labels: Sequence[int], palette: Optional[Union[str, Sequence[str]]] = None) -> Dict[int, str]:
    """
    Deterministic color per cluster label.

    Parameters
    ----------
    labels : sequence of int
        Cluster labels (1..k).
    palette : None | "hue" | sequence of str
        None cycles ``DEFAULT_PALETTE`` by label; "hue" spaces hues evenly
        around the HSV wheel over the largest label; a sequence is cycled.
    """
    labels = sorted(set(labels))
    if palette == "hue":
        n = max(labels, default=1)
        colors = {}
        for label in labels:
            r, g, b = colorsys.hsv_to_rgb((label - 1) / n, 0.65, 0.9)
            colors[label] = "#{:02x}{:02x}{:02x}".format(round(r * 255), round(g * 255), round(b * 255))
        return colors

    if palette is None:
        palette = DEFAULT_PALETTE
    elif isinstance(palette, str):
        raise ValueError(f"Unknown palette {palette!r}; use None, 'hue' or a list of colors")
    if len(palette) == 0:
        raise ValueError("palette must not be empty")
    return {label: palette[(label - 1) % len(palette)] for label in labels}


def assemble_regions(
    partition: Partition,
    geometry_lookup: GeometryLookup,
    palette: Optional[Union[str, Sequence[str]]] = None,
) -> AssemblyResult:
    """
    Group units by label and union their geometries into regions.

    Parameters
    ----------
    partition : Partition
        Unit to cluster-label assignment.
    geometry_lookup : mapping | GeoSeries | GeoDataFrame
        Geometry per spatial unit, keyed (or indexed) by unit id.
    palette : None | "hue" | sequence of str
        Passed to ``region_colors``.

    Returns
    -------
    AssemblyResult
        Regions ordered by descending member count then ascending label.

    Notes
    -----
    A unit with no (or an empty) geometry is skipped and recorded as a
    ``MissingGeometry`` warning; a label left with no geometry at all is
    dropped with a warning. Neither aborts the assembly.
    """
    geometries = as_geometry_lookup(geometry_lookup)
    colors = region_colors(range(1, partition.k + 1), palette)

    regions: List[Region] = []
    warnings: List[MissingGeometry] = []

    for label, members in partition.clusters().items():
        kept, shapes = [], []
        for unit in members:
            geom = geometries.get(unit)
            if geom is None or geom.is_empty:
                missing = MissingGeometry(unit, label)
                logger.warning(f"Skipping unit: {missing}")
                warnings.append(missing)
                continue
            kept.append(unit)
            shapes.append(geom)

        if not kept:
            logger.warning(f"Cluster {label} has no geometry left - region dropped")
            continue

        regions.append(Region(label, tuple(kept), unary_union(shapes), colors[label]))

    regions.sort(key=lambda r: (-r.n_members, r.label))
    logger.info(f"Assembled {len(regions)} regions from {partition.k} clusters ({len(warnings)} units skipped)")
    return AssemblyResult(tuple(regions), tuple(warnings))


def regions_to_frame(regions: Union[AssemblyResult, Sequence[Region]], crs=None) -> gpd.GeoDataFrame:
    """One row per region: label, n_members, color, geometry."""
    rows = [
        {"label": r.label, "n_members": r.n_members, "color": r.color, "geometry": r.geometry}
        for r in regions
    ]
    return gpd.GeoDataFrame(rows, columns=["label", "n_members", "color", "geometry"], geometry="geometry", crs=crs)
