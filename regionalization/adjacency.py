"""
Polygon contiguity graphs over spatial units.
"""

from __future__ import annotations

import logging

import geopandas as gpd
from libpysal import weights
from libpysal.weights import contiguity

from .assembly import GeometryLookup, as_geometry_lookup

logger = logging.getLogger(__name__)


def contiguity_graph(geometry_lookup: GeometryLookup, rule: str = "rook", crs=None) -> weights.W:
    """
    Create a polygon contiguity graph keyed by spatial-unit id.

    Parameters
    ----------
    geometry_lookup : mapping | GeoSeries | GeoDataFrame
        Polygon per spatial unit.
    rule : str
        'rook' or 'queen' contiguity; default 'rook'.
    crs : optional
        CRS attached to the intermediate GeoDataFrame.

    Returns
    -------
    weights.W
        Undirected, symmetrized, binary contiguity graph; ``id_order``
        follows the lookup order.
    """
    if rule.lower() == "rook":
        builder = contiguity.Rook
    elif rule.lower() == "queen":
        builder = contiguity.Queen
    else:
        raise ValueError(f"Unsupported contiguity rule: {rule}")

    geometries = as_geometry_lookup(geometry_lookup)
    ids = list(geometries)
    gdf = gpd.GeoDataFrame(geometry=list(geometries.values()), index=ids, crs=crs)

    try:
        w = builder.from_dataframe(gdf, use_index=True)
    except TypeError:
        # Older libpysal without use_index
        logger.debug("use_index not supported in this libpysal version - passing ids")
        w = builder.from_dataframe(gdf, ids=ids)

    w.symmetrize()
    w.transform = 'b'

    if w.islands:
        logger.info(f"Contiguity graph has {len(w.islands)} islands")

    return w
