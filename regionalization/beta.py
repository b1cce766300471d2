"""
Beta-diversity distance providers and replicate averaging.

Phylogenetic beta diversity is computed outside this package; any callable
that maps an input (community table, tree replicate, ...) to a
DistanceMatrix can stand in as a provider. ``CommunityBetaDistance`` is the
plain taxonomic version over a sites x taxa presence table.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform

from .distance import DistanceMatrix
from .errors import DimensionMismatch, InsufficientData

logger = logging.getLogger(__name__)

DistanceProvider = Callable[[Any], DistanceMatrix]

BETA_INDICES = ("sorensen", "simpson", "jaccard")


class CommunityBetaDistance:
    """
    Pairwise beta diversity between sites of a presence/absence table.

    Parameters
    ----------
    index : str
        'sorensen' (b+c)/(2a+b+c), 'simpson' min(b,c)/(a+min(b,c)) or
        'jaccard' (b+c)/(a+b+c), where a counts shared taxa and b, c the
        taxa unique to each site.

    Notes
    -----
    Any non-zero abundance counts as presence. Rows are sites (spatial units),
    columns are taxa; the row index becomes the unit order.
    """

    def __init__(self, index: str = "sorensen"):
        if index not in BETA_INDICES:
            raise ValueError(f"Unsupported beta index: {index}. Use one of {BETA_INDICES}")
        self.index = index

    def __call__(self, community: pd.DataFrame) -> DistanceMatrix:
        if community.index.has_duplicates:
            raise ValueError("Community table has duplicate site ids")

        presence = community.fillna(0).to_numpy() != 0
        empty = ~presence.any(axis=1)
        if empty.any():
            sites = list(community.index[empty][:5])
            raise ValueError(f"Sites without any taxa: {sites}")

        units = list(community.index)
        if len(units) < 2:
            return DistanceMatrix(units, np.zeros((len(units), len(units))))

        if self.index == "sorensen":
            values = squareform(pdist(presence, metric="dice"))
        elif self.index == "jaccard":
            values = squareform(pdist(presence, metric="jaccard"))
        else:
            counts = presence.astype(float)
            shared = counts @ counts.T
            richness = counts.sum(axis=1)
            only_i = richness[:, None] - shared
            only_j = richness[None, :] - shared
            smaller = np.minimum(only_i, only_j)
            values = smaller / (shared + smaller)
            np.fill_diagonal(values, 0.0)

        logger.debug(f"Computed {self.index} beta diversity for {len(units)} sites x {community.shape[1]} taxa")
        return DistanceMatrix(units, values)

    def __repr__(self) -> str:
        return f"CommunityBetaDistance(index={self.index!r})"


def mean_distance(
    replicates: Sequence[Any],
    provider: DistanceProvider,
    max_workers: Optional[int] = None,
) -> DistanceMatrix:
    """
    Average the distance matrices computed for independent replicates.

    Parameters
    ----------
    replicates : sequence
        Inputs for ``provider``, e.g. one per tree of a posterior sample.
    provider : callable
        Maps one replicate to a DistanceMatrix.
    max_workers : int | None
        Thread pool size; None or 1 runs sequentially.

    Returns
    -------
    DistanceMatrix
        Element-wise mean over replicates, in the first replicate's unit order.

    Raises
    ------
    InsufficientData
        If no replicates are given.
    DimensionMismatch
        If replicates disagree on the unit set or order.

    Notes
    -----
    Results are summed in replicate order, not completion order, so the mean
    is identical whether or not a pool is used.
    """
    replicates = list(replicates)
    if not replicates:
        raise InsufficientData("mean_distance needs at least one replicate")

    results: Dict[int, DistanceMatrix] = {}
    if max_workers is None or max_workers <= 1 or len(replicates) == 1:
        for i, replicate in enumerate(replicates):
            results[i] = provider(replicate)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(provider, replicate): i for i, replicate in enumerate(replicates)}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

    first = results[0]
    total = np.zeros((first.size(), first.size()), dtype=float)
    for i in range(len(replicates)):
        dm = results[i]
        if dm.units() != first.units():
            raise DimensionMismatch(f"Replicate {i} units differ from replicate 0")
        total += dm.values

    logger.info(f"Averaged {len(replicates)} distance replicates over {first.size()} units")
    return DistanceMatrix(first.units(), total / len(replicates))
