"""
Optimal cluster-count selection and partition diagnostics.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import networkx as nx
import numpy as np
import pandas as pd
from libpysal import weights
from scipy.cluster.hierarchy import cophenet
from sklearn.metrics import adjusted_rand_score, silhouette_samples
from sklearn.metrics.cluster import pair_confusion_matrix

from .distance import DistanceMatrix
from .errors import DimensionMismatch, InsufficientData
from .partition import Partition
from .upgma import Dendrogram, cut_dendrogram

logger = logging.getLogger(__name__)

DEFAULT_K_CAP = 20

# Scores closer than this are treated as equal; the smaller k wins
SCORE_TIE_ATOL = 1e-12


@dataclass(frozen=True)
class Evaluation:
    """Chosen cluster count with its score, the full score curve and the cut."""

    k: int
    score: float
    curve: Tuple[Tuple[int, float], ...]
    partition: Partition

    def curve_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.curve), columns=["k", "silhouette"])


def silhouette_scores(dm: DistanceMatrix, partition: Partition) -> np.ndarray:
    """
    Per-unit silhouette coefficients for ``partition`` under ``dm``.

    Parameters
    ----------
    dm : DistanceMatrix
        Dissimilarities; its unit order defines the output order.
    partition : Partition
        Assignment covering exactly the units of ``dm``, with 2 <= k <= N-1.

    Returns
    -------
    np.ndarray
        ``(b - a) / max(a, b)`` per unit, in [-1, 1]; 0 for units in
        singleton clusters and where ``a == b == 0``.
    """
    labels = _aligned_labels(dm, partition)
    k = partition.k
    if not 2 <= k <= dm.size() - 1:
        raise ValueError(f"Silhouette needs 2 <= k <= {dm.size() - 1}, got k={k}")
    scores = silhouette_samples(dm.to_array(), labels, metric="precomputed")
    return np.clip(np.nan_to_num(scores, nan=0.0), -1.0, 1.0)


def mean_silhouette(dm: DistanceMatrix, partition: Partition) -> float:
    return float(np.mean(silhouette_scores(dm, partition)))


class ClusterEvaluator:
    """
    Scores dendrogram cuts with the mean silhouette coefficient.

    Parameters
    ----------
    dm : DistanceMatrix
        The matrix the dendrogram was built from.
    """

    def __init__(self, dm: DistanceMatrix):
        self.dm = dm

    def default_k_max(self) -> int:
        return min(self.dm.size() - 1, DEFAULT_K_CAP)

    def evaluate(self, dendrogram: Dendrogram, k_max: Optional[int] = None) -> Evaluation:
        """
        Cut at every k in ``[2, k_max]`` and keep the best-scoring cut.

        Parameters
        ----------
        dendrogram : Dendrogram
            Tree over the same units, in the same order, as ``self.dm``.
        k_max : int | None
            Largest candidate k; default ``min(N - 1, 20)``. Values above
            N - 1 are clamped.

        Returns
        -------
        Evaluation
            Highest mean silhouette; ties go to the smaller k.

        Raises
        ------
        InsufficientData
            If the dendrogram has fewer than 3 units.
        ValueError
            If ``k_max < 2``.
        """
        n = dendrogram.n_leaves
        if n < 3:
            raise InsufficientData(f"Selecting k needs at least 3 spatial units, got {n}")
        if tuple(dendrogram.units) != tuple(self.dm.units()):
            raise DimensionMismatch("Dendrogram units do not match the distance matrix")

        if k_max is None:
            k_max = self.default_k_max()
        elif k_max < 2:
            raise ValueError(f"k_max must be >= 2, got {k_max}")
        k_max = min(k_max, n - 1)

        curve = []
        best_k, best_score, best_partition = None, -np.inf, None
        for k in range(2, k_max + 1):
            partition = cut_dendrogram(dendrogram, k)
            score = mean_silhouette(self.dm, partition)
            curve.append((k, score))
            logger.debug(f"k={k}: silhouette = {score:.4f}")
            if score > best_score + SCORE_TIE_ATOL:
                best_k, best_score, best_partition = k, score, partition

        logger.info(f"Optimal k = {best_k} (silhouette = {best_score:.4f}) over k in [2, {k_max}]")
        return Evaluation(best_k, float(best_score), tuple(curve), best_partition)


def select_optimal_k(
    dendrogram: Dendrogram, dm: DistanceMatrix, k_max: Optional[int] = None
) -> Tuple[int, float, Tuple[Tuple[int, float], ...]]:
    """Return ``(k, score, curve)`` for the best silhouette cut of ``dendrogram``."""
    result = ClusterEvaluator(dm).evaluate(dendrogram, k_max)
    return result.k, result.score, result.curve


def cophenetic_correlation(dendrogram: Dendrogram, dm: DistanceMatrix) -> float:
    """
    Correlation between input distances and dendrogram (cophenetic) distances.

    Returns NaN when either side is constant.
    """
    if dm.size() < 3:
        return float("nan")
    condensed = dm.condensed()
    if np.ptp(condensed) == 0:
        return float("nan")
    corr, _ = cophenet(dendrogram.to_linkage_matrix(), condensed)
    return float(corr)


def partition_stability(partition_a: Partition, partition_b: Partition) -> Dict[str, float]:
    """
    Compare two partitions of the same units.

    Returns
    -------
    dict
        {'ari': float, 'jaccard': float}

    Notes
    -----
    ARI is permutation-invariant; Jaccard is TP/(TP+FP+FN) over unit pairs.
    """
    if set(partition_a.units) != set(partition_b.units):
        raise ValueError("Partitions must cover the same spatial units")

    order = partition_a.units
    labels_a = np.array([partition_a[u] for u in order])
    labels_b = np.array([partition_b[u] for u in order])

    ari = adjusted_rand_score(labels_a, labels_b)

    # cm[1,1] = together in both (TP), cm[0,1] = together only in B (FP), cm[1,0] = only in A (FN)
    cm = pair_confusion_matrix(labels_a, labels_b)
    FP, FN, TP = cm[0, 1], cm[1, 0], cm[1, 1]
    jaccard = TP / (TP + FP + FN) if (TP + FP + FN) > 0 else 1.0

    return {
        'ari': float(ari),
        'jaccard': float(jaccard)
    }


def contiguity_score(partition: Partition, w: weights.W, use_bfs: bool = True) -> Dict[str, float]:
    """
    Check that each cluster forms a single connected component under ``w``.

    Parameters
    ----------
    partition : Partition
        Cluster labels; units missing from ``w`` count as isolated.
    w : weights.W
        Spatial graph keyed by unit id.
    use_bfs : bool
        Walk neighbours directly instead of converting to NetworkX.

    Returns
    -------
    dict
        {'connected_fraction': float in [0,1], 'violating_clusters': int, 'n_clusters': int}
    """
    clusters = partition.clusters()
    violating = 0

    if use_bfs:
        for members in clusters.values():
            if len(members) <= 1:
                continue
            member_set = set(members)
            visited = {members[0]}
            queue = deque([members[0]])
            while queue:
                node = queue.popleft()
                for neighbor in w.neighbors.get(node, []):
                    if neighbor in member_set and neighbor not in visited:
                        visited.add(neighbor)
                        queue.append(neighbor)
            if len(visited) < len(members):
                violating += 1
    else:
        G = nx.Graph()
        G.add_nodes_from(partition.units)
        for node, neighbors in w.neighbors.items():
            G.add_edges_from((node, nb) for nb in neighbors)
        for members in clusters.values():
            if len(members) <= 1:
                continue
            if not nx.is_connected(G.subgraph(members)):
                violating += 1

    n_clusters = len(clusters)
    connected_fraction = (n_clusters - violating) / n_clusters if n_clusters > 0 else 1.0

    return {
        'connected_fraction': connected_fraction,
        'violating_clusters': violating,
        'n_clusters': n_clusters
    }


def _aligned_labels(dm: DistanceMatrix, partition: Partition) -> np.ndarray:
    units = dm.units()
    if len(partition) != len(units) or any(u not in partition for u in units):
        raise DimensionMismatch("Partition does not cover exactly the distance-matrix units")
    return np.array([partition[u] for u in units], dtype=int)
