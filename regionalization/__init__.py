"""
Regionalization package for biodiversity spatial units.

This package clusters a beta-diversity distance matrix with average linkage
(UPGMA), picks the number of regions by mean silhouette, and assembles the
chosen partition into colored region geometries, per extent or per subregion.
"""

from .errors import (
    RegionalizationError,
    UnknownUnit,
    DimensionMismatch,
    AsymmetryError,
    InsufficientData,
    MissingGeometry,
)
from .distance import DistanceMatrix
from .partition import Partition
from .upgma import Dendrogram, Merge, cluster, cut_dendrogram
from .evaluation import (
    ClusterEvaluator,
    Evaluation,
    silhouette_scores,
    select_optimal_k,
    cophenetic_correlation,
    partition_stability,
    contiguity_score,
)
from .assembly import Region, AssemblyResult, assemble_regions, region_colors, regions_to_frame
from .adjacency import contiguity_graph
from .beta import CommunityBetaDistance, mean_distance
from .config import PipelineConfig, default_config, validate_config
from .pipeline import Stage, PipelineResult, BatchReport, SubregionOutcome, run_pipeline, run_batch

__all__ = [
    'RegionalizationError',
    'UnknownUnit',
    'DimensionMismatch',
    'AsymmetryError',
    'InsufficientData',
    'MissingGeometry',
    'DistanceMatrix',
    'Partition',
    'Dendrogram',
    'Merge',
    'cluster',
    'cut_dendrogram',
    'ClusterEvaluator',
    'Evaluation',
    'silhouette_scores',
    'select_optimal_k',
    'cophenetic_correlation',
    'partition_stability',
    'contiguity_score',
    'Region',
    'AssemblyResult',
    'assemble_regions',
    'region_colors',
    'regions_to_frame',
    'contiguity_graph',
    'CommunityBetaDistance',
    'mean_distance',
    'PipelineConfig',
    'default_config',
    'validate_config',
    'Stage',
    'PipelineResult',
    'BatchReport',
    'SubregionOutcome',
    'run_pipeline',
    'run_batch',
]
