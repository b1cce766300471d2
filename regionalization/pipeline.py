"""
End-to-end regionalization: distances -> dendrogram -> optimal k -> regions,
for one extent or for a batch of isolated subregions.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .assembly import AssemblyResult, GeometryLookup, Region, as_geometry_lookup, assemble_regions
from .config import PipelineConfig, validate_config
from .distance import DistanceMatrix
from .errors import MissingGeometry, RegionalizationError
from .evaluation import ClusterEvaluator, Evaluation, cophenetic_correlation
from .partition import Partition
from .upgma import Dendrogram, cluster

logger = logging.getLogger(__name__)


class Stage(enum.IntEnum):
    BUILT = 1
    CLUSTERED = 2
    EVALUATED = 3
    ASSEMBLED = 4


@dataclass(frozen=True)
class PipelineResult:
    """Outputs of one pipeline run; ``assembly`` is None when no geometries were given."""

    distance_matrix: DistanceMatrix
    dendrogram: Dendrogram
    evaluation: Evaluation
    cophenetic: float
    assembly: Optional[AssemblyResult] = None

    @property
    def stage(self) -> Stage:
        return Stage.ASSEMBLED if self.assembly is not None else Stage.EVALUATED

    @property
    def k(self) -> int:
        return self.evaluation.k

    @property
    def score(self) -> float:
        return self.evaluation.score

    @property
    def partition(self) -> Partition:
        return self.evaluation.partition

    @property
    def regions(self) -> Tuple[Region, ...]:
        return self.assembly.regions if self.assembly is not None else ()

    @property
    def warnings(self) -> Tuple[MissingGeometry, ...]:
        return self.assembly.warnings if self.assembly is not None else ()


def as_distance_matrix(distance: Union[DistanceMatrix, pd.DataFrame], atol: float) -> DistanceMatrix:
    if isinstance(distance, DistanceMatrix):
        return distance
    if isinstance(distance, pd.DataFrame):
        return DistanceMatrix.from_frame(distance, atol=atol)
    raise TypeError(f"Expected DistanceMatrix or DataFrame, got {type(distance).__name__}")


def run_pipeline(
    distance: Union[DistanceMatrix, pd.DataFrame],
    geometry_lookup: Optional[GeometryLookup] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> PipelineResult:
    """
    Cluster, choose k and (optionally) assemble regions for one extent.

    Parameters
    ----------
    distance : DistanceMatrix | pd.DataFrame
        Pairwise dissimilarities; a square DataFrame is validated with
        ``config['atol']``.
    geometry_lookup : mapping | GeoSeries | GeoDataFrame | None
        Geometry per unit. Without it the run stops after evaluation.
    config : PipelineConfig | None
        Merged over ``default_config()``.

    Raises
    ------
    DimensionMismatch, AsymmetryError
        If a DataFrame input is malformed.
    InsufficientData
        If fewer than 3 units are supplied.
    """
    cfg = validate_config(config)

    dm = as_distance_matrix(distance, cfg['atol'])
    logger.debug(f"Stage {Stage.BUILT.name}: {dm.size()} units")

    dendrogram = cluster(dm)
    logger.debug(f"Stage {Stage.CLUSTERED.name}: root height {dendrogram.heights()[-1]:.4g}")

    evaluation = ClusterEvaluator(dm).evaluate(dendrogram, cfg['k_max'])
    cophenetic = cophenetic_correlation(dendrogram, dm)
    logger.debug(f"Stage {Stage.EVALUATED.name}: k={evaluation.k}, cophenetic r={cophenetic:.3f}")

    assembly = None
    if geometry_lookup is not None:
        assembly = assemble_regions(evaluation.partition, geometry_lookup, cfg['palette'])
        logger.debug(f"Stage {Stage.ASSEMBLED.name}: {len(assembly)} regions")

    return PipelineResult(dm, dendrogram, evaluation, cophenetic, assembly)


@dataclass(frozen=True)
class SubregionOutcome:
    """Result of one subregion's pipeline: either ``result`` or an error kind and message."""

    name: Hashable
    n_units: int
    result: Optional[PipelineResult] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class BatchReport:
    """Per-subregion outcomes keyed by subregion name, in first-seen order."""

    outcomes: Dict[Hashable, SubregionOutcome] = field(default_factory=dict)

    def __getitem__(self, name: Hashable) -> SubregionOutcome:
        return self.outcomes[name]

    def __iter__(self):
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> Dict[Hashable, PipelineResult]:
        return {name: o.result for name, o in self.outcomes.items() if o.ok}

    @property
    def failed(self) -> Dict[Hashable, SubregionOutcome]:
        return {name: o for name, o in self.outcomes.items() if not o.ok}

    def to_frame(self) -> pd.DataFrame:
        """One row per subregion: status, chosen k and score, or the failure."""
        rows = []
        for name, o in self.outcomes.items():
            rows.append({
                'subregion': name,
                'status': 'ok' if o.ok else 'failed',
                'n_units': o.n_units,
                'k': o.result.k if o.ok else pd.NA,
                'score': o.result.score if o.ok else np.nan,
                'n_regions': len(o.result.regions) if o.ok else pd.NA,
                'error_kind': o.error_kind,
                'message': o.message,
            })
        columns = ['subregion', 'status', 'n_units', 'k', 'score', 'n_regions', 'error_kind', 'message']
        return pd.DataFrame(rows, columns=columns)

    def summary_lines(self) -> List[str]:
        lines = []
        for name, o in self.outcomes.items():
            if o.ok:
                lines.append(f"{name}: ok k={o.result.k} silhouette={o.result.score:.4f} ({o.n_units} units)")
            else:
                lines.append(f"{name}: FAILED {o.error_kind}: {o.message}")
        return lines


def group_by_subregion(
    subregions: Union[Mapping[Hashable, Hashable], pd.Series],
    units: Tuple[Hashable, ...],
) -> Dict[Hashable, List[Hashable]]:
    """
    Members per subregion name, each list in distance-matrix order.

    Units of ``subregions`` that are not in ``units`` are kept at the end so
    the subregion fails explicitly rather than silently shrinking.
    """
    if isinstance(subregions, pd.Series):
        subregions = subregions.dropna().to_dict()

    position = {unit: i for i, unit in enumerate(units)}
    ordered = sorted(subregions, key=lambda u: position.get(u, len(units)))

    groups: Dict[Hashable, List[Hashable]] = {}
    for unit in ordered:
        groups.setdefault(subregions[unit], []).append(unit)

    unassigned = [u for u in units if u not in subregions]
    if unassigned:
        logger.warning(f"{len(unassigned)} units have no subregion and are left out of the batch")
    return groups


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


def _run_subregion(
    name: Hashable,
    dm: DistanceMatrix,
    geometries: Optional[Dict[Hashable, Any]],
    cfg: PipelineConfig,
) -> SubregionOutcome:
    try:
        result = run_pipeline(dm, geometries, cfg)
    except RegionalizationError as exc:
        logger.warning(f"Subregion {name} failed: {exc.kind}: {exc}")
        return SubregionOutcome(name, dm.size(), error_kind=exc.kind, message=str(exc))
    except Exception as exc:
        logger.exception(f"Subregion {name} failed unexpectedly: {type(exc).__name__}")
        return SubregionOutcome(name, dm.size(), error_kind=type(exc).__name__, message=_first_line(exc))
    return SubregionOutcome(name, dm.size(), result=result)


def run_batch(
    distance: Union[DistanceMatrix, pd.DataFrame],
    subregions: Union[Mapping[Hashable, Hashable], pd.Series],
    geometry_lookup: Optional[GeometryLookup] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> BatchReport:
    """
    Run one isolated pipeline per subregion.

    Parameters
    ----------
    distance : DistanceMatrix | pd.DataFrame
        Distances over all units of all subregions.
    subregions : mapping | pd.Series
        Unit id -> subregion name (e.g. continent or country).
    geometry_lookup : mapping | GeoSeries | GeoDataFrame | None
        Geometry per unit, shared by every subregion.
    config : PipelineConfig | None
        ``max_workers`` > 1 runs subregions on a pool of ``executor`` kind.

    Returns
    -------
    BatchReport
        Every subregion appears exactly once, as a success or as a failure
        with its error kind and message.

    Raises
    ------
    ValueError
        From config validation, or when ``distance`` is a table that cannot
        become a DistanceMatrix (negative values, non-zero diagonal). These
        abort the batch before any subregion runs.
    RegionalizationError
        Likewise raised up front for a malformed ``distance`` table
        (``DimensionMismatch``, ``AsymmetryError``).

    Notes
    -----
    Once subregions start, any exception inside one subregion's pipeline is
    recorded as that subregion's failure with the exception class name as
    ``error_kind``; the other subregions still run. Subregion names are kept
    as given, so ``1`` and ``"1"`` are distinct subregions.
    """
    cfg = validate_config(config)
    dm = as_distance_matrix(distance, cfg['atol'])
    geometries = as_geometry_lookup(geometry_lookup) if geometry_lookup is not None else None

    groups = group_by_subregion(subregions, dm.units())
    logger.info(f"Running {len(groups)} subregion pipelines over {dm.size()} units")

    outcomes: Dict[Hashable, SubregionOutcome] = {}
    jobs = []
    for name, members in groups.items():
        try:
            sub_dm = dm.subset(members)
        except RegionalizationError as exc:
            logger.warning(f"Subregion {name} failed: {exc.kind}: {exc}")
            outcomes[name] = SubregionOutcome(name, len(members), error_kind=exc.kind, message=str(exc))
            continue
        sub_geoms = None
        if geometries is not None:
            sub_geoms = {u: geometries[u] for u in members if u in geometries}
        jobs.append((name, sub_dm, sub_geoms))

    max_workers = cfg['max_workers']
    if max_workers is None or max_workers <= 1 or len(jobs) <= 1:
        for name, sub_dm, sub_geoms in jobs:
            outcomes[name] = _run_subregion(name, sub_dm, sub_geoms, cfg)
    else:
        pool_cls = ProcessPoolExecutor if cfg['executor'] == 'process' else ThreadPoolExecutor
        with pool_cls(max_workers=max_workers) as executor:
            futures = {
                executor.submit(_run_subregion, name, sub_dm, sub_geoms, cfg): name
                for name, sub_dm, sub_geoms in jobs
            }
            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()

    report = BatchReport({name: outcomes[name] for name in groups})
    logger.info(f"Batch finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed")
    return report
