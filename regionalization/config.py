"""
Pipeline configuration.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, TypedDict, Union

from .distance import DEFAULT_ATOL

EXECUTORS = ("thread", "process")


class PipelineConfig(TypedDict, total=False):
    """Configuration for one regionalization run or a batch of subregion runs."""
    k_max: Optional[int]
    atol: float
    palette: Optional[Union[str, Sequence[str]]]
    max_workers: Optional[int]
    executor: str


def default_config() -> PipelineConfig:
    return PipelineConfig(
        k_max=None,
        atol=DEFAULT_ATOL,
        palette=None,
        max_workers=None,
        executor="thread",
    )


def validate_config(cfg: Optional[Mapping[str, Any]] = None) -> PipelineConfig:
    """
    Merge ``cfg`` over the defaults and check every value.

    Raises
    ------
    ValueError
        On unknown keys or out-of-range values.
    """
    merged = default_config()
    if cfg:
        unknown = set(cfg) - set(merged)
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        merged.update(cfg)

    if merged['k_max'] is not None and merged['k_max'] < 2:
        raise ValueError("k_max must be >= 2")

    if merged['atol'] < 0:
        raise ValueError("atol must be non-negative")

    if merged['max_workers'] is not None and merged['max_workers'] < 1:
        raise ValueError("max_workers must be >= 1")

    palette = merged['palette']
    if isinstance(palette, str):
        if palette != "hue":
            raise ValueError(f"Unknown palette {palette!r}; use None, 'hue' or a list of colors")
    elif palette is not None and len(palette) == 0:
        raise ValueError("palette must not be empty")

    if merged['executor'] not in EXECUTORS:
        raise ValueError(f"executor must be one of {EXECUTORS}, got {merged['executor']!r}")

    return merged
