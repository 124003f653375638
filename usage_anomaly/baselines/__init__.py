"""Baseline computation module."""

from usage_anomaly.baselines.statistical import (
    compute_baseline,
    mean,
    nearest_rank_percentile,
)

__all__ = [
    "compute_baseline",
    "mean",
    "nearest_rank_percentile",
]
