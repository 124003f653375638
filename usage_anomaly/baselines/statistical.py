"""Statistical helpers shared by the detectors."""

import math
from typing import Sequence

from usage_anomaly.models.baseline import BaselineMetrics


def compute_baseline(values: Sequence[float]) -> BaselineMetrics | None:
    """Compute population mean and standard deviation.

    Uses the population formula ``sqrt(avg((x - mean)^2))``, not the
    sample one: the team on a given day *is* the population.

    Args:
        values: Sequence of numeric values

    Returns:
        Baseline metrics, or None for an empty sequence
    """
    n = len(values)
    if n == 0:
        return None

    avg = sum(values) / n
    variance = sum((v - avg) ** 2 for v in values) / n
    return BaselineMetrics(mean=avg, std=math.sqrt(variance), sample_count=n)


def nearest_rank_percentile(values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile on the sorted sample.

    The index is ``floor(fraction * n)``, clamped to the last element.

    Args:
        values: Pooled sample (need not be sorted)
        fraction: Percentile as a fraction, e.g. 0.75 for P75

    Returns:
        The selected sample value

    Raises:
        ValueError: If ``values`` is empty
    """
    if not values:
        raise ValueError("Cannot compute percentile of empty sequence")
    sorted_values = sorted(values)
    index = min(int(math.floor(fraction * len(sorted_values))), len(sorted_values) - 1)
    return sorted_values[index]


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)
