"""Baseline models for statistical computations."""

from dataclasses import dataclass


@dataclass(frozen=True)
class BaselineMetrics:
    """Population statistics of one metric across a set of samples.

    Used as the reference distribution for team outlier checks.
    """

    mean: float
    std: float  # Population standard deviation
    sample_count: int

    def __post_init__(self) -> None:
        """Validate baseline metrics constraints."""
        if self.std < 0:
            raise ValueError("Standard deviation cannot be negative")
        if self.sample_count < 0:
            raise ValueError("Sample count cannot be negative")

    def z_score(self, value: float) -> float:
        """Calculate z-score for a given value relative to this baseline.

        A flat baseline (std == 0) scores any excess over the mean as
        ``+inf`` and everything else as 0, so a perfectly uniform team
        neither divides by zero nor hides a real excess.
        """
        if self.std == 0:
            return float("inf") if value > self.mean else 0.0
        return (value - self.mean) / self.std

    def upper_bound(self, multiplier: float) -> float:
        """Value above which a sample is ``multiplier`` std-devs out."""
        return self.mean + multiplier * self.std
