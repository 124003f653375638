"""Usage anomaly configuration module."""

from usage_anomaly.config.settings import (
    DEFAULT_EXPENSIVE_MODELS,
    DetectionConfig,
    Settings,
    ThresholdConfig,
    TrendConfig,
    ZScoreConfig,
    configure,
    get_settings,
    reset_settings,
)

__all__ = [
    "DEFAULT_EXPENSIVE_MODELS",
    "DetectionConfig",
    "Settings",
    "ThresholdConfig",
    "TrendConfig",
    "ZScoreConfig",
    "configure",
    "get_settings",
    "reset_settings",
]
