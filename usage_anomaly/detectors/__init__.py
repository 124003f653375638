"""Anomaly detectors module."""

from usage_anomaly.detectors.interface import AnomalyDetector
from usage_anomaly.detectors.registry import DetectorRegistry
from usage_anomaly.detectors.threshold_detector import ThresholdAnomalyDetector
from usage_anomaly.detectors.trend_detector import TrendAnomalyDetector
from usage_anomaly.detectors.zscore_detector import ZScoreAnomalyDetector

__all__ = [
    "AnomalyDetector",
    "DetectorRegistry",
    "ThresholdAnomalyDetector",
    "TrendAnomalyDetector",
    "ZScoreAnomalyDetector",
]
