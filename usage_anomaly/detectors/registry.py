"""Detector registry for managing and running anomaly detectors."""

from datetime import datetime

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.detectors.interface import AnomalyDetector
from usage_anomaly.detectors.threshold_detector import ThresholdAnomalyDetector
from usage_anomaly.detectors.trend_detector import TrendAnomalyDetector
from usage_anomaly.detectors.zscore_detector import ZScoreAnomalyDetector
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly, AnomalyType
from usage_anomaly.store.interface import UsageStore

logger = get_logger(__name__)


class DetectorRegistry:
    """Registry for managing anomaly detector instances.

    Provides:
    - The default detectors in run order (threshold, zscore, trend)
    - Collection across all registered detectors

    Run order matters: when two detectors report the same dedup key in one
    run, the orchestrator keeps the first.
    """

    def __init__(self, detectors: list[AnomalyDetector] | None = None) -> None:
        """Initialize the registry.

        Args:
            detectors: Detectors in run order; defaults to the built-in three
        """
        self._detectors: dict[AnomalyType, AnomalyDetector] = {}
        if detectors is None:
            detectors = [
                ThresholdAnomalyDetector(),
                ZScoreAnomalyDetector(),
                TrendAnomalyDetector(),
            ]
        for detector in detectors:
            self.register_detector(detector.anomaly_type, detector)

    def register_detector(
        self,
        anomaly_type: AnomalyType,
        detector: AnomalyDetector,
    ) -> None:
        """Register (or replace) the detector for one anomaly type.

        Args:
            anomaly_type: Type of anomaly this detector handles
            detector: The detector instance
        """
        if detector.anomaly_type != anomaly_type:
            raise ValueError(
                f"Detector anomaly type {detector.anomaly_type} does not match "
                f"registration type {anomaly_type}"
            )
        self._detectors[anomaly_type] = detector

    def list_enabled_types(self) -> list[AnomalyType]:
        """List all registered anomaly types in run order."""
        return list(self._detectors.keys())

    def detect_all(
        self,
        store: UsageStore,
        config: DetectionConfig,
        now: datetime,
    ) -> list[Anomaly]:
        """Run every registered detector and collect their output.

        Exceptions are not caught: a failing detector fails the whole
        collection, so callers never see a partial result.

        Args:
            store: Source of usage aggregates
            config: Detection parameters for this run
            now: Anchor for all time windows

        Returns:
            Combined list of all detected anomalies, in run order
        """
        all_anomalies: list[Anomaly] = []

        for anomaly_type, detector in self._detectors.items():
            anomalies = detector.detect(store, config, now)
            logger.debug("detector_finished", detector=anomaly_type.value, found=len(anomalies))
            all_anomalies.extend(anomalies)

        return all_anomalies
