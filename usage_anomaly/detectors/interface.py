"""Interface for anomaly detectors."""

from abc import ABC, abstractmethod
from datetime import datetime

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.models.anomaly_record import Anomaly, AnomalyType, Severity
from usage_anomaly.models.usage import ModelUsage
from usage_anomaly.store.interface import UsageStore


class AnomalyDetector(ABC):
    """Abstract interface for anomaly detection algorithms.

    All implementations MUST be:
    - Read-only: They query the store but never write to it
    - Deterministic: Same store contents, config and ``now`` give the same output
    - Unsuppressed: Every rule that fires is reported; the orchestrator
      deduplicates

    Store errors are not caught here. They propagate so the orchestrator can
    abort the run before anything is written.
    """

    @property
    @abstractmethod
    def anomaly_type(self) -> AnomalyType:
        """Get the type of anomaly this detector identifies."""
        ...

    @abstractmethod
    def detect(
        self,
        store: UsageStore,
        config: DetectionConfig,
        now: datetime,
    ) -> list[Anomaly]:
        """Scan usage data and report every deviation found.

        Args:
            store: Source of usage aggregates
            config: Detection parameters for this run
            now: Anchor for all time windows

        Returns:
            List of detected anomalies (may be empty), all stamped ``now``
        """
        ...

    @staticmethod
    def _severity(ratio: float, critical_above: float) -> Severity:
        return Severity.CRITICAL if ratio > critical_above else Severity.WARNING

    @staticmethod
    def _top_models(
        rows: list[ModelUsage],
        by: str = "tokens",
        allowed: frozenset[str] | None = None,
    ) -> dict[str, str]:
        """Map each user to the model with the largest ``by`` total.

        Ties go to the alphabetically first model. Rows outside ``allowed``
        are ignored when it is given.
        """
        best: dict[str, ModelUsage] = {}
        for row in rows:
            if allowed is not None and row.model not in allowed:
                continue
            current = best.get(row.email)
            if current is None or getattr(row, by) > getattr(current, by) or (
                getattr(row, by) == getattr(current, by) and row.model < current.model
            ):
                best[row.email] = row
        return {email: row.model for email, row in best.items()}
