"""Interface for outbound alert channels."""

from abc import ABC, abstractmethod

from usage_anomaly.models.anomaly_record import Anomaly, AnomalyMetric
from usage_anomaly.models.incident import Incident


class AlertChannel(ABC):
    """A destination for anomaly notifications.

    ``send`` returns False when the channel is unconfigured or delivery
    failed. It may also raise; the dispatcher treats an exception as a
    failure of that channel only.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short channel identifier used in logs and summaries."""
        ...

    @abstractmethod
    def send(self, anomaly: Anomaly, incident: Incident) -> bool:
        """Deliver one notification.

        Args:
            anomaly: The persisted anomaly
            incident: Its incident

        Returns:
            True if the notification was accepted downstream
        """
        ...


def format_value(metric: AnomalyMetric, value: float) -> str:
    """Human-readable rendering of an anomaly value for its metric."""
    if metric is AnomalyMetric.SPEND:
        return f"${value / 100:.2f}"
    if metric is AnomalyMetric.TOKENS:
        return f"{value / 1_000_000:.2f}M tokens"
    if metric is AnomalyMetric.REQUESTS:
        return f"{value:.0f} requests"
    return f"{value:.0f}%"
