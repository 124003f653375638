"""Alert channels and dispatch."""

from usage_anomaly.alerts.dispatcher import AlertDispatcher, DispatchSummary, build_channels
from usage_anomaly.alerts.email import EmailAlertChannel
from usage_anomaly.alerts.interface import AlertChannel
from usage_anomaly.alerts.slack import SlackAlertChannel

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "DispatchSummary",
    "EmailAlertChannel",
    "SlackAlertChannel",
    "build_channels",
]
