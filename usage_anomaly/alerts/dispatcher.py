"""Alert fan-out across configured channels."""

from dataclasses import dataclass, field
from typing import Any, Sequence

from usage_anomaly.alerts.email import EmailAlertChannel
from usage_anomaly.alerts.interface import AlertChannel
from usage_anomaly.alerts.slack import SlackAlertChannel
from usage_anomaly.config.settings import Settings
from usage_anomaly.engine.incidents import IncidentManager
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly
from usage_anomaly.models.incident import Incident

logger = get_logger(__name__)


@dataclass
class DispatchSummary:
    """Delivery counts for one dispatch call.

    ``sent`` counts accepted alerts per channel. ``failed`` counts pairs that
    no channel accepted.
    """

    sent: dict[str, int] = field(default_factory=dict)
    failed: int = 0
    alerted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {**self.sent, "failed": self.failed, "alerted": self.alerted}


class AlertDispatcher:
    """Sends every (anomaly, incident) pair to every channel.

    A channel that raises or returns False does not stop the other
    channels. An incident is marked alerted when at least one
    channel accepted it.
    """

    def __init__(self, channels: Sequence[AlertChannel], incidents: IncidentManager) -> None:
        self._channels = list(channels)
        self._incidents = incidents

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    def dispatch(self, pairs: Sequence[tuple[Anomaly, Incident]]) -> DispatchSummary:
        summary = DispatchSummary(sent={channel.name: 0 for channel in self._channels})

        for anomaly, incident in pairs:
            delivered = False
            for channel in self._channels:
                try:
                    ok = channel.send(anomaly, incident)
                except Exception as e:
                    logger.error(
                        "alert_channel_error",
                        channel=channel.name,
                        incident_id=incident.id,
                        error=str(e),
                    )
                    ok = False
                if ok:
                    summary.sent[channel.name] += 1
                    delivered = True

            if not delivered:
                summary.failed += 1
            elif self._incidents.mark_alerted(incident):
                summary.alerted += 1

        logger.info("alerts_dispatched", pairs=len(pairs), **summary.to_dict())
        return summary


def build_channels(settings: Settings) -> list[AlertChannel]:
    """Channels enabled by the given settings, in delivery order."""
    channels: list[AlertChannel] = []
    if settings.slack_webhook_url or (settings.slack_bot_token and settings.slack_channel_id):
        channels.append(
            SlackAlertChannel(
                webhook_url=settings.slack_webhook_url,
                bot_token=settings.slack_bot_token,
                channel_id=settings.slack_channel_id,
                dashboard_url=settings.dashboard_url,
                timeout_ms=settings.alert_timeout_ms,
            )
        )
    if settings.smtp_host and settings.alert_email_to:
        channels.append(
            EmailAlertChannel(
                smtp_host=settings.smtp_host,
                to_address=settings.alert_email_to,
                smtp_port=settings.smtp_port,
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                from_address=settings.smtp_from,
                dashboard_url=settings.dashboard_url,
                timeout_ms=settings.alert_timeout_ms,
            )
        )
    return channels
