"""Slack alert channel.

Posts Block Kit messages either to an incoming webhook or through
``chat.postMessage`` with a bot token. The webhook wins when both are set.
"""

from typing import Any
from urllib.parse import quote

import requests

from usage_anomaly.alerts.interface import AlertChannel, format_value
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly, Severity
from usage_anomaly.models.incident import Incident

logger = get_logger(__name__)

SLACK_API_URL = "https://slack.com/api/chat.postMessage"


def _severity_emoji(severity: Severity) -> str:
    return ":rotating_light:" if severity is Severity.CRITICAL else ":warning:"


def _mrkdwn(text: str) -> dict[str, str]:
    return {"type": "mrkdwn", "text": text}


def build_alert_blocks(
    anomaly: Anomaly,
    incident: Incident,
    dashboard_url: str | None = None,
) -> list[dict[str, Any]]:
    """Block Kit payload for a single anomaly."""
    severity = anomaly.severity.value.upper()
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{_severity_emoji(anomaly.severity)} Usage Alert: {severity}",
                "emoji": True,
            },
        },
        {"type": "section", "text": _mrkdwn(f"*{anomaly.message}*")},
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Subject:*\n{anomaly.subject}"),
                _mrkdwn(f"*Type:*\n{anomaly.anomaly_type.value}"),
                _mrkdwn(f"*Metric:*\n{anomaly.metric.value}"),
                _mrkdwn(f"*Value:*\n{format_value(anomaly.metric, anomaly.value)}"),
                _mrkdwn(f"*Threshold:*\n{format_value(anomaly.metric, anomaly.threshold)}"),
                _mrkdwn(f"*Incident:*\n#{incident.id}"),
            ],
        },
    ]

    if anomaly.diagnosis_model:
        blocks.append(
            {"type": "section", "text": _mrkdwn(f"*Primary model:* `{anomaly.diagnosis_model}`")}
        )

    if dashboard_url:
        base = dashboard_url.rstrip("/")
        links = f"<{base}/anomalies|View all anomalies>"
        if not anomaly.subject.is_team:
            links = f"<{base}/users/{quote(anomaly.subject.id)}|View user dashboard> · " + links
        blocks.append({"type": "section", "text": _mrkdwn(links)})

    blocks.append(
        {
            "type": "context",
            "elements": [_mrkdwn(f"Detected at {anomaly.detected_at.isoformat()}")],
        }
    )
    return blocks


class SlackAlertChannel(AlertChannel):
    """Sends one Slack message per anomaly."""

    def __init__(
        self,
        webhook_url: str | None = None,
        bot_token: str | None = None,
        channel_id: str | None = None,
        dashboard_url: str | None = None,
        timeout_ms: int = 5000,
    ) -> None:
        self._webhook_url = webhook_url
        self._bot_token = bot_token
        self._channel_id = channel_id
        self._dashboard_url = dashboard_url
        self._timeout = timeout_ms / 1000.0

    @property
    def name(self) -> str:
        return "slack"

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url or (self._bot_token and self._channel_id))

    def send(self, anomaly: Anomaly, incident: Incident) -> bool:
        if not self.configured:
            logger.warning("slack_not_configured")
            return False

        text = f"{_severity_emoji(anomaly.severity)} {anomaly.message} ({anomaly.subject})"
        payload: dict[str, Any] = {
            "text": text,
            "blocks": build_alert_blocks(anomaly, incident, self._dashboard_url),
        }

        try:
            if self._webhook_url:
                response = requests.post(self._webhook_url, json=payload, timeout=self._timeout)
                response.raise_for_status()
                return True

            payload["channel"] = self._channel_id
            response = requests.post(
                SLACK_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._bot_token}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error("slack_send_failed", incident_id=incident.id, error=str(e))
            return False

        if not data.get("ok"):
            logger.error("slack_api_error", incident_id=incident.id, error=data.get("error"))
            return False
        return True
