"""Tests for alert channels, dispatch and the scheduled runner."""

import smtplib
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from usage_anomaly.alerts import (
    AlertChannel,
    AlertDispatcher,
    EmailAlertChannel,
    SlackAlertChannel,
    build_channels,
)
from usage_anomaly.config import DetectionConfig, Settings, ThresholdConfig
from usage_anomaly.detectors import AnomalyDetector, DetectorRegistry
from usage_anomaly.engine import DetectionOrchestrator, IncidentManager
from usage_anomaly.engine.runner import run_scheduled_detection
from usage_anomaly.models import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    Incident,
    IncidentStatus,
    Severity,
    Subject,
    UsageEvent,
)
from usage_anomaly.store import MemoryUsageStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class RecordingChannel(AlertChannel):
    """Channel that records calls and returns a fixed result."""

    def __init__(self, name: str, result: bool = True, error: Exception | None = None) -> None:
        self._name = name
        self.result = result
        self.error = error
        self.calls: list[tuple[Anomaly, Incident]] = []

    @property
    def name(self) -> str:
        return self._name

    def send(self, anomaly: Anomaly, incident: Incident) -> bool:
        self.calls.append((anomaly, incident))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def store() -> MemoryUsageStore:
    return MemoryUsageStore()


@pytest.fixture
def incidents(store: MemoryUsageStore) -> IncidentManager:
    return IncidentManager(store, now=lambda: NOW)


@pytest.fixture
def pair(store: MemoryUsageStore, incidents: IncidentManager) -> tuple[Anomaly, Incident]:
    """A persisted anomaly with its open incident."""
    anomaly = Anomaly(
        subject=Subject.user("a@x.com"),
        anomaly_type=AnomalyType.THRESHOLD,
        severity=Severity.CRITICAL,
        metric=AnomalyMetric.TOKENS,
        value=3_000_000,
        threshold=1_000_000,
        message="3.0M tokens today exceeds limit of 1.0M",
        detected_at=NOW,
        diagnosis_model="model-a",
    )
    anomaly = anomaly.with_id(store.insert_anomaly(anomaly))
    return anomaly, incidents.create_incident(anomaly)


class TestAlertDispatcher:
    """Tests for AlertDispatcher."""

    def test_any_success_marks_alerted(
        self, pair, incidents: IncidentManager, store: MemoryUsageStore
    ) -> None:
        """Test that one failing channel does not block the others."""
        broken = RecordingChannel("slack", error=RuntimeError("boom"))
        working = RecordingChannel("email")
        dispatcher = AlertDispatcher([broken, working], incidents)

        summary = dispatcher.dispatch([pair])

        assert summary.sent == {"slack": 0, "email": 1}
        assert summary.failed == 0
        assert summary.alerted == 1
        incident = store.get_incident(pair[1].id)
        assert incident.status == IncidentStatus.ALERTED
        assert incident.alerted_at == NOW
        assert store.get_anomaly(pair[0].id).alerted_at == NOW

    def test_all_fail_leaves_open(
        self, pair, incidents: IncidentManager, store: MemoryUsageStore
    ) -> None:
        dispatcher = AlertDispatcher(
            [RecordingChannel("slack", result=False), RecordingChannel("email", result=False)],
            incidents,
        )

        summary = dispatcher.dispatch([pair])

        assert summary.alerted == 0
        # Counted once per pair, not per channel
        assert summary.failed == 1
        assert store.get_incident(pair[1].id).status == IncidentStatus.OPEN

    def test_no_channels(self, pair, incidents: IncidentManager) -> None:
        summary = AlertDispatcher([], incidents).dispatch([pair])
        assert summary.to_dict() == {"failed": 1, "alerted": 0}


class TestSlackAlertChannel:
    """Tests for SlackAlertChannel."""

    def test_unconfigured(self, pair) -> None:
        channel = SlackAlertChannel()
        with patch("usage_anomaly.alerts.slack.requests.post") as post:
            assert channel.send(*pair) is False
        post.assert_not_called()

    def test_webhook(self, pair) -> None:
        channel = SlackAlertChannel(
            webhook_url="https://hooks.slack.test/T/B/X",
            dashboard_url="https://usage.example.com/",
        )
        with patch("usage_anomaly.alerts.slack.requests.post") as post:
            post.return_value = MagicMock(status_code=200)
            assert channel.send(*pair) is True

        args, kwargs = post.call_args
        assert args[0] == "https://hooks.slack.test/T/B/X"
        blocks = kwargs["json"]["blocks"]
        assert blocks[0]["type"] == "header"
        assert "CRITICAL" in blocks[0]["text"]["text"]
        assert any("`model-a`" in b.get("text", {}).get("text", "") for b in blocks)
        assert any(
            "https://usage.example.com/users/a%40x.com" in b.get("text", {}).get("text", "")
            for b in blocks
        )

    def test_bot_token(self, pair) -> None:
        channel = SlackAlertChannel(bot_token="xoxb-1", channel_id="C123")
        with patch("usage_anomaly.alerts.slack.requests.post") as post:
            post.return_value.json.return_value = {"ok": True}
            assert channel.send(*pair) is True

        _, kwargs = post.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer xoxb-1"
        assert kwargs["json"]["channel"] == "C123"

    def test_api_error(self, pair) -> None:
        channel = SlackAlertChannel(bot_token="xoxb-1", channel_id="C123")
        with patch("usage_anomaly.alerts.slack.requests.post") as post:
            post.return_value.json.return_value = {"ok": False, "error": "channel_not_found"}
            assert channel.send(*pair) is False

    def test_network_error(self, pair) -> None:
        channel = SlackAlertChannel(webhook_url="https://hooks.slack.test/x")
        with patch(
            "usage_anomaly.alerts.slack.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            assert channel.send(*pair) is False


class TestEmailAlertChannel:
    """Tests for EmailAlertChannel."""

    def test_unconfigured(self, pair) -> None:
        assert EmailAlertChannel(smtp_host=None, to_address="ops@x.com").send(*pair) is False

    def test_send_starttls(self, pair) -> None:
        channel = EmailAlertChannel(
            smtp_host="smtp.example.com",
            to_address="ops@x.com, lead@x.com",
            smtp_user="bot",
            smtp_password="pw",
        )
        with patch("usage_anomaly.alerts.email.smtplib.SMTP") as smtp:
            assert channel.send(*pair) is True

        server = smtp.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "pw")
        from_addr, recipients, body = server.sendmail.call_args[0]
        assert recipients == ["ops@x.com", "lead@x.com"]
        assert "[CRITICAL]" in body

    def test_smtp_failure(self, pair) -> None:
        channel = EmailAlertChannel(smtp_host="smtp.example.com", to_address="ops@x.com")
        with patch("usage_anomaly.alerts.email.smtplib.SMTP") as smtp:
            smtp.return_value.sendmail.side_effect = smtplib.SMTPException("rejected")
            assert channel.send(*pair) is False

    def test_message_parts(self, pair) -> None:
        channel = EmailAlertChannel(smtp_host="h", to_address="ops@x.com")
        msg = channel.build_message(*pair)

        assert msg["Subject"].startswith("[CRITICAL]")
        assert [p.get_content_type() for p in msg.get_payload()] == ["text/plain", "text/html"]


def test_build_channels() -> None:
    """Test that only configured channels are enabled."""
    assert build_channels(Settings()) == []

    channels = build_channels(
        Settings(slack_webhook_url="https://hooks", smtp_host="smtp", alert_email_to="ops@x.com")
    )
    assert [c.name for c in channels] == ["slack", "email"]


class TestRunScheduledDetection:
    """Tests for run_scheduled_detection."""

    @pytest.fixture
    def busy_store(self, store: MemoryUsageStore) -> MemoryUsageStore:
        store.add_usage_events(
            [
                UsageEvent(user_email="a@x.com", timestamp=NOW - timedelta(hours=1), model="m")
                for _ in range(5)
            ]
        )
        store.save_config(DetectionConfig(thresholds=ThresholdConfig(max_requests_per_day=4)))
        return store

    def test_end_to_end(self, busy_store: MemoryUsageStore, incidents: IncidentManager) -> None:
        channel = RecordingChannel("slack")
        dispatcher = AlertDispatcher([channel], incidents)
        orchestrator = DetectionOrchestrator(busy_store, now=lambda: NOW)

        result = run_scheduled_detection(
            busy_store,
            dispatcher,
            Settings(),
            orchestrator=orchestrator,
            incidents=incidents,
        )

        assert result["detection"] == {"new": 1, "resolved": 0, "total_open": 1}
        assert result["incidents"] == {"created": 1}
        assert result["alerts"]["alerted"] == 1
        assert len(channel.calls) == 1
        assert busy_store.get_open_incidents()[0].status == IncidentStatus.ALERTED

        # Nothing new on a repeat run
        again = run_scheduled_detection(
            busy_store, dispatcher, Settings(), orchestrator=orchestrator, incidents=incidents
        )
        assert again["incidents"] == {"created": 0}
        assert len(channel.calls) == 1

    def test_min_severity_filter(
        self, busy_store: MemoryUsageStore, incidents: IncidentManager
    ) -> None:
        """Test that warnings get no incident when the floor is critical."""
        dispatcher = AlertDispatcher([RecordingChannel("slack")], incidents)

        result = run_scheduled_detection(
            busy_store,
            dispatcher,
            Settings(incident_min_severity="critical"),
            orchestrator=DetectionOrchestrator(busy_store, now=lambda: NOW),
            incidents=incidents,
        )

        assert result["detection"]["new"] == 1
        assert result["incidents"] == {"created": 0}
        assert busy_store.list_incidents() == []

    def test_severity_floor_is_case_insensitive(
        self, busy_store: MemoryUsageStore, incidents: IncidentManager
    ) -> None:
        """Test an upper-case floor, then lowering it on the next run."""
        orchestrator = DetectionOrchestrator(busy_store, now=lambda: NOW)
        dispatcher = AlertDispatcher([RecordingChannel("slack")], incidents)

        first = run_scheduled_detection(
            busy_store,
            dispatcher,
            Settings(incident_min_severity="CRITICAL"),
            orchestrator=orchestrator,
            incidents=incidents,
        )
        second = run_scheduled_detection(
            busy_store, dispatcher, Settings(), orchestrator=orchestrator, incidents=incidents
        )

        assert first["incidents"] == {"created": 0}
        assert second["detection"]["new"] == 0
        assert second["incidents"] == {"created": 1}
        assert len(busy_store.list_incidents()) == 1

    def test_anomaly_left_without_incident_is_picked_up(
        self, busy_store: MemoryUsageStore, incidents: IncidentManager
    ) -> None:
        """Test that a run interrupted after storing anomalies heals on the next run."""
        orchestrator = DetectionOrchestrator(busy_store, now=lambda: NOW)
        stored = orchestrator.run_detection().new_anomalies
        channel = RecordingChannel("slack")

        result = run_scheduled_detection(
            busy_store,
            AlertDispatcher([channel], incidents),
            Settings(),
            orchestrator=orchestrator,
            incidents=incidents,
        )

        assert result["detection"]["new"] == 0
        assert result["incidents"] == {"created": 1}
        assert [a.id for a, _ in channel.calls] == [stored[0].id]
        assert busy_store.list_incidents()[0].anomaly_id == stored[0].id

        again = run_scheduled_detection(
            busy_store,
            AlertDispatcher([channel], incidents),
            Settings(),
            orchestrator=orchestrator,
            incidents=incidents,
        )
        assert again["incidents"] == {"created": 0}

    def test_invalid_severity_floor_rejected(self) -> None:
        with pytest.raises(ValueError, match="incident_min_severity"):
            Settings(incident_min_severity="urgent")

    def test_detection_error_reported(self, store: MemoryUsageStore) -> None:
        """Test that a failed run is reported, not raised."""

        class Broken(AnomalyDetector):
            @property
            def anomaly_type(self) -> AnomalyType:
                return AnomalyType.THRESHOLD

            def detect(self, store, config, now):
                raise RuntimeError("usage table missing")

        orchestrator = DetectionOrchestrator(store, DetectorRegistry([Broken()]))

        result = run_scheduled_detection(store, settings=Settings(), orchestrator=orchestrator)

        assert result["detection"] == {"error": "usage table missing"}
        assert store.get_open_anomalies() == []
