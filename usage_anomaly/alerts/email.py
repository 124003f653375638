"""SMTP email alert channel."""

import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from usage_anomaly.alerts.interface import AlertChannel, format_value
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly, Severity
from usage_anomaly.models.incident import Incident

logger = get_logger(__name__)

# Port 465 speaks TLS from the first byte; everything else upgrades with STARTTLS
SMTPS_PORT = 465


def build_subject(anomaly: Anomaly) -> str:
    prefix = "[CRITICAL]" if anomaly.severity is Severity.CRITICAL else "[WARNING]"
    return f"{prefix} Usage anomaly: {anomaly.subject}: {anomaly.metric.value}"


def build_text(anomaly: Anomaly, incident: Incident, dashboard_url: str | None = None) -> str:
    lines = [
        anomaly.message,
        "",
        f"Subject:   {anomaly.subject}",
        f"Type:      {anomaly.anomaly_type.value}",
        f"Metric:    {anomaly.metric.value}",
        f"Value:     {format_value(anomaly.metric, anomaly.value)}",
        f"Threshold: {format_value(anomaly.metric, anomaly.threshold)}",
        f"Incident:  #{incident.id}",
    ]
    if anomaly.diagnosis_model:
        lines.append(f"Primary model: {anomaly.diagnosis_model}")
    if dashboard_url:
        lines += ["", f"{dashboard_url.rstrip('/')}/anomalies"]
    lines += ["", f"Detected at {anomaly.detected_at.isoformat()}"]
    return "\n".join(lines)


def build_html(anomaly: Anomaly, incident: Incident, dashboard_url: str | None = None) -> str:
    color = "#dc2626" if anomaly.severity is Severity.CRITICAL else "#f59e0b"
    rows = [
        ("Subject", str(anomaly.subject)),
        ("Type", anomaly.anomaly_type.value),
        ("Metric", anomaly.metric.value),
        ("Value", format_value(anomaly.metric, anomaly.value)),
        ("Threshold", format_value(anomaly.metric, anomaly.threshold)),
        ("Incident", f"#{incident.id}"),
    ]
    if anomaly.diagnosis_model:
        rows.append(("Diagnosis", f"Primary model: {anomaly.diagnosis_model}"))
    table = "".join(
        f'<tr><td style="padding:8px;color:#6b7280">{label}</td>'
        f'<td style="padding:8px">{html.escape(value)}</td></tr>'
        for label, value in rows
    )
    link = ""
    if dashboard_url:
        link = (
            f'<p style="margin-top:16px"><a href="{html.escape(dashboard_url.rstrip("/"))}'
            f'/anomalies">View all anomalies</a></p>'
        )
    return (
        '<div style="font-family:system-ui,sans-serif;max-width:600px;margin:0 auto">'
        f'<div style="background:{color};color:white;padding:16px">'
        f'<h2 style="margin:0">Usage Alert: {anomaly.severity.value.upper()}</h2></div>'
        '<div style="border:1px solid #e5e7eb;border-top:none;padding:16px">'
        f'<p style="font-size:16px;font-weight:600">{html.escape(anomaly.message)}</p>'
        f'<table style="width:100%;border-collapse:collapse">{table}</table>{link}'
        f'<p style="color:#9ca3af;font-size:12px">Detected at {anomaly.detected_at.isoformat()}</p>'
        "</div></div>"
    )


class EmailAlertChannel(AlertChannel):
    """Sends one HTML + plain text email per anomaly over SMTP."""

    def __init__(
        self,
        smtp_host: str | None,
        to_address: str | None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        from_address: str = "usage-anomaly@noreply.local",
        dashboard_url: str | None = None,
        timeout_ms: int = 5000,
    ) -> None:
        self._host = smtp_host
        self._port = smtp_port
        self._user = smtp_user
        self._password = smtp_password
        self._from = from_address
        self._to = to_address
        self._dashboard_url = dashboard_url
        self._timeout = timeout_ms / 1000.0

    @property
    def name(self) -> str:
        return "email"

    @property
    def configured(self) -> bool:
        return bool(self._host and self._to)

    def build_message(self, anomaly: Anomaly, incident: Incident) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = build_subject(anomaly)
        msg["From"] = self._from
        msg["To"] = self._to or ""
        msg.attach(MIMEText(build_text(anomaly, incident, self._dashboard_url), "plain"))
        msg.attach(MIMEText(build_html(anomaly, incident, self._dashboard_url), "html"))
        return msg

    def send(self, anomaly: Anomaly, incident: Incident) -> bool:
        if not self.configured:
            logger.warning("email_not_configured")
            return False

        msg = self.build_message(anomaly, incident)
        recipients = [addr.strip() for addr in (self._to or "").split(",") if addr.strip()]
        context = ssl.create_default_context()
        try:
            if self._port == SMTPS_PORT:
                server = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout, context=context)
            else:
                server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
            with server:
                if self._port != SMTPS_PORT:
                    server.starttls(context=context)
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.sendmail(self._from, recipients, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error("smtp_auth_failed", incident_id=incident.id, error=str(e))
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", incident_id=incident.id, error=str(e))
            return False

        logger.info("email_sent", incident_id=incident.id, recipients=len(recipients))
        return True
