"""Usage anomaly service configuration settings."""

import os
from dataclasses import dataclass, field, fields
from typing import Any

from usage_anomaly.models.anomaly_record import Severity

# Higher-cost model identifiers watched by the model-shift check
DEFAULT_EXPENSIVE_MODELS: tuple[str, ...] = (
    "claude-4.6-opus-high-thinking",
    "claude-4.6-opus-high",
    "claude-4.6-opus-max-thinking",
    "claude-4.6-opus-max",
    "claude-4.5-opus-high-thinking",
    "claude-4.5-opus-high",
    "gpt-5.3-codex",
    "gpt-5.3-codex-high",
    "gpt-5.3-codex-xhigh",
    "gpt-5.2-codex",
)


@dataclass(frozen=True)
class ThresholdConfig:
    """Static limits. A limit of 0 disables its rule."""

    max_spend_cents_per_cycle: int = 0
    max_requests_per_day: int = 0
    max_tokens_per_day: int = 0

    def __post_init__(self) -> None:
        """Validate threshold constraints."""
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")


@dataclass(frozen=True)
class ZScoreConfig:
    """Team outlier detection parameters."""

    multiplier: float = 2.5  # Standard deviations above the team mean
    window_days: int = 7

    def __post_init__(self) -> None:
        """Validate z-score constraints."""
        if self.multiplier <= 0:
            raise ValueError("multiplier must be positive")
        if self.window_days < 1:
            raise ValueError("window_days must be at least 1")


@dataclass(frozen=True)
class TrendConfig:
    """Personal trend detection parameters."""

    spike_multiplier: float = 5.0
    spike_lookback_days: int = 7
    drift_days_above_p75: int = 3
    expensive_models: tuple[str, ...] = DEFAULT_EXPENSIVE_MODELS

    def __post_init__(self) -> None:
        """Validate trend constraints."""
        if self.spike_multiplier <= 0:
            raise ValueError("spike_multiplier must be positive")
        if self.spike_lookback_days < 1:
            raise ValueError("spike_lookback_days must be at least 1")
        if self.drift_days_above_p75 < 1:
            raise ValueError("drift_days_above_p75 must be at least 1")
        if isinstance(self.expensive_models, str):
            raise ValueError("expensive_models must be a list of model names")
        # Lists arrive from JSON and key-value rows; keep the value hashable
        models = tuple(self.expensive_models)
        if not all(isinstance(m, str) and m for m in models):
            raise ValueError("expensive_models must contain non-empty strings")
        object.__setattr__(self, "expensive_models", models)


@dataclass(frozen=True)
class DetectionConfig:
    """Tunable detection parameters, read fresh on every run."""

    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    zscore: ZScoreConfig = field(default_factory=ZScoreConfig)
    trends: TrendConfig = field(default_factory=TrendConfig)
    cron_interval_minutes: int = 60

    def __post_init__(self) -> None:
        """Validate top-level constraints."""
        if self.cron_interval_minutes < 1:
            raise ValueError("cron_interval_minutes must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a nested dictionary for serialization."""
        return {
            "thresholds": {
                f.name: getattr(self.thresholds, f.name) for f in fields(self.thresholds)
            },
            "zscore": {f.name: getattr(self.zscore, f.name) for f in fields(self.zscore)},
            "trends": {
                "spike_multiplier": self.trends.spike_multiplier,
                "spike_lookback_days": self.trends.spike_lookback_days,
                "drift_days_above_p75": self.trends.drift_days_above_p75,
                "expensive_models": list(self.trends.expensive_models),
            },
            "cron_interval_minutes": self.cron_interval_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetectionConfig":
        """Create a config from a (possibly partial) nested dictionary.

        Missing sections and keys fall back to their defaults; unknown keys
        are rejected so typos in stored config surface immediately.
        """
        return cls(
            thresholds=_build_section(ThresholdConfig, data.get("thresholds")),
            zscore=_build_section(ZScoreConfig, data.get("zscore")),
            trends=_build_section(TrendConfig, data.get("trends")),
            cron_interval_minutes=int(data.get("cron_interval_minutes", 60)),
        )

    def to_flat(self) -> dict[str, str]:
        """Flatten into dotted key/value rows for key-value persistence."""
        rows: dict[str, str] = {}
        for section, values in self.to_dict().items():
            if not isinstance(values, dict):
                rows[section] = str(values)
                continue
            for key, value in values.items():
                if isinstance(value, list):
                    value = ",".join(value)
                rows[f"{section}.{key}"] = str(value)
        return rows

    @classmethod
    def from_flat(cls, rows: dict[str, str]) -> "DetectionConfig":
        """Rebuild a config from dotted key/value rows."""
        nested: dict[str, Any] = {}
        for key, raw in rows.items():
            section, _, name = key.partition(".")
            if not name:
                nested[section] = raw
                continue
            nested.setdefault(section, {})[name] = raw
        return cls.from_dict(_coerce(nested))


def _build_section(section_cls: type, values: dict[str, Any] | None) -> Any:
    if not values:
        return section_cls()
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**values)


def _coerce(nested: dict[str, Any]) -> dict[str, Any]:
    """Convert string values from key-value rows to their field types."""
    sections = {"thresholds": ThresholdConfig, "zscore": ZScoreConfig, "trends": TrendConfig}
    result: dict[str, Any] = {}
    for section, values in nested.items():
        section_cls = sections.get(section)
        if section_cls is None:
            result[section] = int(values)
            continue
        types = {f.name: f.type for f in fields(section_cls)}
        coerced: dict[str, Any] = {}
        for name, raw in values.items():
            kind = types.get(name)
            if kind is None:
                coerced[name] = raw
            elif name == "expensive_models":
                coerced[name] = tuple(m for m in raw.split(",") if m)
            elif kind in (int, "int"):
                coerced[name] = int(float(raw))
            else:
                coerced[name] = float(raw)
        result[section] = coerced
    return result


@dataclass(frozen=True)
class Settings:
    """Global settings for the usage anomaly service."""

    # Service identification
    service_name: str = "usage-anomaly-service"
    service_version: str = "0.1.0"

    # Storage
    database_url: str = "sqlite:///./data/usage.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Scheduler trigger
    cron_secret: str | None = None
    incident_min_severity: str = "warning"

    # Alert channels (unset channels are skipped)
    dashboard_url: str | None = None
    slack_webhook_url: str | None = None
    slack_bot_token: str | None = None
    slack_channel_id: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "usage-anomaly@noreply.local"
    alert_email_to: str | None = None
    alert_timeout_ms: int = 5000

    # API settings
    api_prefix: str = "/api/v1"
    debug: bool = False

    def __post_init__(self) -> None:
        """Validate settings constraints."""
        # Parsed here, before any detection run can persist anomalies
        try:
            severity = Severity(self.incident_min_severity.strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in Severity)
            raise ValueError(
                f"incident_min_severity must be one of {allowed}, "
                f"got {self.incident_min_severity!r}"
            ) from None
        object.__setattr__(self, "incident_min_severity", severity.value)
        if self.alert_timeout_ms <= 0:
            raise ValueError("alert_timeout_ms must be positive")

    @property
    def min_incident_rank(self) -> int:
        """Severity rank an anomaly needs to get an incident."""
        return Severity(self.incident_min_severity).rank

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data/usage.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
            cron_secret=os.getenv("CRON_SECRET") or None,
            incident_min_severity=os.getenv("INCIDENT_MIN_SEVERITY", "warning"),
            dashboard_url=os.getenv("DASHBOARD_URL") or None,
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            slack_bot_token=os.getenv("SLACK_BOT_TOKEN") or None,
            slack_channel_id=os.getenv("SLACK_CHANNEL_ID") or None,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASS") or None,
            smtp_from=os.getenv("SMTP_FROM", "usage-anomaly@noreply.local"),
            alert_email_to=os.getenv("ALERT_EMAIL_TO") or None,
            alert_timeout_ms=int(os.getenv("ALERT_TIMEOUT_MS", "5000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Settings) -> None:
    """Configure the global settings (primarily for testing)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for testing)."""
    global _settings
    _settings = None
