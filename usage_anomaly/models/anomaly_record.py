"""Anomaly record models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AnomalyType(str, Enum):
    """Detector family that produced an anomaly."""

    THRESHOLD = "threshold"
    ZSCORE = "zscore"
    TREND = "trend"


class Severity(str, Enum):
    """Anomaly severity."""

    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordering used for severity filters (higher is more severe)."""
        return 1 if self is Severity.CRITICAL else 0


class AnomalyMetric(str, Enum):
    """Metric an anomaly was raised on."""

    SPEND = "spend"
    REQUESTS = "requests"
    TOKENS = "tokens"
    MODEL_SHIFT = "model_shift"


class SubjectKind(str, Enum):
    """Whether an anomaly concerns one user or the whole team."""

    USER = "user"
    TEAM = "team"


@dataclass(frozen=True)
class Subject:
    """Who an anomaly is about.

    Team-wide anomalies use ``Subject.team()`` instead of a magic
    identifier mixed in with user emails.
    """

    kind: SubjectKind
    id: str = ""

    def __post_init__(self) -> None:
        """Validate subject constraints."""
        if self.kind is SubjectKind.USER and not self.id:
            raise ValueError("User subjects require an id")

    @classmethod
    def user(cls, email: str) -> "Subject":
        return cls(kind=SubjectKind.USER, id=email)

    @classmethod
    def team(cls) -> "Subject":
        return cls(kind=SubjectKind.TEAM)

    @property
    def is_team(self) -> bool:
        return self.kind is SubjectKind.TEAM

    def __str__(self) -> str:
        return "team" if self.is_team else self.id


DedupKey = tuple[Subject, AnomalyType, AnomalyMetric]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Anomaly:
    """A detected deviation.

    Value, threshold and message are fixed at detection time. The only
    fields that change after insertion are ``resolved_at`` and
    ``alerted_at``, and both are set through the store, never in place.
    """

    subject: Subject
    anomaly_type: AnomalyType
    severity: Severity
    metric: AnomalyMetric
    value: float
    threshold: float
    message: str
    detected_at: datetime = field(default_factory=utcnow)

    id: int | None = None
    resolved_at: datetime | None = None
    alerted_at: datetime | None = None

    # Optional diagnosis explaining the contributing cause
    diagnosis_model: str | None = None
    diagnosis_kind: str | None = None
    diagnosis_delta: float | None = None

    @property
    def is_open(self) -> bool:
        """An anomaly is open until it has been resolved."""
        return self.resolved_at is None

    @property
    def dedup_key(self) -> DedupKey:
        """Only one open anomaly may exist per key."""
        return (self.subject, self.anomaly_type, self.metric)

    def with_id(self, anomaly_id: int) -> "Anomaly":
        return replace(self, id=anomaly_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "subject": {"kind": self.subject.kind.value, "id": self.subject.id},
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "metric": self.metric.value,
            "value": self.value,
            "threshold": self.threshold,
            "message": self.message,
            "detected_at": self.detected_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "alerted_at": self.alerted_at.isoformat() if self.alerted_at else None,
            "diagnosis_model": self.diagnosis_model,
            "diagnosis_kind": self.diagnosis_kind,
            "diagnosis_delta": self.diagnosis_delta,
        }
