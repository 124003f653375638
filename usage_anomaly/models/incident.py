"""Incident models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from usage_anomaly.models.anomaly_record import Subject


class IncidentStatus(str, Enum):
    """Incident lifecycle states, in progression order."""

    OPEN = "open"
    ALERTED = "alerted"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Incident:
    """Operational tracking record for exactly one anomaly.

    Timestamps are set once. Each duration metric is computed at the
    transition that produces its end timestamp and is never recomputed.
    """

    anomaly_id: int
    subject: Subject
    status: IncidentStatus
    detected_at: datetime

    id: int | None = None
    alerted_at: datetime | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None

    mttd_minutes: float | None = None  # detected -> incident created
    mtti_minutes: float | None = None  # alerted -> acknowledged
    mttr_minutes: float | None = None  # detected -> resolved

    @property
    def is_open(self) -> bool:
        return self.status is not IncidentStatus.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "anomaly_id": self.anomaly_id,
            "subject": {"kind": self.subject.kind.value, "id": self.subject.id},
            "status": self.status.value,
            "detected_at": self.detected_at.isoformat(),
            "alerted_at": _iso(self.alerted_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_at": _iso(self.resolved_at),
            "mttd_minutes": self.mttd_minutes,
            "mtti_minutes": self.mtti_minutes,
            "mttr_minutes": self.mttr_minutes,
        }


def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed minutes from ``start`` to ``end``."""
    return (end - start).total_seconds() / 60.0
