"""Usage anomaly models module."""

from usage_anomaly.models.anomaly_record import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    DedupKey,
    Severity,
    Subject,
    SubjectKind,
    utcnow,
)
from usage_anomaly.models.baseline import BaselineMetrics
from usage_anomaly.models.incident import Incident, IncidentStatus, minutes_between
from usage_anomaly.models.usage import (
    CycleSpend,
    DailyTotals,
    ModelUsage,
    UsageEvent,
    UsageTotals,
)

__all__ = [
    # Anomalies
    "Anomaly",
    "AnomalyMetric",
    "AnomalyType",
    "DedupKey",
    "Severity",
    "Subject",
    "SubjectKind",
    "utcnow",
    # Baselines
    "BaselineMetrics",
    # Incidents
    "Incident",
    "IncidentStatus",
    "minutes_between",
    # Usage data
    "CycleSpend",
    "DailyTotals",
    "ModelUsage",
    "UsageEvent",
    "UsageTotals",
]
