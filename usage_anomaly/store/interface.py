"""Interface for usage, anomaly and incident storage."""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.models.anomaly_record import Anomaly, AnomalyType, Subject
from usage_anomaly.models.incident import Incident, IncidentStatus
from usage_anomaly.models.usage import (
    CycleSpend,
    DailyTotals,
    ModelUsage,
    UsageEvent,
    UsageTotals,
)

DAY = timedelta(days=1)

# Incident fields that update_incident_status may set
INCIDENT_UPDATE_FIELDS = frozenset(
    {
        "alerted_at",
        "acknowledged_at",
        "resolved_at",
        "mttd_minutes",
        "mtti_minutes",
        "mttr_minutes",
    }
)


class AnomalyStoreFilter:
    """Filter criteria for querying anomalies.

    All filter criteria are optional and applied with AND logic.
    """

    def __init__(
        self,
        open_only: bool = False,
        since: datetime | None = None,
        anomaly_types: list[AnomalyType] | None = None,
        subject: Subject | None = None,
        limit: int | None = None,
    ) -> None:
        """Initialize filter criteria.

        Args:
            open_only: Only anomalies without ``resolved_at``
            since: Only anomalies detected at or after this time
            anomaly_types: Filter by detector family (OR within list)
            subject: Filter by subject
            limit: Maximum number of records to return
        """
        self.open_only = open_only
        self.since = since
        self.anomaly_types = anomaly_types
        self.subject = subject
        self.limit = limit

    def matches(self, anomaly: Anomaly) -> bool:
        """Check if an anomaly matches this filter."""
        if self.open_only and not anomaly.is_open:
            return False
        if self.since and anomaly.detected_at < self.since:
            return False
        if self.anomaly_types and anomaly.anomaly_type not in self.anomaly_types:
            return False
        if self.subject and anomaly.subject != self.subject:
            return False
        return True


class UsageStore(ABC):
    """Abstract interface for the persistent store.

    Time windows are half-open on the left: an event belongs to
    ``(start, end]``. Readers never mutate; writers that touch several rows
    are all-or-nothing.
    """

    # --- Configuration ---

    @abstractmethod
    def get_config(self) -> DetectionConfig:
        """Load the detection config, falling back to defaults."""
        ...

    @abstractmethod
    def save_config(self, config: DetectionConfig) -> None:
        """Persist the detection config."""
        ...

    # --- Usage reads ---

    @abstractmethod
    def get_cycle_spend(self) -> list[CycleSpend]:
        """Per-user spend for the most recent billing cycle."""
        ...

    @abstractmethod
    def get_usage_totals(self, start: datetime, end: datetime) -> list[UsageTotals]:
        """Per-user request count and token total in ``(start, end]``.

        Only users with at least one event are returned.
        """
        ...

    @abstractmethod
    def get_daily_totals(
        self,
        end: datetime,
        days: int,
        email: str | None = None,
    ) -> list[DailyTotals]:
        """Per-user 24-hour buckets counting back from ``end``.

        Args:
            end: Anchor; bucket 0 is ``(end - 1 day, end]``
            days: Number of buckets
            email: Restrict to one user

        Returns:
            One entry per user and bucket with at least one event
        """
        ...

    @abstractmethod
    def get_model_usage(
        self,
        start: datetime,
        end: datetime,
        email: str | None = None,
    ) -> list[ModelUsage]:
        """Per-user, per-model totals in ``(start, end]``."""
        ...

    # --- Usage ingestion ---

    @abstractmethod
    def add_usage_events(self, events: Sequence[UsageEvent]) -> int:
        """Append usage events. Returns the number stored."""
        ...

    @abstractmethod
    def upsert_cycle_spend(self, rows: Sequence[CycleSpend]) -> int:
        """Insert or replace spend rows keyed by (email, cycle_start)."""
        ...

    # --- Anomalies ---

    @abstractmethod
    def get_open_anomalies(self) -> list[Anomaly]:
        """All anomalies whose ``resolved_at`` is unset."""
        ...

    @abstractmethod
    def list_anomalies(self, filter_criteria: AnomalyStoreFilter) -> list[Anomaly]:
        """Anomalies matching the filter, newest first."""
        ...

    @abstractmethod
    def get_anomaly(self, anomaly_id: int) -> Anomaly | None:
        ...

    @abstractmethod
    def insert_anomaly(self, anomaly: Anomaly) -> int:
        """Insert one anomaly and return its assigned id."""
        ...

    @abstractmethod
    def insert_anomalies(self, anomalies: Sequence[Anomaly]) -> list[int]:
        """Insert a batch in one transaction; ids are returned in order."""
        ...

    @abstractmethod
    def resolve_anomaly(self, anomaly_id: int, resolved_at: datetime | None = None) -> bool:
        """Set ``resolved_at`` if the anomaly is still open.

        Safe to call redundantly: returns False and changes nothing when the
        anomaly is already resolved or does not exist.
        """
        ...

    @abstractmethod
    def mark_anomaly_alerted(self, anomaly_id: int, alerted_at: datetime | None = None) -> None:
        ...

    # --- Incidents ---

    @abstractmethod
    def insert_incident(self, incident: Incident) -> int:
        """Insert an incident (its ``id`` is ignored) and return the new id."""
        ...

    @abstractmethod
    def update_incident_status(
        self,
        incident_id: int,
        status: IncidentStatus,
        **fields: Any,
    ) -> None:
        """Set the status plus any of ``INCIDENT_UPDATE_FIELDS``."""
        ...

    @abstractmethod
    def get_incident(self, incident_id: int) -> Incident | None:
        ...

    @abstractmethod
    def get_open_incidents(self) -> list[Incident]:
        """Incidents not yet resolved, newest first."""
        ...

    @abstractmethod
    def list_incidents(self, limit: int | None = None) -> list[Incident]:
        """All incidents, newest first."""
        ...


class BaseUsageStore(UsageStore):
    """Base implementation with common functionality."""

    @staticmethod
    def _validate_incident_fields(fields: dict[str, Any]) -> None:
        unknown = set(fields) - INCIDENT_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown incident fields: {sorted(unknown)}")

    @staticmethod
    def _bucket_daily(
        rows: Iterable[tuple[str, datetime, int]],
        end: datetime,
        days: int,
    ) -> list[DailyTotals]:
        """Group ``(email, timestamp, tokens)`` rows into 24-hour buckets.

        Rows outside ``(end - days, end]`` are ignored.
        """
        buckets: dict[tuple[str, int], list[int]] = defaultdict(lambda: [0, 0])
        for email, timestamp, tokens in rows:
            age = end - timestamp
            if age < timedelta(0):
                continue
            day_index = age // DAY
            if day_index >= days:
                continue
            totals = buckets[(email, day_index)]
            totals[0] += 1
            totals[1] += tokens

        return [
            DailyTotals(email=email, day_index=day_index, requests=req, tokens=tok)
            for (email, day_index), (req, tok) in sorted(buckets.items())
        ]

    @staticmethod
    def _sort_newest_first(records: list[Any]) -> list[Any]:
        return sorted(records, key=lambda r: (r.detected_at, r.id or 0), reverse=True)
