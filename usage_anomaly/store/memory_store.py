"""In-memory store implementation."""

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Sequence

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.models.anomaly_record import Anomaly, utcnow
from usage_anomaly.models.incident import Incident, IncidentStatus
from usage_anomaly.models.usage import (
    CycleSpend,
    DailyTotals,
    ModelUsage,
    UsageEvent,
    UsageTotals,
)
from usage_anomaly.store.interface import AnomalyStoreFilter, BaseUsageStore


class MemoryUsageStore(BaseUsageStore):
    """Thread-safe in-memory implementation of UsageStore.

    Primarily for testing and development. Ids are assigned from
    per-table counters, mirroring auto-increment keys.

    PROPERTIES:
    - Thread-safe: Uses lock for concurrent access
    - Anomalies are never deleted; resolution only sets a timestamp
    - In-memory: Data is lost on process restart
    """

    def __init__(self) -> None:
        """Initialize the in-memory store."""
        self._events: list[UsageEvent] = []
        self._spend: dict[tuple[str, Any], CycleSpend] = {}
        self._anomalies: dict[int, Anomaly] = {}
        self._incidents: dict[int, Incident] = {}
        self._config_rows: dict[str, str] = {}
        self._next_anomaly_id = 1
        self._next_incident_id = 1
        self._lock = threading.Lock()

    # --- Configuration ---

    def get_config(self) -> DetectionConfig:
        with self._lock:
            rows = dict(self._config_rows)
        return DetectionConfig.from_flat(rows)

    def save_config(self, config: DetectionConfig) -> None:
        with self._lock:
            self._config_rows = config.to_flat()

    # --- Usage reads ---

    def get_cycle_spend(self) -> list[CycleSpend]:
        with self._lock:
            if not self._spend:
                return []
            latest = max(row.cycle_start for row in self._spend.values())
            return sorted(
                (row for row in self._spend.values() if row.cycle_start == latest),
                key=lambda row: row.email,
            )

    def get_usage_totals(self, start: datetime, end: datetime) -> list[UsageTotals]:
        totals: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        for event in self._events_between(start, end):
            totals[event.user_email][0] += 1
            totals[event.user_email][1] += event.total_tokens
        return [
            UsageTotals(email=email, requests=req, tokens=tok)
            for email, (req, tok) in sorted(totals.items())
        ]

    def get_daily_totals(
        self,
        end: datetime,
        days: int,
        email: str | None = None,
    ) -> list[DailyTotals]:
        events = self._events_between(end - timedelta(days=days), end, email)
        return self._bucket_daily(
            ((e.user_email, e.timestamp, e.total_tokens) for e in events), end, days
        )

    def get_model_usage(
        self,
        start: datetime,
        end: datetime,
        email: str | None = None,
    ) -> list[ModelUsage]:
        totals: dict[tuple[str, str], list[int]] = defaultdict(lambda: [0, 0])
        for event in self._events_between(start, end, email):
            totals[(event.user_email, event.model)][0] += 1
            totals[(event.user_email, event.model)][1] += event.total_tokens
        return [
            ModelUsage(email=user, model=model, requests=req, tokens=tok)
            for (user, model), (req, tok) in sorted(totals.items())
        ]

    def _events_between(
        self,
        start: datetime,
        end: datetime,
        email: str | None = None,
    ) -> list[UsageEvent]:
        with self._lock:
            return [
                e
                for e in self._events
                if start < e.timestamp <= end and (email is None or e.user_email == email)
            ]

    # --- Usage ingestion ---

    def add_usage_events(self, events: Sequence[UsageEvent]) -> int:
        with self._lock:
            self._events.extend(events)
        return len(events)

    def upsert_cycle_spend(self, rows: Sequence[CycleSpend]) -> int:
        with self._lock:
            for row in rows:
                self._spend[(row.email, row.cycle_start)] = row
        return len(rows)

    # --- Anomalies ---

    def get_open_anomalies(self) -> list[Anomaly]:
        return self.list_anomalies(AnomalyStoreFilter(open_only=True))

    def list_anomalies(self, filter_criteria: AnomalyStoreFilter) -> list[Anomaly]:
        with self._lock:
            results = [a for a in self._anomalies.values() if filter_criteria.matches(a)]
        results = self._sort_newest_first(results)
        if filter_criteria.limit:
            results = results[: filter_criteria.limit]
        return results

    def get_anomaly(self, anomaly_id: int) -> Anomaly | None:
        with self._lock:
            return self._anomalies.get(anomaly_id)

    def insert_anomaly(self, anomaly: Anomaly) -> int:
        return self.insert_anomalies([anomaly])[0]

    def insert_anomalies(self, anomalies: Sequence[Anomaly]) -> list[int]:
        ids = []
        with self._lock:
            for anomaly in anomalies:
                anomaly_id = self._next_anomaly_id
                self._next_anomaly_id += 1
                self._anomalies[anomaly_id] = anomaly.with_id(anomaly_id)
                ids.append(anomaly_id)
        return ids

    def resolve_anomaly(self, anomaly_id: int, resolved_at: datetime | None = None) -> bool:
        with self._lock:
            anomaly = self._anomalies.get(anomaly_id)
            if anomaly is None or not anomaly.is_open:
                return False
            self._anomalies[anomaly_id] = replace(anomaly, resolved_at=resolved_at or utcnow())
            return True

    def mark_anomaly_alerted(self, anomaly_id: int, alerted_at: datetime | None = None) -> None:
        with self._lock:
            anomaly = self._anomalies.get(anomaly_id)
            if anomaly is not None:
                self._anomalies[anomaly_id] = replace(anomaly, alerted_at=alerted_at or utcnow())

    # --- Incidents ---

    def insert_incident(self, incident: Incident) -> int:
        with self._lock:
            incident_id = self._next_incident_id
            self._next_incident_id += 1
            self._incidents[incident_id] = replace(incident, id=incident_id)
            return incident_id

    def update_incident_status(
        self,
        incident_id: int,
        status: IncidentStatus,
        **fields: Any,
    ) -> None:
        self._validate_incident_fields(fields)
        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is not None:
                self._incidents[incident_id] = replace(incident, status=status, **fields)

    def get_incident(self, incident_id: int) -> Incident | None:
        with self._lock:
            return self._incidents.get(incident_id)

    def get_open_incidents(self) -> list[Incident]:
        return [i for i in self.list_incidents() if i.is_open]

    def list_incidents(self, limit: int | None = None) -> list[Incident]:
        with self._lock:
            results = self._sort_newest_first(list(self._incidents.values()))
        if limit:
            results = results[:limit]
        return results

