"""Incident lifecycle manager."""

from dataclasses import replace
from datetime import datetime
from typing import Callable, Sequence

from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly, utcnow
from usage_anomaly.models.incident import Incident, IncidentStatus, minutes_between
from usage_anomaly.store.interface import UsageStore

logger = get_logger(__name__)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


class IncidentManager:
    """Tracks one incident per anomaly through open, alerted, acknowledged
    and resolved.

    Each duration metric is computed once, at the transition that sets its
    end timestamp:
    - MTTD at creation (anomaly ``detected_at`` to now)
    - MTTI at acknowledgement (``alerted_at`` to now, None if never alerted)
    - MTTR at resolution (``detected_at`` to now)

    Transitions may skip states; an open incident can be resolved directly.
    """

    def __init__(self, store: UsageStore, now: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._now = now

    def create_incident(self, anomaly: Anomaly) -> Incident:
        """Create an open incident for a persisted anomaly.

        Raises:
            ValueError: If the anomaly has no id
        """
        if anomaly.id is None:
            raise ValueError("Cannot open an incident for an unsaved anomaly")

        now = self._now()
        incident = Incident(
            anomaly_id=anomaly.id,
            subject=anomaly.subject,
            status=IncidentStatus.OPEN,
            detected_at=anomaly.detected_at,
            mttd_minutes=minutes_between(anomaly.detected_at, now),
        )
        incident_id = self._store.insert_incident(incident)
        logger.info("incident_created", incident_id=incident_id, anomaly_id=anomaly.id)
        return replace(incident, id=incident_id)

    def process_new_anomalies(
        self,
        anomalies: Sequence[Anomaly],
    ) -> list[tuple[Anomaly, Incident]]:
        """Create one incident per anomaly, preserving order."""
        return [(anomaly, self.create_incident(anomaly)) for anomaly in anomalies]

    def anomalies_without_incident(self) -> list[Anomaly]:
        """Open anomalies that have no incident yet.

        These are left behind when a run stored its anomalies but failed
        before every incident was written.
        """
        covered = {incident.anomaly_id for incident in self._store.list_incidents()}
        return [a for a in self._store.get_open_anomalies() if a.id not in covered]

    def mark_alerted(self, incident: Incident) -> bool:
        """Move an open incident to alerted.

        Also stamps the anomaly's ``alerted_at``. Incidents past the open
        state are left unchanged.

        Returns:
            True if the incident was updated
        """
        if incident.id is None or incident.status is not IncidentStatus.OPEN:
            return False
        now = self._now()
        self._store.update_incident_status(incident.id, IncidentStatus.ALERTED, alerted_at=now)
        self._store.mark_anomaly_alerted(incident.anomaly_id, now)
        return True

    def acknowledge_incident(self, incident_id: int) -> Incident | None:
        """Acknowledge an open incident and record MTTI.

        Returns:
            The updated incident, or None if ``incident_id`` is not an open
            incident or was already acknowledged
        """
        incident = self._find_open(incident_id)
        if incident is None or incident.acknowledged_at is not None:
            return None

        now = self._now()
        mtti = minutes_between(incident.alerted_at, now) if incident.alerted_at else None
        self._store.update_incident_status(
            incident_id,
            IncidentStatus.ACKNOWLEDGED,
            acknowledged_at=now,
            mtti_minutes=mtti,
        )
        logger.info("incident_acknowledged", incident_id=incident_id, mtti_minutes=mtti)
        return self._store.get_incident(incident_id)

    def resolve_incident(self, incident_id: int) -> Incident | None:
        """Resolve an open incident and record MTTR.

        Returns:
            The updated incident, or None if ``incident_id`` is not open
        """
        incident = self._find_open(incident_id)
        if incident is None:
            return None

        now = self._now()
        mttr = minutes_between(incident.detected_at, now)
        self._store.update_incident_status(
            incident_id,
            IncidentStatus.RESOLVED,
            resolved_at=now,
            mttr_minutes=mttr,
        )
        logger.info("incident_resolved", incident_id=incident_id, mttr_minutes=mttr)
        return self._store.get_incident(incident_id)

    def summarize_metrics(self) -> dict[str, float | int | None]:
        """Mean MTTD, MTTI and MTTR over incidents that have each metric."""
        incidents = self._store.list_incidents()
        return {
            "incidents": len(incidents),
            "open": sum(1 for i in incidents if i.is_open),
            "mean_mttd_minutes": _mean([i.mttd_minutes for i in incidents if i.mttd_minutes is not None]),
            "mean_mtti_minutes": _mean([i.mtti_minutes for i in incidents if i.mtti_minutes is not None]),
            "mean_mttr_minutes": _mean([i.mttr_minutes for i in incidents if i.mttr_minutes is not None]),
        }

    def _find_open(self, incident_id: int) -> Incident | None:
        for incident in self._store.get_open_incidents():
            if incident.id == incident_id:
                return incident
        return None
