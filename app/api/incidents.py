"""Incident API routes."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.routes import SubjectResponse, get_store
from usage_anomaly.engine.incidents import IncidentManager
from usage_anomaly.models import Incident
from usage_anomaly.store import UsageStore

router = APIRouter(prefix="/incidents", tags=["Incidents"])


def get_incident_manager(store: UsageStore = Depends(get_store)) -> IncidentManager:
    return IncidentManager(store)


class IncidentResponse(BaseModel):
    """Response model for an incident."""

    id: int
    anomaly_id: int
    subject: SubjectResponse
    status: str
    detected_at: str
    alerted_at: str | None
    acknowledged_at: str | None
    resolved_at: str | None
    mttd_minutes: float | None
    mtti_minutes: float | None
    mttr_minutes: float | None

    @classmethod
    def from_record(cls, incident: Incident) -> "IncidentResponse":
        """Create response from domain model."""
        return cls(**incident.to_dict())


class IncidentListResponse(BaseModel):
    incidents: list[IncidentResponse]
    returned_count: int


class IncidentMetricsResponse(BaseModel):
    incidents: int
    open: int
    mean_mttd_minutes: float | None
    mean_mtti_minutes: float | None
    mean_mttr_minutes: float | None


class IncidentUpdateResponse(BaseModel):
    """Outcome of an operator action.

    ``updated`` is False when the incident is unknown or not in a state the
    action applies to; the request still succeeds.
    """

    updated: bool
    incident: IncidentResponse | None = None


@router.get("", response_model=IncidentListResponse)
def list_incidents(
    open_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=1000),
    store: UsageStore = Depends(get_store),
) -> IncidentListResponse:
    """List incidents, newest first."""
    if open_only:
        records = store.get_open_incidents()[:limit]
    else:
        records = store.list_incidents(limit=limit)
    return IncidentListResponse(
        incidents=[IncidentResponse.from_record(i) for i in records],
        returned_count=len(records),
    )


@router.get("/metrics", response_model=IncidentMetricsResponse)
def incident_metrics(
    manager: IncidentManager = Depends(get_incident_manager),
) -> IncidentMetricsResponse:
    """Mean time to detect, identify and resolve, in minutes."""
    return IncidentMetricsResponse(**manager.summarize_metrics())


@router.post("/{incident_id}/acknowledge", response_model=IncidentUpdateResponse)
def acknowledge_incident(
    incident_id: int,
    manager: IncidentManager = Depends(get_incident_manager),
) -> IncidentUpdateResponse:
    incident = manager.acknowledge_incident(incident_id)
    return _update_response(incident)


@router.post("/{incident_id}/resolve", response_model=IncidentUpdateResponse)
def resolve_incident(
    incident_id: int,
    manager: IncidentManager = Depends(get_incident_manager),
) -> IncidentUpdateResponse:
    incident = manager.resolve_incident(incident_id)
    return _update_response(incident)


def _update_response(incident: Incident | None) -> IncidentUpdateResponse:
    if incident is None:
        return IncidentUpdateResponse(updated=False)
    return IncidentUpdateResponse(updated=True, incident=IncidentResponse.from_record(incident))
