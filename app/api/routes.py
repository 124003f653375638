"""Anomaly, detection and configuration API routes."""

import hmac
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from usage_anomaly.config import DetectionConfig, get_settings
from usage_anomaly.engine.orchestrator import DetectionOrchestrator
from usage_anomaly.engine.runner import run_scheduled_detection
from usage_anomaly.models import Anomaly, AnomalyType, Subject
from usage_anomaly.store import AnomalyStoreFilter, MemoryUsageStore, UsageStore

router = APIRouter()

# Store and orchestrator instances (configured in main.py)
_store: UsageStore | None = None
_orchestrator: DetectionOrchestrator | None = None


def get_store() -> UsageStore:
    """Get the store instance."""
    global _store
    if _store is None:
        _store = MemoryUsageStore()
    return _store


def set_store(store: UsageStore) -> None:
    """Set the store instance and reset the orchestrator bound to it."""
    global _store, _orchestrator
    _store = store
    _orchestrator = None


def get_orchestrator(store: UsageStore = Depends(get_store)) -> DetectionOrchestrator:
    """Shared orchestrator, so overlapping HTTP triggers hit one run lock."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DetectionOrchestrator(store)
    return _orchestrator


# --- Request/Response Models ---


class SubjectResponse(BaseModel):
    kind: str
    id: str


class AnomalyResponse(BaseModel):
    """Response model for an anomaly."""

    id: int
    subject: SubjectResponse
    type: str
    severity: str
    metric: str
    value: float
    threshold: float
    message: str
    detected_at: str
    resolved_at: str | None
    alerted_at: str | None
    diagnosis_model: str | None
    diagnosis_kind: str | None
    diagnosis_delta: float | None

    @classmethod
    def from_record(cls, anomaly: Anomaly) -> "AnomalyResponse":
        """Create response from domain model."""
        return cls(**anomaly.to_dict())


class AnomalyListResponse(BaseModel):
    """Response model for a list of anomalies."""

    anomalies: list[AnomalyResponse]
    returned_count: int


# --- Endpoints ---


@router.get("/anomalies", response_model=AnomalyListResponse, tags=["Anomalies"])
def list_anomalies(
    open_only: bool = Query(default=False, description="Only unresolved anomalies"),
    since: datetime | None = Query(default=None, description="Detected at or after"),
    anomaly_type: list[str] | None = Query(default=None, description="Filter by anomaly types"),
    user: str | None = Query(default=None, description="Filter by user email"),
    team: bool = Query(default=False, description="Only team-wide anomalies"),
    limit: int = Query(default=100, ge=1, le=1000),
    store: UsageStore = Depends(get_store),
) -> AnomalyListResponse:
    """List anomalies, newest first."""
    anomaly_types = None
    if anomaly_type:
        try:
            anomaly_types = [AnomalyType(t) for t in anomaly_type]
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid anomaly type: {e}")

    subject = Subject.team() if team else (Subject.user(user) if user else None)
    records = store.list_anomalies(
        AnomalyStoreFilter(
            open_only=open_only,
            since=since,
            anomaly_types=anomaly_types,
            subject=subject,
            limit=limit,
        )
    )
    return AnomalyListResponse(
        anomalies=[AnomalyResponse.from_record(r) for r in records],
        returned_count=len(records),
    )


@router.get("/anomalies/{anomaly_id}", response_model=AnomalyResponse, tags=["Anomalies"])
def get_anomaly(
    anomaly_id: int,
    store: UsageStore = Depends(get_store),
) -> AnomalyResponse:
    """Get a specific anomaly by id.

    Raises:
        404: If the anomaly does not exist
    """
    anomaly = store.get_anomaly(anomaly_id)
    if anomaly is None:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    return AnomalyResponse.from_record(anomaly)


@router.post("/detection/run", tags=["Detection"])
def trigger_detection(
    secret: str | None = Query(default=None),
    x_cron_secret: str | None = Header(default=None),
    store: UsageStore = Depends(get_store),
    orchestrator: DetectionOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Run one detection pass, open incidents and send alerts.

    When ``CRON_SECRET`` is configured the caller must present it in the
    ``x-cron-secret`` header or the ``secret`` query parameter.
    """
    settings = get_settings()
    if settings.cron_secret:
        provided = x_cron_secret or secret or ""
        if not hmac.compare_digest(provided, settings.cron_secret):
            raise HTTPException(status_code=401, detail="Unauthorized")

    return run_scheduled_detection(store, settings=settings, orchestrator=orchestrator)


@router.get("/config", tags=["Config"])
def get_config(store: UsageStore = Depends(get_store)) -> dict[str, Any]:
    """Current detection configuration."""
    return store.get_config().to_dict()


@router.put("/config", tags=["Config"])
def update_config(
    changes: dict[str, Any] = Body(...),
    store: UsageStore = Depends(get_store),
) -> dict[str, Any]:
    """Merge ``changes`` into the stored configuration.

    Raises:
        422: If the merged configuration is invalid
    """
    merged = store.get_config().to_dict()
    for section, values in changes.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values

    try:
        config = DetectionConfig.from_dict(merged)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    store.save_config(config)
    return config.to_dict()
