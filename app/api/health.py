"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.routes import get_store
from usage_anomaly.config import get_settings
from usage_anomaly.exceptions import StoreError
from usage_anomaly.store import UsageStore

router = APIRouter(tags=["Health"])


def _status(status: str) -> dict:
    return {
        "status": status,
        "service": get_settings().service_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Service health status
    """
    return _status("healthy")


@router.get("/ready")
def readiness_check(store: UsageStore = Depends(get_store)) -> dict:
    """Readiness probe endpoint.

    Ready once the store answers a config read.

    Returns:
        Readiness status
    """
    try:
        store.get_config()
    except StoreError:
        return _status("unavailable")
    return _status("ready")


@router.get("/live")
async def liveness_check() -> dict:
    """Liveness probe endpoint.

    Used by orchestration systems to determine if the service
    is alive and should not be restarted.

    Returns:
        Liveness status
    """
    return _status("alive")
