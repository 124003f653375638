"""Usage Anomaly Service - FastAPI application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import anomaly_router, health_router, incident_router
from app.api.routes import set_store
from usage_anomaly.config import get_settings
from usage_anomaly.logging_config import get_logger, setup_logging
from usage_anomaly.store import SqlUsageStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Configures logging and opens the store on startup, releases the
    connection pool on shutdown.
    """
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)

    store = SqlUsageStore.from_url(settings.database_url)
    set_store(store)
    logger.info("service_started", version=settings.service_version)

    yield

    store.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Usage Anomaly Service",
        description=(
            "Detects spend and usage anomalies across a team's AI coding assistant "
            "usage, tracks each one as an incident and alerts on new ones."
        ),
        version=settings.service_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(anomaly_router, prefix=settings.api_prefix)
    app.include_router(incident_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_app()


@app.get("/")
async def root() -> dict:
    """Root endpoint with service information."""
    settings = get_settings()
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "status": "operational",
    }
