"""Scheduled detection entry point shared by the CLI and the HTTP trigger."""

import time
from typing import Any

from usage_anomaly.alerts.dispatcher import AlertDispatcher, build_channels
from usage_anomaly.config.settings import Settings, get_settings
from usage_anomaly.engine.incidents import IncidentManager
from usage_anomaly.engine.orchestrator import DetectionOrchestrator
from usage_anomaly.exceptions import DetectionAlreadyRunning
from usage_anomaly.logging_config import get_logger
from usage_anomaly.store.interface import UsageStore

logger = get_logger(__name__)


def run_scheduled_detection(
    store: UsageStore,
    dispatcher: AlertDispatcher | None = None,
    settings: Settings | None = None,
    orchestrator: DetectionOrchestrator | None = None,
    incidents: IncidentManager | None = None,
) -> dict[str, Any]:
    """Run detection, open incidents for new anomalies, then send alerts.

    Open anomalies left without an incident by an earlier failed run are
    picked up as well. A detection failure leaves the store untouched and
    is reported in the result instead of raised, so a scheduler keeps
    firing on its cadence.

    Args:
        store: Persistent store
        dispatcher: Alert fan-out; built from ``settings`` when omitted
        settings: Service settings; defaults to the global settings
        orchestrator: Orchestrator to run; one is created per call when
            omitted, so pass a shared instance to get overlap protection
        incidents: Incident manager; defaults to one over ``store``

    Returns:
        Dict with ``detection``, ``incidents``, ``alerts`` and ``duration_ms``
    """
    settings = settings or get_settings()
    incidents = incidents or IncidentManager(store)
    dispatcher = dispatcher or AlertDispatcher(build_channels(settings), incidents)
    orchestrator = orchestrator or DetectionOrchestrator(store)
    min_rank = settings.min_incident_rank

    started = time.monotonic()
    try:
        result = orchestrator.run_detection()
    except DetectionAlreadyRunning as e:
        logger.warning("detection_skipped", reason=str(e))
        return {"detection": {"error": str(e)}, "duration_ms": _elapsed_ms(started)}
    except Exception as e:
        logger.error("detection_failed", error=str(e), exc_info=True)
        return {"detection": {"error": str(e)}, "duration_ms": _elapsed_ms(started)}

    eligible = [a for a in result.new_anomalies if a.severity.rank >= min_rank]
    new_ids = {a.id for a in result.new_anomalies}
    backlog = [
        a
        for a in incidents.anomalies_without_incident()
        if a.id not in new_ids and a.severity.rank >= min_rank
    ]
    if backlog:
        logger.warning("incident_backlog", anomaly_ids=[a.id for a in backlog])
    pairs = incidents.process_new_anomalies([*eligible, *backlog])
    summary = dispatcher.dispatch(pairs) if pairs else None

    output = {
        "detection": result.to_dict(),
        "incidents": {"created": len(pairs)},
        "alerts": summary.to_dict() if summary else {"alerted": 0},
        "duration_ms": _elapsed_ms(started),
    }
    logger.info("scheduled_detection_complete", **output)
    return output


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
