"""Detection orchestration and incident lifecycle."""

from usage_anomaly.engine.incidents import IncidentManager
from usage_anomaly.engine.orchestrator import DetectionOrchestrator, DetectionResult

__all__ = [
    "DetectionOrchestrator",
    "DetectionResult",
    "IncidentManager",
]
