"""Detection orchestrator: collect, reconcile, persist."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.detectors.registry import DetectorRegistry
from usage_anomaly.exceptions import DetectionAlreadyRunning
from usage_anomaly.logging_config import get_logger
from usage_anomaly.models.anomaly_record import Anomaly, DedupKey, utcnow
from usage_anomaly.store.interface import UsageStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detection run."""

    new_anomalies: list[Anomaly] = field(default_factory=list)
    resolved_count: int = 0
    total_open: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "new": len(self.new_anomalies),
            "resolved": self.resolved_count,
            "total_open": self.total_open,
        }


class DetectionOrchestrator:
    """Runs every detector and reconciles the result with stored state.

    A run has two phases:

    1. Collect: every detector reads the store; nothing is written. Any
       exception here aborts the run with the store untouched.
    2. Reconcile: keys reported but not open are inserted in one batch,
       open keys no longer reported are resolved.

    Repeating a run over unchanged data inserts and resolves nothing.
    Overlapping runs in one process are rejected with
    :class:`DetectionAlreadyRunning`.
    """

    def __init__(
        self,
        store: UsageStore,
        registry: DetectorRegistry | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Persistent store for usage data and anomalies
            registry: Detectors to run; defaults to the built-in set
            now: Clock, injectable for tests
        """
        self._store = store
        self._registry = registry or DetectorRegistry()
        self._now = now
        self._lock = threading.Lock()

    def run_detection(self, config_override: DetectionConfig | None = None) -> DetectionResult:
        """Execute one detection run.

        Args:
            config_override: Use this config instead of the stored one

        Returns:
            The newly inserted anomalies (with ids), how many were resolved,
            and how many remain open afterwards

        Raises:
            DetectionAlreadyRunning: If another run holds the lock
        """
        if not self._lock.acquire(blocking=False):
            raise DetectionAlreadyRunning()
        try:
            return self._run(config_override)
        finally:
            self._lock.release()

    def _run(self, config_override: DetectionConfig | None) -> DetectionResult:
        config = config_override or self._store.get_config()
        now = self._now()

        detected = self._registry.detect_all(self._store, config, now)

        open_anomalies = self._store.get_open_anomalies()
        existing_keys = {a.dedup_key for a in open_anomalies}
        detected_keys: set[DedupKey] = set()

        to_insert: list[Anomaly] = []
        for anomaly in detected:
            key = anomaly.dedup_key
            if key in existing_keys or key in detected_keys:
                detected_keys.add(key)
                continue
            detected_keys.add(key)
            to_insert.append(anomaly)

        new_anomalies: list[Anomaly] = []
        if to_insert:
            ids = self._store.insert_anomalies(to_insert)
            new_anomalies = [a.with_id(i) for a, i in zip(to_insert, ids)]

        resolved_count = 0
        for anomaly in open_anomalies:
            if anomaly.dedup_key in detected_keys or anomaly.id is None:
                continue
            if self._store.resolve_anomaly(anomaly.id, now):
                resolved_count += 1

        total_open = len(self._store.get_open_anomalies())
        logger.info(
            "detection_complete",
            detected=len(detected),
            new=len(new_anomalies),
            resolved=resolved_count,
            total_open=total_open,
        )
        return DetectionResult(
            new_anomalies=new_anomalies,
            resolved_count=resolved_count,
            total_open=total_open,
        )
