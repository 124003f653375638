"""Static limit detector."""

from datetime import datetime

from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.detectors.interface import AnomalyDetector
from usage_anomaly.models.anomaly_record import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    Subject,
)
from usage_anomaly.store.interface import DAY, UsageStore


class ThresholdAnomalyDetector(AnomalyDetector):
    """Flags users whose usage exceeds a fixed limit.

    Rules (each disabled when its limit is 0):
    1. Cycle-to-date spend above ``max_spend_cents_per_cycle``
    2. Requests in the last 24 hours above ``max_requests_per_day``
    3. Tokens in the last 24 hours above ``max_tokens_per_day``

    Comparisons are strict: a value equal to the limit does not fire.
    Severity is critical above twice the limit.
    """

    @property
    def anomaly_type(self) -> AnomalyType:
        """Get the type of anomaly this detector identifies."""
        return AnomalyType.THRESHOLD

    def detect(
        self,
        store: UsageStore,
        config: DetectionConfig,
        now: datetime,
    ) -> list[Anomaly]:
        limits = config.thresholds
        anomalies: list[Anomaly] = []

        spend_limit = limits.max_spend_cents_per_cycle
        if spend_limit > 0:
            for row in store.get_cycle_spend():
                if row.spend_cents <= spend_limit:
                    continue
                anomalies.append(
                    Anomaly(
                        subject=Subject.user(row.email),
                        anomaly_type=AnomalyType.THRESHOLD,
                        severity=self._severity(row.spend_cents, 2 * spend_limit),
                        metric=AnomalyMetric.SPEND,
                        value=row.spend_cents,
                        threshold=spend_limit,
                        message=(
                            f"Spend ${row.spend_cents / 100:.2f} exceeds limit "
                            f"${spend_limit / 100:.2f}"
                        ),
                        detected_at=now,
                        diagnosis_kind="spend_limit",
                        diagnosis_delta=row.spend_cents - spend_limit,
                    )
                )

        request_limit = limits.max_requests_per_day
        token_limit = limits.max_tokens_per_day
        if request_limit <= 0 and token_limit <= 0:
            return anomalies

        start = now - DAY
        totals = store.get_usage_totals(start, now)

        if request_limit > 0:
            for row in totals:
                if row.requests <= request_limit:
                    continue
                anomalies.append(
                    Anomaly(
                        subject=Subject.user(row.email),
                        anomaly_type=AnomalyType.THRESHOLD,
                        severity=self._severity(row.requests, 2 * request_limit),
                        metric=AnomalyMetric.REQUESTS,
                        value=row.requests,
                        threshold=request_limit,
                        message=f"{row.requests} requests today exceeds limit of {request_limit}",
                        detected_at=now,
                        diagnosis_kind="request_limit",
                        diagnosis_delta=row.requests - request_limit,
                    )
                )

        if token_limit > 0:
            over = [row for row in totals if row.tokens > token_limit]
            top_models = self._top_models(store.get_model_usage(start, now)) if over else {}
            for row in over:
                anomalies.append(
                    Anomaly(
                        subject=Subject.user(row.email),
                        anomaly_type=AnomalyType.THRESHOLD,
                        severity=self._severity(row.tokens, 2 * token_limit),
                        metric=AnomalyMetric.TOKENS,
                        value=row.tokens,
                        threshold=token_limit,
                        message=(
                            f"{row.tokens / 1_000_000:.1f}M tokens today exceeds limit of "
                            f"{token_limit / 1_000_000:.1f}M"
                        ),
                        detected_at=now,
                        diagnosis_model=top_models.get(row.email),
                        diagnosis_kind="token_limit",
                        diagnosis_delta=row.tokens - token_limit,
                    )
                )

        return anomalies
