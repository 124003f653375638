"""Team outlier detector."""

from datetime import datetime

from usage_anomaly.baselines.statistical import compute_baseline
from usage_anomaly.config.settings import DetectionConfig
from usage_anomaly.detectors.interface import AnomalyDetector
from usage_anomaly.models.anomaly_record import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    Subject,
)
from usage_anomaly.store.interface import DAY, UsageStore


class ZScoreAnomalyDetector(AnomalyDetector):
    """Flags users far above the team on the last 24 hours of activity.

    Algorithm:
    1. Population = every user with at least one event in ``(now - 1 day, now]``
    2. Compute population mean and standard deviation, separately for tokens
       and for requests
    3. Flag a user when ``z > multiplier``; critical when
       ``z > 1.5 * multiplier``

    With zero spread, any user above the mean has an infinite z-score and
    everyone else scores 0.
    """

    _CRITICAL_FACTOR = 1.5

    @property
    def anomaly_type(self) -> AnomalyType:
        """Get the type of anomaly this detector identifies."""
        return AnomalyType.ZSCORE

    def detect(
        self,
        store: UsageStore,
        config: DetectionConfig,
        now: datetime,
    ) -> list[Anomaly]:
        start = now - DAY
        totals = store.get_usage_totals(start, now)
        if not totals:
            return []

        multiplier = config.zscore.multiplier
        anomalies: list[Anomaly] = []

        for metric in (AnomalyMetric.TOKENS, AnomalyMetric.REQUESTS):
            values = [float(getattr(row, metric.value)) for row in totals]
            baseline = compute_baseline(values)
            if baseline is None:
                continue

            threshold = baseline.upper_bound(multiplier)
            flagged = []
            for row, value in zip(totals, values):
                z = baseline.z_score(value)
                if z > multiplier:
                    flagged.append((row.email, value, z))
            if not flagged:
                continue

            top_models: dict[str, str] = {}
            if metric is AnomalyMetric.TOKENS:
                top_models = self._top_models(store.get_model_usage(start, now))

            for email, value, z in flagged:
                z_text = "inf" if z == float("inf") else f"{z:.1f}"
                message = (
                    f"{email}: {metric.value} today {value:,.0f} is {z_text}σ above "
                    f"team mean ({baseline.mean:,.0f})"
                )
                model = top_models.get(email)
                if model:
                    message += f", model: {model}"
                anomalies.append(
                    Anomaly(
                        subject=Subject.user(email),
                        anomaly_type=AnomalyType.ZSCORE,
                        severity=self._severity(z, multiplier * self._CRITICAL_FACTOR),
                        metric=metric,
                        value=value,
                        threshold=threshold,
                        message=message,
                        detected_at=now,
                        diagnosis_model=model,
                        diagnosis_kind="team_outlier",
                        diagnosis_delta=value - baseline.mean,
                    )
                )

        return anomalies
