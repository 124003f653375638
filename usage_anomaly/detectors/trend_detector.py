"""Personal trend detector."""

from collections import defaultdict
from datetime import datetime, timedelta

from usage_anomaly.baselines.statistical import mean, nearest_rank_percentile
from usage_anomaly.config.settings import DetectionConfig, TrendConfig
from usage_anomaly.detectors.interface import AnomalyDetector
from usage_anomaly.models.anomaly_record import (
    Anomaly,
    AnomalyMetric,
    AnomalyType,
    Severity,
    Subject,
)
from usage_anomaly.models.usage import DailyTotals
from usage_anomaly.store.interface import DAY, UsageStore

# Model-shift trigger points, as request-share fractions
MODEL_SHIFT_MIN_SHARE = 0.30
MODEL_SHIFT_MIN_INCREASE = 0.20
MODEL_SHIFT_HISTORY_DAYS = 8

DRIFT_PERCENTILE = 0.75


class TrendAnomalyDetector(AnomalyDetector):
    """Flags changes in a user's own behaviour over time.

    Three independent checks, none suppressing another:

    1. Personal spike: the last 24 hours against the mean of the user's
       active days in the preceding ``spike_lookback_days`` days, for tokens
       and for requests.
    2. Sustained drift: days above the team P75 of pooled user-day token
       totals over ``drift_days_above_p75 + 1`` days.
    3. Model-cost shift: share of today's requests on expensive models
       against the share from 8 days ago to 1 day ago.

    Daily buckets are rolling 24-hour windows anchored at ``now``.
    """

    @property
    def anomaly_type(self) -> AnomalyType:
        """Get the type of anomaly this detector identifies."""
        return AnomalyType.TREND

    def detect(
        self,
        store: UsageStore,
        config: DetectionConfig,
        now: datetime,
    ) -> list[Anomaly]:
        trends = config.trends
        anomalies: list[Anomaly] = []
        anomalies.extend(self._detect_spikes(store, trends, now))
        anomalies.extend(self._detect_drift(store, trends, now))
        anomalies.extend(self._detect_model_shift(store, trends, now))
        return anomalies

    def _detect_spikes(
        self,
        store: UsageStore,
        trends: TrendConfig,
        now: datetime,
    ) -> list[Anomaly]:
        lookback = trends.spike_lookback_days
        multiplier = trends.spike_multiplier

        by_user: dict[str, list[DailyTotals]] = defaultdict(list)
        for row in store.get_daily_totals(now, lookback + 1):
            by_user[row.email].append(row)

        today_models: dict[AnomalyMetric, dict[str, str]] = {}
        anomalies: list[Anomaly] = []
        for email, rows in sorted(by_user.items()):
            today = next((r for r in rows if r.day_index == 0), None)
            if today is None:
                continue
            history = [r for r in rows if r.day_index > 0]

            for metric in (AnomalyMetric.TOKENS, AnomalyMetric.REQUESTS):
                current = getattr(today, metric.value)
                active = [getattr(r, metric.value) for r in history]
                baseline = mean([v for v in active if v > 0])
                if baseline <= 0:
                    continue
                ratio = current / baseline
                if ratio <= multiplier:
                    continue

                if metric not in today_models:
                    today_models[metric] = self._top_models(
                        store.get_model_usage(now - DAY, now), by=metric.value
                    )
                model = today_models[metric].get(email)
                message = (
                    f"{metric.value.capitalize()} spike: {ratio:.1f}x their {lookback}-day "
                    f"average ({baseline:,.0f} to {current:,})"
                )
                if model:
                    message += f", model: {model}"
                anomalies.append(
                    Anomaly(
                        subject=Subject.user(email),
                        anomaly_type=AnomalyType.TREND,
                        severity=self._severity(ratio, 2 * multiplier),
                        metric=metric,
                        value=current,
                        threshold=baseline * multiplier,
                        message=message,
                        detected_at=now,
                        diagnosis_model=model,
                        diagnosis_kind="spike",
                        diagnosis_delta=current - baseline,
                    )
                )
        return anomalies

    def _detect_drift(
        self,
        store: UsageStore,
        trends: TrendConfig,
        now: datetime,
    ) -> list[Anomaly]:
        required = trends.drift_days_above_p75
        window_days = required + 1

        daily: dict[str, list[int]] = defaultdict(list)
        for row in store.get_daily_totals(now, window_days):
            if row.tokens > 0:
                daily[row.email].append(row.tokens)

        pooled = [tokens for values in daily.values() for tokens in values]
        if not pooled:
            return []
        p75 = nearest_rank_percentile(pooled, DRIFT_PERCENTILE)

        anomalies: list[Anomaly] = []
        for email, values in sorted(daily.items()):
            days_above = sum(1 for tokens in values if tokens > p75)
            if days_above < required:
                continue
            avg = mean(values)
            anomalies.append(
                Anomaly(
                    subject=Subject.user(email),
                    anomaly_type=AnomalyType.TREND,
                    severity=Severity.WARNING,
                    metric=AnomalyMetric.TOKENS,
                    value=avg,
                    threshold=p75,
                    message=(
                        f"Sustained high usage: above team P75 ({p75:,.0f} tokens) for "
                        f"{days_above} of last {window_days} days (avg: {avg:,.0f})"
                    ),
                    detected_at=now,
                    diagnosis_kind="drift",
                    diagnosis_delta=avg - p75,
                )
            )
        return anomalies

    def _detect_model_shift(
        self,
        store: UsageStore,
        trends: TrendConfig,
        now: datetime,
    ) -> list[Anomaly]:
        expensive = frozenset(trends.expensive_models)
        if not expensive:
            return []

        day_ago = now - DAY
        today_rows = store.get_model_usage(day_ago, now)
        history_start = now - timedelta(days=MODEL_SHIFT_HISTORY_DAYS)
        history_rows = store.get_model_usage(history_start, day_ago)

        today_share = _expensive_shares(today_rows, expensive)
        history_share = _expensive_shares(history_rows, expensive)
        top_expensive = self._top_models(today_rows, by="requests", allowed=expensive)

        anomalies: list[Anomaly] = []
        for email, today in sorted(today_share.items()):
            historical = history_share.get(email)
            if historical is None:
                continue
            increase = today - historical
            if today <= MODEL_SHIFT_MIN_SHARE or increase <= MODEL_SHIFT_MIN_INCREASE:
                continue
            model = top_expensive.get(email)
            anomalies.append(
                Anomaly(
                    subject=Subject.user(email),
                    anomaly_type=AnomalyType.TREND,
                    severity=Severity.WARNING,
                    metric=AnomalyMetric.MODEL_SHIFT,
                    value=round(today * 100, 2),
                    threshold=round(historical * 100, 2),
                    message=(
                        f"Model shift: {today * 100:.0f}% of today's requests on expensive "
                        f"models (previously {historical * 100:.0f}%), top: {model}"
                    ),
                    detected_at=now,
                    diagnosis_model=model,
                    diagnosis_kind="model_shift",
                    diagnosis_delta=round(increase * 100, 2),
                )
            )
        return anomalies


def _expensive_shares(rows, expensive: frozenset[str]) -> dict[str, float]:
    """Per-user fraction of requests made on an expensive model.

    Users with no requests in the window are omitted.
    """
    total: dict[str, int] = defaultdict(int)
    costly: dict[str, int] = defaultdict(int)
    for row in rows:
        total[row.email] += row.requests
        if row.model in expensive:
            costly[row.email] += row.requests
    return {email: costly[email] / count for email, count in total.items() if count > 0}
