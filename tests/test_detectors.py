"""Unit tests for anomaly detectors."""

import statistics
from datetime import date, datetime, timedelta, timezone

import pytest

from usage_anomaly.config import DetectionConfig, ThresholdConfig, TrendConfig, ZScoreConfig
from usage_anomaly.detectors import (
    DetectorRegistry,
    ThresholdAnomalyDetector,
    TrendAnomalyDetector,
    ZScoreAnomalyDetector,
)
from usage_anomaly.models import (
    AnomalyMetric,
    AnomalyType,
    CycleSpend,
    Severity,
    Subject,
    UsageEvent,
)
from usage_anomaly.store import MemoryUsageStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
EXPENSIVE = "claude-4.6-opus-high"


def event(
    email: str,
    days_ago: int = 0,
    tokens: int = 0,
    model: str = "cheap-model",
    hours: int = 1,
) -> UsageEvent:
    """An event inside daily bucket ``days_ago`` (anchored at NOW)."""
    return UsageEvent(
        user_email=email,
        timestamp=NOW - timedelta(days=days_ago, hours=hours),
        model=model,
        total_tokens=tokens,
    )


@pytest.fixture
def store() -> MemoryUsageStore:
    """Create a fresh store instance."""
    return MemoryUsageStore()


class TestThresholdAnomalyDetector:
    """Tests for ThresholdAnomalyDetector."""

    @pytest.fixture
    def detector(self) -> ThresholdAnomalyDetector:
        return ThresholdAnomalyDetector()

    def test_anomaly_type(self, detector: ThresholdAnomalyDetector) -> None:
        assert detector.anomaly_type == AnomalyType.THRESHOLD

    def test_disabled_limits(self, detector: ThresholdAnomalyDetector, store: MemoryUsageStore) -> None:
        """Test that limits of 0 never fire."""
        store.add_usage_events([event("a@x.com", tokens=10**9) for _ in range(50)])
        store.upsert_cycle_spend([CycleSpend("a@x.com", date(2026, 3, 1), 10**7)])

        assert detector.detect(store, DetectionConfig(), NOW) == []

    def test_spend_boundary_and_severity(
        self, detector: ThresholdAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        """Test strict comparison and the doubling severity rule."""
        cycle = date(2026, 3, 1)
        store.upsert_cycle_spend(
            [
                CycleSpend("equal@x.com", cycle, 10_000),
                CycleSpend("over@x.com", cycle, 10_001),
                CycleSpend("double@x.com", cycle, 20_000),
                CycleSpend("way@x.com", cycle, 20_001),
            ]
        )
        config = DetectionConfig(thresholds=ThresholdConfig(max_spend_cents_per_cycle=10_000))

        anomalies = {str(a.subject): a for a in detector.detect(store, config, NOW)}

        assert set(anomalies) == {"over@x.com", "double@x.com", "way@x.com"}
        assert anomalies["over@x.com"].severity == Severity.WARNING
        assert anomalies["double@x.com"].severity == Severity.WARNING
        assert anomalies["way@x.com"].severity == Severity.CRITICAL
        assert anomalies["over@x.com"].metric == AnomalyMetric.SPEND
        assert anomalies["over@x.com"].threshold == 10_000
        assert anomalies["over@x.com"].message == "Spend $100.01 exceeds limit $100.00"

    def test_spend_uses_latest_cycle_only(
        self, detector: ThresholdAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        store.upsert_cycle_spend(
            [
                CycleSpend("old@x.com", date(2026, 2, 1), 99_999),
                CycleSpend("new@x.com", date(2026, 3, 1), 100),
            ]
        )
        config = DetectionConfig(thresholds=ThresholdConfig(max_spend_cents_per_cycle=1_000))

        assert detector.detect(store, config, NOW) == []

    def test_requests_last_24_hours(
        self, detector: ThresholdAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        """Test request counting over (now - 1 day, now]."""
        events = [event("at@x.com") for _ in range(3)]
        events += [event("over@x.com") for _ in range(4)]
        events += [event("crit@x.com") for _ in range(7)]
        # Outside the window
        events += [event("at@x.com", days_ago=1) for _ in range(10)]
        store.add_usage_events(events)
        config = DetectionConfig(thresholds=ThresholdConfig(max_requests_per_day=3))

        anomalies = {str(a.subject): a for a in detector.detect(store, config, NOW)}

        assert set(anomalies) == {"over@x.com", "crit@x.com"}
        assert anomalies["over@x.com"].value == 4
        assert anomalies["over@x.com"].severity == Severity.WARNING
        assert anomalies["crit@x.com"].severity == Severity.CRITICAL
        assert anomalies["crit@x.com"].diagnosis_kind == "request_limit"

    def test_tokens_with_diagnosis(
        self, detector: ThresholdAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        """Test the token rule names the top model and the excess."""
        store.add_usage_events(
            [
                event("a@x.com", tokens=800, model="model-a"),
                event("a@x.com", tokens=400, model="model-b"),
                event("b@x.com", tokens=1_000),
            ]
        )
        config = DetectionConfig(thresholds=ThresholdConfig(max_tokens_per_day=1_000))

        anomalies = detector.detect(store, config, NOW)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.subject == Subject.user("a@x.com")
        assert anomaly.metric == AnomalyMetric.TOKENS
        assert anomaly.value == 1_200
        assert anomaly.diagnosis_model == "model-a"
        assert anomaly.diagnosis_delta == 200
        assert anomaly.detected_at == NOW


class TestZScoreAnomalyDetector:
    """Tests for ZScoreAnomalyDetector."""

    @pytest.fixture
    def detector(self) -> ZScoreAnomalyDetector:
        return ZScoreAnomalyDetector()

    def test_empty_population(self, detector: ZScoreAnomalyDetector, store: MemoryUsageStore) -> None:
        assert detector.detect(store, DetectionConfig(), NOW) == []

    def test_identical_users_do_not_fire(
        self, detector: ZScoreAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        """Test that zero spread never divides by zero."""
        store.add_usage_events([event(f"u{i}@x.com", tokens=1_000) for i in range(3)])

        assert detector.detect(store, DetectionConfig(), NOW) == []

    def test_single_outlier(self, detector: ZScoreAnomalyDetector, store: MemoryUsageStore) -> None:
        """Test one heavy user among five light ones."""
        events = [event(f"u{i}@x.com", tokens=10_000) for i in range(5)]
        events.append(event("heavy@x.com", tokens=500_000, model="big-model"))
        store.add_usage_events(events)
        config = DetectionConfig(zscore=ZScoreConfig(multiplier=2.0))

        anomalies = detector.detect(store, config, NOW)

        # Request counts are all 1, so only tokens fire
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        values = [10_000.0] * 5 + [500_000.0]
        avg = statistics.mean(values)
        assert anomaly.subject == Subject.user("heavy@x.com")
        assert anomaly.anomaly_type == AnomalyType.ZSCORE
        assert anomaly.metric == AnomalyMetric.TOKENS
        assert anomaly.threshold == pytest.approx(avg + 2.0 * statistics.pstdev(values))
        assert anomaly.diagnosis_model == "big-model"
        assert anomaly.diagnosis_delta == pytest.approx(500_000 - avg)
        # z = sqrt(5), below 1.5 * 2
        assert anomaly.severity == Severity.WARNING

    def test_critical_outlier_on_requests(
        self, detector: ZScoreAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        """Test requests are scored independently and can be critical."""
        events = [event(f"u{i}@x.com") for i in range(10)]
        events += [event("busy@x.com") for _ in range(50)]
        store.add_usage_events(events)
        config = DetectionConfig(zscore=ZScoreConfig(multiplier=2.0))

        anomalies = detector.detect(store, config, NOW)

        assert len(anomalies) == 1
        assert anomalies[0].metric == AnomalyMetric.REQUESTS
        assert anomalies[0].diagnosis_model is None
        # z = sqrt(10) > 3
        assert anomalies[0].severity == Severity.CRITICAL

    def test_ignores_users_outside_window(
        self, detector: ZScoreAnomalyDetector, store: MemoryUsageStore
    ) -> None:
        events = [event(f"u{i}@x.com", tokens=1_000) for i in range(5)]
        events.append(event("old@x.com", days_ago=2, tokens=10**9))
        store.add_usage_events(events)

        assert detector.detect(store, DetectionConfig(), NOW) == []


class TestTrendSpike:
    """Tests for the personal spike check."""

    @pytest.fixture
    def detector(self) -> TrendAnomalyDetector:
        return TrendAnomalyDetector()

    @pytest.fixture
    def config(self) -> DetectionConfig:
        return DetectionConfig(trends=TrendConfig(spike_multiplier=3.0, spike_lookback_days=7))

    def _history(self, email: str, tokens: int) -> list[UsageEvent]:
        return [event(email, days_ago=d, tokens=tokens) for d in range(1, 8)]

    def test_spike_fires_warning(
        self, detector: TrendAnomalyDetector, store: MemoryUsageStore, config: DetectionConfig
    ) -> None:
        """Test 4x a 1M daily average with a multiplier of 3."""
        store.add_usage_events(
            self._history("x@x.com", 1_000_000) + [event("x@x.com", tokens=4_000_000)]
        )

        anomalies = detector.detect(store, config, NOW)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.anomaly_type == AnomalyType.TREND
        assert anomaly.metric == AnomalyMetric.TOKENS
        assert anomaly.severity == Severity.WARNING
        assert anomaly.value == 4_000_000
        assert anomaly.threshold == pytest.approx(3_000_000)
        assert anomaly.diagnosis_kind == "spike"
        assert anomaly.diagnosis_model == "cheap-model"

    def test_spike_critical_above_double_multiplier(
        self, detector: TrendAnomalyDetector, store: MemoryUsageStore, config: DetectionConfig
    ) -> None:
        store.add_usage_events(
            self._history("x@x.com", 1_000_000) + [event("x@x.com", tokens=7_000_000)]
        )

        anomalies = detector.detect(store, config, NOW)

        assert [a.severity for a in anomalies] == [Severity.CRITICAL]

    def test_no_history_is_skipped(
        self, detector: TrendAnomalyDetector, store: MemoryUsageStore, config: DetectionConfig
    ) -> None:
        """Test that a first-day user cannot spike."""
        store.add_usage_events([event("new@x.com", tokens=9_000_000)])

        assert detector.detect(store, config, NOW) == []

    def test_request_spike(
        self, detector: TrendAnomalyDetector, store: MemoryUsageStore, config: DetectionConfig
    ) -> None:
        """Test request counts are evaluated separately from tokens."""
        history = [event("r@x.com", days_ago=d) for d in range(1, 8)]
        today = [event("r@x.com") for _ in range(5)]
        store.add_usage_events(history + today)

        anomalies = detector.detect(store, config, NOW)

        assert len(anomalies) == 1
        assert anomalies[0].metric == AnomalyMetric.REQUESTS
        assert anomalies[0].value == 5
        assert anomalies[0].threshold == pytest.approx(3.0)


class TestTrendDrift:
    """Tests for the sustained drift check."""

    def test_drift_fires_above_p75(self, store: MemoryUsageStore) -> None:
        """Test a user above the pooled P75 on 3 of 4 days."""
        daily = {
            "y@x.com": [300_000, 300_000, 300_000, 100_000],
            "a@x.com": [200_000] * 4,
            "b@x.com": [200_000] * 4,
            "c@x.com": [50_000] * 4,
        }
        store.add_usage_events(
            [
                event(email, days_ago=d, tokens=tokens)
                for email, values in daily.items()
                for d, tokens in enumerate(values)
            ]
        )
        config = DetectionConfig(trends=TrendConfig(drift_days_above_p75=3))

        anomalies = TrendAnomalyDetector().detect(store, config, NOW)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.subject == Subject.user("y@x.com")
        assert anomaly.diagnosis_kind == "drift"
        assert anomaly.metric == AnomalyMetric.TOKENS
        assert anomaly.severity == Severity.WARNING
        assert anomaly.threshold == 200_000
        assert anomaly.value == pytest.approx(250_000)

    def test_no_usage_no_drift(self, store: MemoryUsageStore) -> None:
        assert TrendAnomalyDetector().detect(store, DetectionConfig(), NOW) == []


class TestTrendModelShift:
    """Tests for the model-cost shift check."""

    def _requests(self, email: str, days_ago: int, expensive: int, cheap: int) -> list[UsageEvent]:
        return [event(email, days_ago=days_ago, model=EXPENSIVE) for _ in range(expensive)] + [
            event(email, days_ago=days_ago) for _ in range(cheap)
        ]

    def test_shift_fires(self, store: MemoryUsageStore) -> None:
        """Test 45% today against 10% historically."""
        store.add_usage_events(
            self._requests("z@x.com", 0, expensive=9, cheap=11)
            + self._requests("z@x.com", 2, expensive=2, cheap=18)
        )

        anomalies = TrendAnomalyDetector().detect(store, DetectionConfig(), NOW)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.metric == AnomalyMetric.MODEL_SHIFT
        assert anomaly.diagnosis_kind == "model_shift"
        assert anomaly.diagnosis_model == EXPENSIVE
        assert anomaly.value == pytest.approx(45.0)
        assert anomaly.threshold == pytest.approx(10.0)
        assert anomaly.diagnosis_delta == pytest.approx(35.0)

    def test_low_share_today(self, store: MemoryUsageStore) -> None:
        """Test that a share at or below 30% never fires."""
        store.add_usage_events(
            self._requests("z@x.com", 0, expensive=5, cheap=15)
            + self._requests("z@x.com", 2, expensive=0, cheap=20)
        )

        assert TrendAnomalyDetector().detect(store, DetectionConfig(), NOW) == []

    def test_small_increase(self, store: MemoryUsageStore) -> None:
        """Test that a high but steady share does not fire."""
        store.add_usage_events(
            self._requests("z@x.com", 0, expensive=16, cheap=4)
            + self._requests("z@x.com", 2, expensive=14, cheap=6)
        )

        assert TrendAnomalyDetector().detect(store, DetectionConfig(), NOW) == []

    def test_requires_history(self, store: MemoryUsageStore) -> None:
        store.add_usage_events(self._requests("z@x.com", 0, expensive=10, cheap=0))

        assert TrendAnomalyDetector().detect(store, DetectionConfig(), NOW) == []


class TestDetectorRegistry:
    """Tests for DetectorRegistry."""

    def test_default_order(self) -> None:
        registry = DetectorRegistry()
        assert registry.list_enabled_types() == [
            AnomalyType.THRESHOLD,
            AnomalyType.ZSCORE,
            AnomalyType.TREND,
        ]

    def test_register_type_mismatch(self) -> None:
        registry = DetectorRegistry()
        with pytest.raises(ValueError):
            registry.register_detector(AnomalyType.ZSCORE, ThresholdAnomalyDetector())

    def test_detect_all_combines(self, store: MemoryUsageStore) -> None:
        store.add_usage_events([event("a@x.com") for _ in range(5)])
        config = DetectionConfig(thresholds=ThresholdConfig(max_requests_per_day=2))

        anomalies = DetectorRegistry().detect_all(store, config, NOW)

        assert [a.anomaly_type for a in anomalies] == [AnomalyType.THRESHOLD]
