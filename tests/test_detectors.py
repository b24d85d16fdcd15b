"""
Unit tests for the anomaly detectors.

Detectors read through a request log store; these tests use an in-memory
stand-in so each case controls the exact history.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from ai_incident_guard.config.loader import DetectionConfig
from ai_incident_guard.core.detectors import (
    detect_error_rate_anomalies,
    detect_latency_anomalies,
    detect_risk_score_anomalies,
)
from ai_incident_guard.storage.models import RequestRecord, TriggerType


class FakeRequestLog:
    """Request log holding records oldest first."""

    def __init__(self, records: List[RequestRecord]):
        self.records = records
        self.calls = []

    def recent(self, project_id: str, limit: int = 100) -> List[RequestRecord]:
        self.calls.append((project_id, limit))
        matching = [r for r in self.records if r.project_id == project_id]
        return list(reversed(matching))[:limit]


class BrokenRequestLog:
    def recent(self, project_id, limit=100):
        raise RuntimeError("database is locked")


def _records(
    latencies: List[float],
    risk_scores: Optional[List[int]] = None,
    errors: Optional[List[bool]] = None,
    project_id: str = "proj",
) -> List[RequestRecord]:
    start = datetime(2024, 1, 1, 12, 0, 0)
    risk_scores = risk_scores or [0] * len(latencies)
    errors = errors or [False] * len(latencies)
    return [
        RequestRecord(
            id=i + 1,
            project_id=project_id,
            prompt="p",
            response="r",
            model="gpt-4",
            latency_ms=latency,
            tokens=10,
            risk_score=risk,
            created_at=start + timedelta(seconds=i),
            error="boom" if failed else None,
        )
        for i, (latency, risk, failed) in enumerate(zip(latencies, risk_scores, errors))
    ]


class TestLatencyDetector:
    """Test latency outlier detection."""

    def test_spike_triggers(self):
        """One slow call among steady ones is reported with its stats."""
        log = FakeRequestLog(_records([100.0] * 10 + [5000.0]))

        result = detect_latency_anomalies("proj", log)

        assert result is not None
        assert result.triggered
        assert result.trigger_type == TriggerType.LATENCY_THRESHOLD
        assert result.metadata["anomaly_count"] == 1
        assert result.metadata["max_anomaly"] == 5000.0
        assert result.metadata["mean"] == 545.0
        assert result.metadata["std_dev"] == 1409.0
        assert result.metadata["threshold"] == 3.0
        assert result.metadata["sample_size"] == 11

    def test_steady_latency_returns_none(self):
        log = FakeRequestLog(_records([100.0, 105.0, 98.0, 102.0, 101.0, 99.0]))
        assert detect_latency_anomalies("proj", log) is None

    def test_too_few_samples_returns_none(self):
        """Below min_samples nothing is evaluated."""
        log = FakeRequestLog(_records([100.0, 100.0, 100.0, 9000.0]))
        assert detect_latency_anomalies("proj", log) is None

    def test_reads_configured_sample_size(self):
        log = FakeRequestLog(_records([100.0] * 10))
        detect_latency_anomalies("proj", log, DetectionConfig(sample_size=25))
        assert log.calls == [("proj", 25)]

    def test_only_newest_samples_considered(self):
        """An old spike outside the sample window is ignored."""
        log = FakeRequestLog(_records([5000.0] + [100.0] * 10))
        config = DetectionConfig(sample_size=10, min_samples=5)
        assert detect_latency_anomalies("proj", log, config) is None

    def test_store_failure_returns_none(self):
        assert detect_latency_anomalies("proj", BrokenRequestLog()) is None


class TestRiskScoreDetector:
    """Test risk score outlier detection."""

    def test_risky_outlier_triggers(self):
        log = FakeRequestLog(_records([100.0] * 11, risk_scores=[5] * 10 + [95]))

        result = detect_risk_score_anomalies("proj", log)

        assert result is not None
        assert result.trigger_type == TriggerType.RISK_SCORE_ANOMALY
        assert result.metadata["max_anomaly"] == 95
        assert result.metadata["anomaly_count"] == 1

    def test_uniform_scores_return_none(self):
        log = FakeRequestLog(_records([100.0] * 20, risk_scores=[40] * 20))
        assert detect_risk_score_anomalies("proj", log) is None

    def test_store_failure_returns_none(self):
        assert detect_risk_score_anomalies("proj", BrokenRequestLog()) is None


class TestErrorRateDetector:
    """Test error rate increase detection."""

    def setup_method(self):
        self.config = DetectionConfig(sample_size=20, min_samples=5, error_rate_window=10)

    def test_error_spike_triggers(self):
        """Half the latest batch failing against a clean baseline."""
        errors = [False] * 10 + [True, False] * 5
        log = FakeRequestLog(_records([100.0] * 20, errors=errors))

        result = detect_error_rate_anomalies("proj", log, self.config)

        assert result is not None
        assert result.trigger_type == TriggerType.ERROR_RATE_ANOMALY
        assert result.metadata["current_error_rate"] == 0.5
        assert result.metadata["baseline_error_rate"] == 0.0
        assert result.metadata["delta"] == 0.5
        assert result.metadata["anomaly_count"] == 5
        assert result.metadata["sample_size"] == 10
        assert log.calls == [("proj", 20)]

    def test_small_increase_returns_none(self):
        """One extra failure in ten is exactly the delta, not above it."""
        errors = [True] + [False] * 9 + [True, True] + [False] * 8
        log = FakeRequestLog(_records([100.0] * 20, errors=errors))
        assert detect_error_rate_anomalies("proj", log, self.config) is None

    @pytest.mark.parametrize("baseline_errors", [0, 1, 2, 3, 5, 7, 8])
    def test_rise_of_exactly_delta_returns_none(self, baseline_errors):
        """One more failure in ten never triggers, whatever the baseline rate."""
        baseline = [True] * baseline_errors + [False] * (10 - baseline_errors)
        current = [True] * (baseline_errors + 1) + [False] * (9 - baseline_errors)
        log = FakeRequestLog(_records([100.0] * 20, errors=baseline + current))
        assert detect_error_rate_anomalies("proj", log, self.config) is None

    @pytest.mark.parametrize("baseline_errors", [0, 3, 7])
    def test_rise_just_over_delta_triggers(self, baseline_errors):
        baseline = [True] * baseline_errors + [False] * (10 - baseline_errors)
        current = [True] * (baseline_errors + 2) + [False] * (8 - baseline_errors)
        log = FakeRequestLog(_records([100.0] * 20, errors=baseline + current))

        result = detect_error_rate_anomalies("proj", log, self.config)

        assert result is not None
        assert result.metadata["delta"] == 0.2

    def test_decrease_returns_none(self):
        errors = [True] * 10 + [False] * 10
        log = FakeRequestLog(_records([100.0] * 20, errors=errors))
        assert detect_error_rate_anomalies("proj", log, self.config) is None

    def test_missing_baseline_returns_none(self):
        """A project with no prior window has nothing to compare against."""
        log = FakeRequestLog(_records([100.0] * 12, errors=[True] * 12))
        assert detect_error_rate_anomalies("proj", log, self.config) is None

    def test_store_failure_returns_none(self):
        assert detect_error_rate_anomalies("proj", BrokenRequestLog(), self.config) is None


class TestInsufficientData:
    """Every detector returns None for fewer than min_samples requests."""

    def test_four_requests(self):
        log = FakeRequestLog(_records([100.0, 100.0, 9000.0, 100.0], risk_scores=[0, 0, 99, 0],
                                      errors=[True, True, True, True]))
        config = DetectionConfig(min_samples=5, error_rate_window=5)

        assert detect_latency_anomalies("proj", log, config) is None
        assert detect_risk_score_anomalies("proj", log, config) is None
        assert detect_error_rate_anomalies("proj", log, config) is None
