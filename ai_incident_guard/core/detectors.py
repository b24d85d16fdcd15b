"""
Anomaly detection over a project's recent request history.

Each detector pulls the newest requests through the request log store and
returns a DetectionResult, or None when there is nothing to report.
Detection failures are non-fatal: they are logged and reported as None so a
batch run over many projects keeps going.
"""

import logging
from typing import List, Optional

from ai_incident_guard.config.loader import DetectionConfig
from ai_incident_guard.storage.models import DetectionResult, TriggerType
from .statistics import calculate_stats, detect_3sigma_anomalies

logger = logging.getLogger(__name__)


def _detect_3sigma(
    project_id: str,
    values: List[float],
    trigger_type: TriggerType,
    config: DetectionConfig,
    precision: int,
) -> Optional[DetectionResult]:
    """Shared body of the latency and risk-score detectors."""
    anomaly_indices = detect_3sigma_anomalies(values, config.sigma_threshold)
    if not anomaly_indices:
        return None

    stats = calculate_stats(values)
    max_anomaly = max(values[i] for i in anomaly_indices)
    metadata = {
        "anomaly_count": len(anomaly_indices),
        "mean": round(stats.mean, precision),
        "std_dev": round(stats.std_dev, precision),
        "max_anomaly": max_anomaly,
        "threshold": config.sigma_threshold,
        "sample_size": len(values),
    }

    logger.warning(
        "%s detected for project %s: %d anomalies (mean=%s, std_dev=%s, max=%s)",
        trigger_type.value, project_id, len(anomaly_indices),
        metadata["mean"], metadata["std_dev"], max_anomaly,
    )
    return DetectionResult(triggered=True, trigger_type=trigger_type, metadata=metadata)


def detect_latency_anomalies(
    project_id: str,
    request_log,
    config: DetectionConfig = DetectionConfig(),
) -> Optional[DetectionResult]:
    """Flag latency outliers with the 3-sigma rule.

    Args:
        project_id: Project to inspect
        request_log: Store exposing ``recent(project_id, limit)``
        config: Sample sizes and thresholds

    Returns:
        A triggered ``latency_threshold`` result, or None when there are
        fewer than ``min_samples`` requests, no outliers, or the check failed
    """
    try:
        requests = request_log.recent(project_id, config.sample_size)
        if len(requests) < config.min_samples:
            return None

        latencies = [float(r.latency_ms) for r in requests]
        return _detect_3sigma(project_id, latencies, TriggerType.LATENCY_THRESHOLD, config, precision=0)
    except Exception:
        logger.exception("Error detecting latency anomalies for project %s", project_id)
        return None


def detect_risk_score_anomalies(
    project_id: str,
    request_log,
    config: DetectionConfig = DetectionConfig(),
) -> Optional[DetectionResult]:
    """Flag risk score outliers with the 3-sigma rule.

    Same contract as ``detect_latency_anomalies`` with trigger type
    ``risk_score_anomaly``.
    """
    try:
        requests = request_log.recent(project_id, config.sample_size)
        if len(requests) < config.min_samples:
            return None

        scores = [float(r.risk_score) for r in requests]
        return _detect_3sigma(project_id, scores, TriggerType.RISK_SCORE_ANOMALY, config, precision=2)
    except Exception:
        logger.exception("Error detecting risk score anomalies for project %s", project_id)
        return None


def detect_error_rate_anomalies(
    project_id: str,
    request_log,
    config: DetectionConfig = DetectionConfig(),
) -> Optional[DetectionResult]:
    """Compare the error rate of the latest batch against the prior window.

    The newest ``error_rate_window`` requests form the current batch and the
    next ``error_rate_window`` older ones the baseline. Both need at least
    ``min_samples`` requests. Only increases count: the detector triggers
    when ``current - baseline > error_rate_delta``.

    Returns:
        A triggered ``error_rate_anomaly`` result, or None
    """
    try:
        window = config.error_rate_window
        requests = request_log.recent(project_id, window * 2)
        current = requests[:window]
        baseline = requests[window:]
        if len(current) < config.min_samples or len(baseline) < config.min_samples:
            return None

        current_errors = sum(1 for r in current if r.has_error)
        baseline_errors = sum(1 for r in baseline if r.has_error)
        current_rate = current_errors / len(current)
        baseline_rate = baseline_errors / len(baseline)
        delta = current_rate - baseline_rate

        # Fixed precision so 0.4 - 0.3 compares equal to a 0.1 threshold
        if round(delta, 9) <= config.error_rate_delta:
            return None

        metadata = {
            "anomaly_count": current_errors,
            "current_error_rate": round(current_rate, 4),
            "baseline_error_rate": round(baseline_rate, 4),
            "delta": round(delta, 4),
            "threshold": config.error_rate_delta,
            "sample_size": len(current),
        }
        logger.warning(
            "error_rate_anomaly detected for project %s: current=%.2f%% baseline=%.2f%%",
            project_id, current_rate * 100, baseline_rate * 100,
        )
        return DetectionResult(
            triggered=True,
            trigger_type=TriggerType.ERROR_RATE_ANOMALY,
            metadata=metadata,
        )
    except Exception:
        logger.exception("Error detecting error rate anomalies for project %s", project_id)
        return None


DETECTORS = (
    detect_latency_anomalies,
    detect_risk_score_anomalies,
    detect_error_rate_anomalies,
)
