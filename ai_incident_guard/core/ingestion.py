"""
Request ingestion: validate a logged LLM call, score it once, append it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ai_incident_guard.config.loader import ScoringConfig
from ai_incident_guard.storage.models import RequestRecord
from .errors import NotFoundError, ValidationError
from .risk import RiskScoreInput, get_risk_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogRequestInput:
    """Payload describing one completed (or failed) LLM call."""
    prompt: str
    response: str
    model: str
    latency_ms: float
    tokens: int
    error: Optional[str] = None


def validate_log_request(payload: LogRequestInput) -> None:
    """Check a payload before it is scored.

    Raises:
        ValidationError: On the first malformed field
    """
    for name in ("prompt", "response", "model"):
        value = getattr(payload, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} must be a non-empty string", {"field": name})

    latency = payload.latency_ms
    if isinstance(latency, bool) or not isinstance(latency, (int, float)) or latency < 0:
        raise ValidationError("latency_ms must be a non-negative number", {"field": "latency_ms"})

    tokens = payload.tokens
    if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens < 0:
        raise ValidationError("tokens must be a non-negative integer", {"field": "tokens"})

    if payload.error is not None and not isinstance(payload.error, str):
        raise ValidationError("error must be a string", {"field": "error"})


def log_request(
    project_id: str,
    payload: LogRequestInput,
    request_log,
    projects,
    scoring: ScoringConfig = ScoringConfig(),
) -> RequestRecord:
    """Score and persist one LLM call.

    Args:
        project_id: Project the call belongs to
        payload: The call to record
        request_log: Request log store
        projects: Project directory
        scoring: Risk scoring thresholds

    Returns:
        The stored record, with its id and risk score

    Raises:
        ValidationError: If the payload is malformed
        NotFoundError: If the project doesn't exist
    """
    validate_log_request(payload)
    if not projects.exists(project_id):
        raise NotFoundError("Project", {"project_id": project_id})

    error = payload.error or None
    risk_score = get_risk_score(
        RiskScoreInput(
            prompt=payload.prompt,
            response=payload.response,
            model=payload.model,
            tokens=payload.tokens,
            has_error=error is not None,
        ),
        scoring,
    )

    record = request_log.append(RequestRecord(
        project_id=project_id,
        prompt=payload.prompt,
        response=payload.response,
        model=payload.model,
        latency_ms=float(payload.latency_ms),
        tokens=payload.tokens,
        risk_score=risk_score,
        created_at=datetime.now(),
        error=error,
    ))
    logger.debug(
        "Logged request %s for project %s (model=%s, latency=%.0fms, risk=%d)",
        record.id, project_id, payload.model, record.latency_ms, risk_score,
    )
    return record
