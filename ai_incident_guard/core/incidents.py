"""
Incident lifecycle.

Incidents open when a detector fires (or an external adapter reports one)
and move exactly once, from OPEN to RESOLVED. Resolving an incident that is
already resolved is a caller error and raises ConflictError.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ai_incident_guard.config.loader import DetectionConfig
from ai_incident_guard.storage.models import (
    DetectionResult,
    Incident,
    IncidentDraft,
    IncidentStatus,
    Severity,
    TriggerType,
)
from .errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def derive_severity(result: DetectionResult, config: DetectionConfig = DetectionConfig()) -> Severity:
    """Map the magnitude of a detected anomaly onto a severity.

    - risk score anomaly: HIGH above ``high_risk_score``, else LOW
    - error rate anomaly: HIGH above ``high_error_rate``, else LOW
    - latency anomaly: HIGH above ``high_latency_ms``, else MEDIUM
    """
    metadata = result.metadata
    if result.trigger_type == TriggerType.RISK_SCORE_ANOMALY:
        if metadata.get("max_anomaly", 0) > config.high_risk_score:
            return Severity.HIGH
        return Severity.LOW
    if result.trigger_type == TriggerType.ERROR_RATE_ANOMALY:
        if metadata.get("current_error_rate", 0) > config.high_error_rate:
            return Severity.HIGH
        return Severity.LOW
    if result.trigger_type == TriggerType.LATENCY_THRESHOLD:
        if metadata.get("max_anomaly", 0) > config.high_latency_ms:
            return Severity.HIGH
        return Severity.MEDIUM
    return Severity.LOW


def describe_detection(result: DetectionResult) -> Dict[str, str]:
    """Build the human-readable root cause and recommended fix."""
    m = result.metadata
    count = m.get("anomaly_count", 0)

    if result.trigger_type == TriggerType.LATENCY_THRESHOLD:
        root_cause = (
            f"{count} request(s) with latency more than {m.get('threshold')} standard deviations "
            f"from the mean of {m.get('mean')}ms (std dev {m.get('std_dev')}ms, max {m.get('max_anomaly')}ms)"
        )
        fix = (
            "Check provider status and request size; consider switching to a faster model "
            "or rate limiting the heaviest callers"
        )
    elif result.trigger_type == TriggerType.RISK_SCORE_ANOMALY:
        root_cause = (
            f"{count} request(s) with risk scores more than {m.get('threshold')} standard deviations "
            f"from the mean of {m.get('mean')} (max {m.get('max_anomaly')})"
        )
        fix = (
            "Review the flagged prompts; consider raising the safety threshold or "
            "changing the system prompt"
        )
    elif result.trigger_type == TriggerType.ERROR_RATE_ANOMALY:
        root_cause = (
            f"Error rate rose to {m.get('current_error_rate', 0) * 100:.2f}% from a baseline of "
            f"{m.get('baseline_error_rate', 0) * 100:.2f}% ({count} failed request(s))"
        )
        fix = (
            "Inspect recent error messages; consider switching model or disabling the "
            "failing endpoint until the provider recovers"
        )
    else:
        root_cause = f"{result.trigger_type.value} reported"
        fix = "Investigate the reported condition"

    return {"root_cause": root_cause, "recommended_fix": fix}


def draft_from_detection(
    project_id: str,
    result: DetectionResult,
    config: DetectionConfig = DetectionConfig(),
) -> IncidentDraft:
    """Turn a triggered detection result into an incident draft."""
    if not result.triggered:
        raise ValidationError("Cannot open an incident from an untriggered detection")

    text = describe_detection(result)
    return IncidentDraft(
        project_id=project_id,
        severity=derive_severity(result, config),
        trigger_type=result.trigger_type,
        root_cause=text["root_cause"],
        recommended_fix=text["recommended_fix"],
        affected_requests=int(result.metadata.get("anomaly_count", 0)),
        metadata=dict(result.metadata),
    )


def get_incident(project_id: str, incident_id: int, incidents) -> Incident:
    """Load an incident, checking it belongs to the project.

    Raises:
        NotFoundError: If the incident doesn't exist or belongs elsewhere
    """
    incident = incidents.get(incident_id)
    if incident is None or incident.project_id != project_id:
        logger.warning("Incident %s not found for project %s", incident_id, project_id)
        raise NotFoundError("Incident", {"incident_id": incident_id})
    return incident


def list_incidents(
    project_id: str,
    incidents,
    status: Optional[Union[str, IncidentStatus]] = None,
    trigger_type: Optional[Union[str, TriggerType]] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Incident]:
    """List a project's incidents, newest first.

    Raises:
        ValidationError: If a filter or paging value is invalid
    """
    if limit < 1 or limit > 100:
        raise ValidationError("limit must be between 1 and 100", {"field": "limit"})
    if offset < 0:
        raise ValidationError("offset cannot be negative", {"field": "offset"})

    return incidents.list_by_project(
        project_id,
        status=_coerce_enum(IncidentStatus, status, "status"),
        trigger_type=_coerce_enum(TriggerType, trigger_type, "trigger_type"),
        limit=limit,
        offset=offset,
    )


def resolve_incident(project_id: str, incident_id: int, incidents) -> Incident:
    """Resolve an open incident.

    Args:
        project_id: Already-authorized project
        incident_id: Incident to resolve
        incidents: Incident store

    Returns:
        The resolved incident with ``resolved_at`` set

    Raises:
        NotFoundError: If the incident doesn't exist or belongs elsewhere
        ConflictError: If the incident is already resolved
    """
    incident = get_incident(project_id, incident_id, incidents)
    if not incident.is_open:
        raise ConflictError(
            f"Incident {incident_id} is already resolved",
            {"incident_id": incident_id, "resolved_at": str(incident.resolved_at)},
        )

    if not incidents.resolve(incident_id, datetime.now()):
        # Lost a race with another resolver
        raise ConflictError(f"Incident {incident_id} is already resolved", {"incident_id": incident_id})

    logger.info("Incident %s resolved for project %s", incident_id, project_id)
    return incidents.get(incident_id)


def report_incident(
    project_id: str,
    trigger_type: Union[str, TriggerType],
    severity: Union[str, Severity],
    root_cause: str,
    recommended_fix: str,
    incidents,
    projects,
    affected_requests: int = 0,
    metadata: Optional[Dict[str, Any]] = None,
) -> Incident:
    """Open an incident on behalf of an external adapter or an operator.

    Raises:
        ValidationError: If any field is malformed
        NotFoundError: If the project doesn't exist
        ConflictError: If an incident with the same trigger type is open
    """
    trigger = _coerce_enum(TriggerType, trigger_type, "trigger_type")
    level = _coerce_enum(Severity, severity, "severity")
    if trigger is None or level is None:
        raise ValidationError("trigger_type and severity are required")
    if not isinstance(root_cause, str) or not root_cause.strip():
        raise ValidationError("root_cause must be a non-empty string", {"field": "root_cause"})
    if not isinstance(recommended_fix, str) or not recommended_fix.strip():
        raise ValidationError("recommended_fix must be a non-empty string", {"field": "recommended_fix"})
    if isinstance(affected_requests, bool) or not isinstance(affected_requests, int) or affected_requests < 0:
        raise ValidationError("affected_requests must be a non-negative integer", {"field": "affected_requests"})
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be a dictionary", {"field": "metadata"})

    if not projects.exists(project_id):
        raise NotFoundError("Project", {"project_id": project_id})

    draft = IncidentDraft(
        project_id=project_id,
        severity=level,
        trigger_type=trigger,
        root_cause=root_cause.strip(),
        recommended_fix=recommended_fix.strip(),
        affected_requests=affected_requests,
        metadata=metadata or {},
    )
    incident, created = incidents.create_if_no_open(draft)
    if not created:
        raise ConflictError(
            f"An open {trigger.value} incident already exists for project {project_id}",
            {"incident_id": incident.id},
        )

    logger.info(
        "Incident %s reported for project %s (%s, %s)",
        incident.id, project_id, trigger.value, level.value,
    )
    return incident


def _coerce_enum(enum_type, value, field_name: str):
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(str(value).strip().lower())
    except ValueError:
        valid = [member.value for member in enum_type]
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Must be one of: {valid}",
            {"field": field_name},
        )
