"""
Remediation actions and the constraints they feed back into request handling.

Lifecycle of an action: created pending, applied exactly once. Applying an
action writes a project constraint in the same transaction that flips the
action to executed. Request handling then reads the project's effective
settings and enforces them before a model is called.

Enforcement Order:
1. Disabled endpoint - the call never reaches a model
2. Safety threshold - the prompt's pre-call risk score must not exceed it
3. Rate limit - per user when a user limit exists, else per project
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from ai_incident_guard.config.loader import AppConfig, ScoringConfig
from ai_incident_guard.storage.models import (
    ConstraintKind,
    Incident,
    ProjectSettings,
    RemediationAction,
)
from .actions import (
    ActionType,
    DisableEndpointParams,
    RateLimitParams,
    SafetyThresholdParams,
    SwitchModelParams,
    SystemPromptParams,
    parse_action_type,
    parse_parameters,
)
from .errors import ConflictError, ConstraintViolation, InternalError, NotFoundError, ValidationError
from .rate_limit import SlidingWindowRateLimiter
from .risk import RiskScoreInput, get_risk_score

logger = logging.getLogger(__name__)


def _load_incident(project_id: str, incident_id: int, incidents) -> Incident:
    incident = incidents.get(incident_id)
    if incident is None or incident.project_id != project_id:
        raise NotFoundError("Incident", {"incident_id": incident_id})
    return incident


def _load_action(project_id: str, incident_id: int, action_id: int, incidents, remediations) -> RemediationAction:
    _load_incident(project_id, incident_id, incidents)
    action = remediations.get(action_id)
    if action is None or action.incident_id != incident_id:
        raise NotFoundError("Remediation action", {"action_id": action_id})
    return action


def create_remediation_action(
    project_id: str,
    incident_id: int,
    action_type: Union[str, ActionType],
    parameters: Mapping[str, Any],
    incidents,
    remediations,
) -> RemediationAction:
    """Create a pending remediation action for an incident.

    Args:
        project_id: Already-authorized project
        incident_id: Incident the action remedies
        action_type: One of the ``ActionType`` values
        parameters: Raw parameters, validated against the action type
        incidents: Incident store
        remediations: Remediation store

    Returns:
        The new, not yet executed action

    Raises:
        ValidationError: If the action type or parameters are invalid
        NotFoundError: If the incident doesn't belong to the project
    """
    kind = parse_action_type(action_type)
    params = parse_parameters(kind, parameters)
    _load_incident(project_id, incident_id, incidents)

    action = remediations.create_action(incident_id, kind, params)
    logger.info(
        "Remediation action %s (%s) created for incident %s",
        action.id, kind.value, incident_id,
    )
    return action


def apply_remediation_action(
    project_id: str,
    incident_id: int,
    action_id: int,
    incidents,
    remediations,
    settings_store,
) -> RemediationAction:
    """Execute a pending action and write its constraint.

    The executed flag and the constraint commit together. Of two concurrent
    callers exactly one succeeds; the other gets ConflictError.

    Raises:
        NotFoundError: If the incident or action chain doesn't match
        ConflictError: If the action was already executed
        InternalError: If the store fails while applying
    """
    action = _load_action(project_id, incident_id, action_id, incidents, remediations)
    if action.executed:
        raise ConflictError(f"Remediation action {action_id} already executed", {"action_id": action_id})

    executed_at = datetime.now()

    def side_effect(conn):
        _write_constraint(project_id, action, executed_at, settings_store, conn)

    try:
        applied = remediations.mark_executed(action_id, executed_at, side_effect)
    except Exception as e:
        logger.exception("Failed to apply remediation action %s", action_id)
        raise InternalError(f"Failed to apply remediation action {action_id}", {"action_id": action_id}) from e

    if not applied:
        raise ConflictError(f"Remediation action {action_id} already executed", {"action_id": action_id})

    logger.info(
        "Remediation action %s (%s) applied to project %s",
        action_id, action.action_type.value, project_id,
    )
    return remediations.get(action_id)


def _write_constraint(project_id: str, action: RemediationAction, now: datetime, settings_store, conn) -> None:
    params = action.parameters
    if action.action_type == ActionType.RESET_SETTINGS:
        cleared = settings_store.reset_constraints(project_id, now, conn=conn)
        logger.info("Cleared %d constraint(s) for project %s: %s", cleared, project_id, params.reason)
        return

    if isinstance(params, SwitchModelParams):
        kind, value = ConstraintKind.FORCED_MODEL, {"model": params.new_model}
    elif isinstance(params, SafetyThresholdParams):
        kind, value = ConstraintKind.SAFETY_THRESHOLD, {"threshold": params.new_threshold}
    elif isinstance(params, DisableEndpointParams):
        kind, value = ConstraintKind.DISABLED_ENDPOINT, {"endpoint": params.endpoint}
    elif isinstance(params, SystemPromptParams):
        kind, value = ConstraintKind.SYSTEM_PROMPT, {"prompt": params.new_prompt}
    elif isinstance(params, RateLimitParams):
        kind, value = ConstraintKind.RATE_LIMIT, {"limit": params.new_limit, "user_id": params.user_id}
    else:
        raise ValidationError(f"Unsupported action type {action.action_type.value}")

    expires_at = None
    if params.duration_minutes is not None:
        expires_at = now + timedelta(minutes=params.duration_minutes)

    settings_store.apply_constraint(
        project_id, kind, value, action_id=action.id, expires_at=expires_at, conn=conn,
    )


def get_remediation_action(project_id: str, incident_id: int, action_id: int, incidents, remediations) -> RemediationAction:
    return _load_action(project_id, incident_id, action_id, incidents, remediations)


def list_remediation_actions(
    project_id: str,
    incident_id: int,
    incidents,
    remediations,
    limit: int = 50,
    offset: int = 0,
) -> List[RemediationAction]:
    """List an incident's actions, newest first."""
    if limit < 1 or limit > 100:
        raise ValidationError("limit must be between 1 and 100", {"field": "limit"})
    if offset < 0:
        raise ValidationError("offset cannot be negative", {"field": "offset"})
    _load_incident(project_id, incident_id, incidents)
    return remediations.list_by_incident(incident_id, limit, offset)


def delete_remediation_action(project_id: str, incident_id: int, action_id: int, incidents, remediations) -> None:
    """Delete a pending action.

    Raises:
        NotFoundError: If the chain doesn't match
        ConflictError: If the action was already executed
    """
    action = _load_action(project_id, incident_id, action_id, incidents, remediations)
    if action.executed or not remediations.delete(action_id):
        raise ConflictError(
            f"Remediation action {action_id} was executed and cannot be deleted",
            {"action_id": action_id},
        )
    logger.info("Remediation action %s deleted", action_id)


def get_project_settings(
    project_id: str,
    settings_store,
    config: AppConfig = AppConfig.default(),
    now: Optional[datetime] = None,
) -> ProjectSettings:
    """Overlay a project's active constraints onto the configured defaults.

    Constraints apply oldest first, so the newest constraint of a kind wins.
    Disabled endpoints accumulate.
    """
    defaults = config.settings_defaults
    model = defaults.preferred_model
    forced = False
    threshold = defaults.safety_threshold
    rate_limit = defaults.rate_limit
    system_prompt = defaults.system_prompt
    disabled = set()
    user_limits: Dict[str, int] = {}

    for constraint in settings_store.active_constraints(project_id, now):
        value = constraint.value
        if constraint.kind == ConstraintKind.FORCED_MODEL:
            model, forced = value["model"], True
        elif constraint.kind == ConstraintKind.SAFETY_THRESHOLD:
            threshold = value["threshold"]
        elif constraint.kind == ConstraintKind.DISABLED_ENDPOINT:
            disabled.add(value["endpoint"])
        elif constraint.kind == ConstraintKind.SYSTEM_PROMPT:
            system_prompt = value["prompt"]
        elif constraint.kind == ConstraintKind.RATE_LIMIT:
            if value.get("user_id"):
                user_limits[value["user_id"]] = value["limit"]
            else:
                rate_limit = value["limit"]

    return ProjectSettings(
        project_id=project_id,
        preferred_model=model,
        safety_threshold=threshold,
        rate_limit=rate_limit,
        system_prompt=system_prompt,
        disabled_endpoints=frozenset(disabled),
        user_rate_limits=user_limits,
        forced_model=forced,
    )


@dataclass(frozen=True)
class RequestContext:
    """An outgoing LLM call before constraints are applied."""
    prompt: str
    model: str
    endpoint: str = "chat"
    user_id: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class EnforcedRequest:
    """The call as it should actually be made."""
    prompt: str
    model: str
    endpoint: str
    system_prompt: Optional[str]
    risk_score: int
    user_id: Optional[str] = None


def enforce_constraints(
    settings: ProjectSettings,
    request: RequestContext,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    scoring: ScoringConfig = ScoringConfig(),
) -> EnforcedRequest:
    """Apply a project's effective settings to an outgoing call.

    A forced model replaces the requested one and a constrained system
    prompt replaces the caller's. Rate limiting is skipped when no limiter
    is given.

    Raises:
        ConstraintViolation: If the endpoint is disabled, the prompt's
            pre-call risk score exceeds the safety threshold, or the rate
            limit is exhausted
    """
    if request.endpoint in settings.disabled_endpoints:
        raise ConstraintViolation(
            f"Endpoint '{request.endpoint}' is disabled for project {settings.project_id}",
            ConstraintKind.DISABLED_ENDPOINT.value,
            {"endpoint": request.endpoint},
        )

    model = settings.preferred_model if settings.forced_model else request.model
    risk_score = get_risk_score(RiskScoreInput(prompt=request.prompt, response="", model=model), scoring)
    if risk_score > settings.safety_threshold:
        raise ConstraintViolation(
            f"Prompt risk score {risk_score} exceeds safety threshold {settings.safety_threshold}",
            ConstraintKind.SAFETY_THRESHOLD.value,
            {"risk_score": risk_score, "threshold": settings.safety_threshold},
        )

    if rate_limiter is not None:
        identifier = f"{settings.project_id}:{request.user_id or '*'}"
        limit = settings.rate_limit_for(request.user_id)
        decision = rate_limiter.hit(identifier, limit)
        if not decision.allowed:
            raise ConstraintViolation(
                f"Rate limit of {limit} requests/minute exceeded",
                ConstraintKind.RATE_LIMIT.value,
                {"limit": limit, "retry_after_seconds": decision.retry_after_seconds},
            )

    system_prompt = settings.system_prompt if settings.system_prompt is not None else request.system_prompt
    if model != request.model:
        logger.info("Model %s overridden to %s for project %s", request.model, model, settings.project_id)

    return EnforcedRequest(
        prompt=request.prompt,
        model=model,
        endpoint=request.endpoint,
        system_prompt=system_prompt,
        risk_score=risk_score,
        user_id=request.user_id,
    )
