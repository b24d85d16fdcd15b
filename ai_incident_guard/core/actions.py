"""
Remediation action types and their parameter shapes.

Each action type carries its own parameter dataclass. Parameters are parsed
and validated once, when the action is created, and never change afterwards.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .errors import ValidationError

MAX_SYSTEM_PROMPT_LENGTH = 5000


class ActionType(Enum):
    """Closed set of remediation actions an operator can take."""
    SWITCH_MODEL = "switch_model"
    INCREASE_SAFETY_THRESHOLD = "increase_safety_threshold"
    DISABLE_ENDPOINT = "disable_endpoint"
    RESET_SETTINGS = "reset_settings"
    CHANGE_SYSTEM_PROMPT = "change_system_prompt"
    RATE_LIMIT_USER = "rate_limit_user"


@dataclass(frozen=True)
class SwitchModelParams:
    """Force every future call of the project onto another model."""
    new_model: str
    duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class SafetyThresholdParams:
    """Reject calls whose pre-call risk score exceeds the new threshold."""
    new_threshold: int
    duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class DisableEndpointParams:
    """Reject every call made through the named endpoint."""
    endpoint: str
    duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class ResetSettingsParams:
    """Clear all active constraints, returning the project to its defaults."""
    reason: str


@dataclass(frozen=True)
class SystemPromptParams:
    """Replace the system prompt sent with every call."""
    new_prompt: str
    duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class RateLimitParams:
    """Cap requests per minute, for one user or (user_id=None) the whole project."""
    new_limit: int
    user_id: Optional[str] = None
    duration_minutes: Optional[int] = None


ActionParameters = Union[
    SwitchModelParams,
    SafetyThresholdParams,
    DisableEndpointParams,
    ResetSettingsParams,
    SystemPromptParams,
    RateLimitParams,
]

_PARAMETER_TYPES = {
    ActionType.SWITCH_MODEL: SwitchModelParams,
    ActionType.INCREASE_SAFETY_THRESHOLD: SafetyThresholdParams,
    ActionType.DISABLE_ENDPOINT: DisableEndpointParams,
    ActionType.RESET_SETTINGS: ResetSettingsParams,
    ActionType.CHANGE_SYSTEM_PROMPT: SystemPromptParams,
    ActionType.RATE_LIMIT_USER: RateLimitParams,
}

_REQUIRED_KEYS = {
    ActionType.SWITCH_MODEL: {"new_model"},
    ActionType.INCREASE_SAFETY_THRESHOLD: {"new_threshold"},
    ActionType.DISABLE_ENDPOINT: {"endpoint"},
    ActionType.RESET_SETTINGS: {"reason"},
    ActionType.CHANGE_SYSTEM_PROMPT: {"new_prompt"},
    ActionType.RATE_LIMIT_USER: {"new_limit"},
}


def parse_action_type(value: Union[str, ActionType]) -> ActionType:
    """Convert a raw action type into the enum.

    Raises:
        ValidationError: If the value is not one of the known action types
    """
    if isinstance(value, ActionType):
        return value
    if not isinstance(value, str):
        raise ValidationError("Action type must be a string", {"field": "action_type"})
    try:
        return ActionType(value.strip().lower())
    except ValueError:
        valid_types = [t.value for t in ActionType]
        raise ValidationError(
            f"Invalid action type '{value}'. Must be one of: {valid_types}",
            {"field": "action_type", "valid_types": valid_types},
        )


def parse_parameters(action_type: ActionType, parameters: Mapping[str, Any]) -> ActionParameters:
    """Validate a raw parameter mapping and build the typed parameters.

    Args:
        action_type: Type of the action the parameters belong to
        parameters: Raw, non-empty parameter mapping

    Returns:
        The parameter dataclass matching ``action_type``

    Raises:
        ValidationError: If the mapping is empty, has unknown keys, misses a
            required key or holds a value of the wrong shape
    """
    if not isinstance(parameters, Mapping):
        raise ValidationError("Parameters must be a mapping", {"field": "parameters"})
    if not parameters:
        raise ValidationError("Parameters must not be empty", {"field": "parameters"})

    param_type = _PARAMETER_TYPES[action_type]
    allowed = set(param_type.__dataclass_fields__)
    unknown = set(parameters) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown parameters for {action_type.value}: {sorted(unknown)}",
            {"field": "parameters", "allowed": sorted(allowed)},
        )
    missing = _REQUIRED_KEYS[action_type] - set(parameters)
    if missing:
        raise ValidationError(
            f"{action_type.value} requires {', '.join(sorted(missing))} parameter",
            {"field": f"parameters.{sorted(missing)[0]}"},
        )

    duration = parameters.get("duration_minutes")
    if duration is not None and (not _is_int(duration) or duration <= 0):
        raise ValidationError(
            "duration_minutes must be a positive integer",
            {"field": "parameters.duration_minutes"},
        )

    if action_type == ActionType.SWITCH_MODEL:
        _require_text(parameters, "new_model")
        return SwitchModelParams(new_model=parameters["new_model"].strip(), duration_minutes=duration)

    if action_type == ActionType.INCREASE_SAFETY_THRESHOLD:
        threshold = parameters["new_threshold"]
        if not _is_int(threshold) or not 0 <= threshold <= 100:
            raise ValidationError(
                "increase_safety_threshold requires new_threshold parameter (0-100)",
                {"field": "parameters.new_threshold"},
            )
        return SafetyThresholdParams(new_threshold=threshold, duration_minutes=duration)

    if action_type == ActionType.DISABLE_ENDPOINT:
        _require_text(parameters, "endpoint")
        return DisableEndpointParams(endpoint=parameters["endpoint"].strip(), duration_minutes=duration)

    if action_type == ActionType.RESET_SETTINGS:
        _require_text(parameters, "reason")
        return ResetSettingsParams(reason=parameters["reason"].strip())

    if action_type == ActionType.CHANGE_SYSTEM_PROMPT:
        _require_text(parameters, "new_prompt")
        if len(parameters["new_prompt"]) > MAX_SYSTEM_PROMPT_LENGTH:
            raise ValidationError(
                f"new_prompt must be at most {MAX_SYSTEM_PROMPT_LENGTH} characters",
                {"field": "parameters.new_prompt"},
            )
        return SystemPromptParams(new_prompt=parameters["new_prompt"], duration_minutes=duration)

    # RATE_LIMIT_USER
    limit = parameters["new_limit"]
    if not _is_int(limit) or limit <= 0:
        raise ValidationError(
            "rate_limit_user requires new_limit parameter (> 0)",
            {"field": "parameters.new_limit"},
        )
    user_id = parameters.get("user_id")
    if user_id is not None:
        _require_text(parameters, "user_id")
        user_id = user_id.strip()
    return RateLimitParams(new_limit=limit, user_id=user_id, duration_minutes=duration)


def parameters_to_dict(params: ActionParameters) -> Dict[str, Any]:
    """Serialize typed parameters, leaving out unset optional fields."""
    return {key: value for key, value in asdict(params).items() if value is not None}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_text(parameters: Mapping[str, Any], key: str) -> None:
    value = parameters.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{key} must be a non-empty string",
            {"field": f"parameters.{key}"},
        )
