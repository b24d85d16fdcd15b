"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from ai_incident_guard.core.actions import ActionParameters, ActionType


class TriggerType(Enum):
    """What opened an incident."""
    LATENCY_THRESHOLD = "latency_threshold"
    RISK_SCORE_ANOMALY = "risk_score_anomaly"
    ERROR_RATE_ANOMALY = "error_rate_anomaly"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IncidentStatus(Enum):
    """Incidents only ever move from OPEN to RESOLVED."""
    OPEN = "open"
    RESOLVED = "resolved"


class ConstraintKind(Enum):
    """Project-scoped overrides written by applied remediation actions."""
    FORCED_MODEL = "forced_model"
    SAFETY_THRESHOLD = "safety_threshold"
    DISABLED_ENDPOINT = "disabled_endpoint"
    SYSTEM_PROMPT = "system_prompt"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class RequestRecord:
    """Immutable record of one logged LLM call.

    The risk score is computed once, when the record is written, and is
    never recomputed afterwards. Records are append-only.
    """
    project_id: str
    prompt: str
    response: str
    model: str
    latency_ms: float
    tokens: int
    risk_score: int
    created_at: datetime
    error: Optional[str] = None
    id: Optional[int] = None

    @property
    def has_error(self) -> bool:
        return bool(self.error)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detector pass. Never persisted."""
    triggered: bool
    trigger_type: TriggerType
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Incident:
    """A recorded abnormal condition for a project."""
    id: int
    project_id: str
    severity: Severity
    trigger_type: TriggerType
    status: IncidentStatus
    root_cause: str
    recommended_fix: str
    affected_requests: int
    metadata: Dict[str, Any]
    created_at: datetime
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == IncidentStatus.OPEN


@dataclass(frozen=True)
class IncidentDraft:
    """Data needed to open a new incident."""
    project_id: str
    severity: Severity
    trigger_type: TriggerType
    root_cause: str
    recommended_fix: str
    affected_requests: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemediationAction:
    """A proposed or applied corrective change tied to an incident."""
    id: int
    incident_id: int
    action_type: ActionType
    parameters: ActionParameters
    executed: bool
    metadata: Dict[str, Any]
    created_at: datetime
    executed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Constraint:
    """Durable side effect of an applied remediation action."""
    id: int
    project_id: str
    kind: ConstraintKind
    value: Dict[str, Any]
    created_at: datetime
    action_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    cleared_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        if self.cleared_at is not None:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class ProjectSettings:
    """Effective request-handling settings for a project.

    Configured defaults overlaid by the project's active constraints.
    """
    project_id: str
    preferred_model: str
    safety_threshold: int
    rate_limit: int
    system_prompt: Optional[str] = None
    disabled_endpoints: FrozenSet[str] = frozenset()
    user_rate_limits: Dict[str, int] = field(default_factory=dict)
    forced_model: bool = False

    def rate_limit_for(self, user_id: Optional[str]) -> int:
        if user_id is not None and user_id in self.user_rate_limits:
            return self.user_rate_limits[user_id]
        return self.rate_limit
