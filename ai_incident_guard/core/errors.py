"""
Error taxonomy for the detection and remediation core.

Callers at the HTTP or CLI boundary map these onto status codes or exit
codes; the core itself only raises them.
"""

from typing import Any, Dict, Optional


class IncidentGuardError(Exception):
    """Base class for all typed errors raised by the core."""
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(IncidentGuardError, ValueError):
    """Malformed input to scoring, ingestion or remediation creation."""
    code = "VALIDATION_ERROR"


class NotFoundError(IncidentGuardError):
    """Lookup miss for a project, incident or remediation action."""
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{resource} not found", details)
        self.resource = resource


class ConflictError(IncidentGuardError):
    """State transition that is not allowed from the current state."""
    code = "CONFLICT"


class InternalError(IncidentGuardError):
    """Unexpected failure of an underlying store."""
    code = "INTERNAL_ERROR"


class ConstraintViolation(IncidentGuardError):
    """Raised when a request is rejected by an active remediation constraint."""
    code = "CONSTRAINT_VIOLATION"

    def __init__(self, message: str, kind: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.kind = kind
