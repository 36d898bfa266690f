"""Error taxonomy shared by the lifecycle, scheduling and hierarchy layers.

Every error carries the HTTP status it surfaces as, a short machine-readable
kind and whatever structured detail the caller needs to disambiguate
(the conflicting sprint, the legal transition set, a field path, ...).
None of these are retried: the current unit of work is aborted and the
error is reported as-is.
"""
from typing import Any, Optional


class TaskhubError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body = {"success": False, "error": self.error, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(TaskhubError):
    """Missing or malformed field, or an illegal enum value."""

    status_code = 400
    error = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class NotFoundError(TaskhubError):
    """Referenced entity is missing or soft-deleted."""

    status_code = 404
    error = "not_found"


class ConflictError(TaskhubError):
    """Duplicate active name, already-deleted target, last elevated member, ..."""

    status_code = 409
    error = "conflict"


class PermissionDeniedError(TaskhubError):
    """Raised when the authorization resolver denies an action."""

    status_code = 403
    error = "forbidden"


class StateTransitionError(TaskhubError):
    """Raised when an invalid state transition is attempted."""

    status_code = 400
    error = "invalid_state_transition"

    def __init__(
        self,
        message: str,
        current_status: Any,
        requested_status: Any,
        allowed_transitions: list,
    ):
        super().__init__(
            message,
            current_status=_enum_value(current_status),
            requested_status=_enum_value(requested_status),
            allowed_transitions=[_enum_value(s) for s in allowed_transitions],
        )
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)
