"""State machine validation for sprint status transitions.

Sprints move forward only:
- PLANNING → ACTIVE when work starts
- PLANNING → COMPLETED to close a sprint that never ran
- ACTIVE → COMPLETED when the time box ends
COMPLETED is terminal. Sprint status is never advanced by a clock; every
transition is an explicit request.
"""
import logging
from datetime import datetime

from .errors import StateTransitionError
from .models import SprintStatus

logger = logging.getLogger("taskhub-core.sprint_state_machine")


# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[SprintStatus, list[SprintStatus]] = {
    SprintStatus.PLANNING: [
        SprintStatus.ACTIVE,      # Forward: sprint starts
        SprintStatus.COMPLETED,   # Forward: closed without running
    ],
    SprintStatus.ACTIVE: [
        SprintStatus.COMPLETED,   # Forward: time box over
    ],
    SprintStatus.COMPLETED: [
        # Terminal
    ],
}


def is_transition_valid(current_status: SprintStatus, new_status: SprintStatus) -> bool:
    """
    Check if a status transition is valid.

    A same-state request counts as valid (it is a no-op).
    """
    if current_status == new_status:
        return True
    return new_status in TRANSITION_MATRIX.get(current_status, [])


def validate_transition(current_status: SprintStatus, new_status: SprintStatus) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current sprint status
        new_status: Requested sprint status

    Raises:
        StateTransitionError: If the transition is not allowed. The error
            carries the legal target set for the current status.
    """
    if current_status == new_status:
        logger.debug(f"No-op transition: {current_status.value} → {new_status.value}")
        return

    if not is_transition_valid(current_status, new_status):
        allowed_transitions = get_allowed_transitions(current_status)
        allowed_names = [s.value for s in allowed_transitions]

        if allowed_names:
            error_msg = (
                f"Invalid status transition: {current_status.value} → {new_status.value}. "
                f"From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."
            )
        else:
            error_msg = (
                f"Invalid status transition: {current_status.value} → {new_status.value}. "
                f"{current_status.value} sprints are terminal and cannot change status."
            )

        logger.warning(f"Blocked transition: {error_msg}")
        raise StateTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=allowed_transitions,
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: SprintStatus) -> list[SprintStatus]:
    """Get list of allowed next statuses (excluding the no-op)."""
    return list(TRANSITION_MATRIX.get(current_status, []))


def suggest_initial_status(start_date: datetime, end_date: datetime, now: datetime) -> SprintStatus:
    """
    Derive a default status for a new sprint from the wall clock.

    Before the window → PLANNING, inside it → ACTIVE, after it → COMPLETED.
    Callers may override the suggestion explicitly.
    """
    if now < start_date:
        return SprintStatus.PLANNING
    if now <= end_date:
        return SprintStatus.ACTIVE
    return SprintStatus.COMPLETED

