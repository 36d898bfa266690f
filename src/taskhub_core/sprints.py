"""Sprint scheduling.

Enforces the sprint status state machine, keeps active sprint windows of a
project from overlapping, and gates completion and deletion on task
completeness.

Two windows overlap when ``start < other.end and end > other.start``, so
back-to-back sprints (one ends exactly when the next starts) are fine.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .errors import ConflictError, NotFoundError, ValidationError
from .lifecycle import collect_changes, ensure_unique_name, get_active, mark_deleted, mark_restored
from .permissions import Action, chain_for_project, require
from .schemas import parse_enum
from .sprint_state_machine import suggest_initial_status, validate_transition

logger = logging.getLogger("taskhub-core.sprints")

REQUIRED_UPDATE_FIELDS = ("name", "start_date", "end_date")

NAME_TAKEN = "A sprint with this name already exists in this project"


class InvalidSprintWindowError(ValidationError):
    """Raised when a sprint's start date is not before its end date."""

    def __init__(self):
        super().__init__("Start date must be before end date", field="end_date")


class SprintOverlapError(ConflictError):
    """Raised when a sprint window overlaps another active sprint in the project."""

    error = "sprint_overlap"

    def __init__(self, overlapping: models.Sprint):
        super().__init__(
            "Sprint dates overlap with existing sprint",
            status_code=400,
            overlapping_sprint={
                "id": str(overlapping.id),
                "name": overlapping.name,
                "start_date": overlapping.start_date.isoformat(),
                "end_date": overlapping.end_date.isoformat(),
            },
        )
        self.overlapping = overlapping


class IncompleteTasksError(ConflictError):
    """Raised when completing a sprint that still has tasks not DONE."""

    error = "incomplete_tasks"

    def __init__(self, count: int):
        super().__init__(
            "Cannot complete sprint with unfinished tasks",
            status_code=400,
            incomplete_tasks=count,
        )
        self.count = count


class UnfinishedTasksError(ConflictError):
    """Raised when deleting an ACTIVE sprint that still has tasks not DONE."""

    error = "unfinished_tasks"

    def __init__(self, count: int):
        super().__init__(
            "Cannot delete active sprint with unfinished tasks",
            status_code=400,
            unfinished_tasks=count,
        )
        self.count = count


class SprintNotStartedError(ConflictError):
    """Raised when activating a sprint before its start date."""

    error = "sprint_not_started"

    def __init__(self, start_date: datetime):
        super().__init__(
            "Cannot activate sprint before its start date",
            status_code=400,
            start_date=start_date.isoformat(),
        )


# ============================================================================
# Helpers
# ============================================================================

def validate_window(start_date: datetime, end_date: datetime) -> None:
    if start_date >= end_date:
        raise InvalidSprintWindowError()


def find_overlapping_sprint(
    db: Session,
    project_id: UUID,
    start_date: datetime,
    end_date: datetime,
    exclude_id: Optional[UUID] = None,
) -> Optional[models.Sprint]:
    """Return an active sprint of the project whose window overlaps [start, end), if any."""
    query = db.query(models.Sprint).filter(
        models.Sprint.project_id == project_id,
        models.Sprint.deleted_at.is_(None),
        models.Sprint.start_date < end_date,
        models.Sprint.end_date > start_date,
    )
    if exclude_id is not None:
        query = query.filter(models.Sprint.id != exclude_id)
    return query.order_by(models.Sprint.start_date).first()


def _ensure_schedulable(
    db: Session,
    project_id: UUID,
    name: str,
    start_date: datetime,
    end_date: datetime,
    exclude_id: Optional[UUID] = None,
) -> None:
    """Window legality, name uniqueness and non-overlap, in that order."""
    validate_window(start_date, end_date)
    ensure_unique_name(
        db, models.Sprint, name,
        scope=[models.Sprint.project_id == project_id],
        exclude_id=exclude_id,
        message=NAME_TAKEN,
    )
    overlapping = find_overlapping_sprint(db, project_id, start_date, end_date, exclude_id)
    if overlapping is not None:
        logger.warning(f"Sprint window overlaps sprint {overlapping.id} in project {project_id}")
        raise SprintOverlapError(overlapping)


def count_unfinished_tasks(db: Session, sprint_id: UUID) -> int:
    """Active tasks of the sprint whose status is not DONE."""
    return db.query(models.Task).filter(
        models.Task.sprint_id == sprint_id,
        models.Task.deleted_at.is_(None),
        models.Task.status != models.TaskStatus.DONE,
    ).count()


def _load_sprint(db: Session, sprint_id: UUID, include_deleted: bool = False) -> models.Sprint:
    """Fetch a sprint whose project is still active."""
    sprint = db.query(models.Sprint).filter(models.Sprint.id == sprint_id).first()
    if sprint is None or sprint.project.deleted_at is not None:
        raise NotFoundError("Sprint not found")
    if sprint.deleted_at is not None and not include_deleted:
        raise NotFoundError("Sprint not found")
    return sprint


# ============================================================================
# Operations
# ============================================================================

def create_sprint(
    db: Session,
    actor: models.User,
    project_id: UUID,
    data: schemas.SprintCreate,
    now: Optional[datetime] = None,
) -> models.Sprint:
    """
    Create a sprint at the end of the project's sprint ordering.

    The status defaults to what the dates suggest relative to ``now``
    unless the caller sets one.

    Raises:
        NotFoundError: If the project is missing or deleted
        InvalidSprintWindowError: If start_date >= end_date
        ConflictError: (409) If the name is taken within the project
        SprintOverlapError: If the window overlaps another active sprint
    """
    now = now or datetime.utcnow()
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.CREATE, chain_for_project(project), "sprints in this project")
        _ensure_schedulable(db, project.id, data.name, data.start_date, data.end_date)

        last_order = db.query(func.max(models.Sprint.order)).filter(
            models.Sprint.project_id == project.id,
            models.Sprint.deleted_at.is_(None),
        ).scalar()

        sprint = models.Sprint(
            project_id=project.id,
            name=data.name,
            description=data.description,
            goal=data.goal,
            start_date=data.start_date,
            end_date=data.end_date,
            status=data.status or suggest_initial_status(data.start_date, data.end_date, now),
            order=0 if last_order is None else last_order + 1,
            created_by=actor.id,
        )
        db.add(sprint)
        db.flush()
        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.SPRINT,
            sprint.id, project.organization_id,
            f"Sprint '{sprint.name}' created in project '{project.name}'",
            {"status": sprint.status.value, "order": sprint.order},
        )

    logger.info(f"Created sprint '{sprint.name}' (ID: {sprint.id}) as {sprint.status.value}")
    return sprint


def get_sprint(db: Session, actor: models.User, sprint_id: UUID) -> tuple[models.Sprint, dict[str, int]]:
    """
    Get a sprint and its task progress.

    Returns:
        Tuple of (sprint, stats) where stats has total_tasks, completed_tasks
        and progress (percentage of tasks DONE)
    """
    sprint = _load_sprint(db, sprint_id)
    require(db, actor, Action.READ, chain_for_project(sprint.project), "this sprint")

    tasks = db.query(models.Task).filter(
        models.Task.sprint_id == sprint.id,
        models.Task.deleted_at.is_(None),
    )
    total = tasks.count()
    completed = tasks.filter(models.Task.status == models.TaskStatus.DONE).count()
    stats = {
        "total_tasks": total,
        "completed_tasks": completed,
        "progress": round(completed * 100 / total) if total else 0,
    }
    return sprint, stats


def list_sprints(
    db: Session,
    actor: models.User,
    project_id: UUID,
    status_filter: Optional[models.SprintStatus] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Sprint], int]:
    """List a project's active sprints in schedule order."""
    project = get_active(db, models.Project, project_id, "Project")
    require(db, actor, Action.READ, chain_for_project(project), "sprints in this project")

    query = db.query(models.Sprint).filter(
        models.Sprint.project_id == project.id,
        models.Sprint.deleted_at.is_(None),
    )
    if status_filter:
        query = query.filter(models.Sprint.status == status_filter)

    total = query.count()
    items = query.order_by(models.Sprint.order, models.Sprint.start_date).offset(skip).limit(limit).all()
    return items, total


def update_sprint(
    db: Session,
    actor: models.User,
    sprint_id: UUID,
    data: schemas.SprintUpdate,
) -> models.Sprint:
    """
    Update sprint details.

    Name and window are re-validated as on create, ignoring the sprint's
    own current window.
    """
    with unit_of_work(db):
        sprint = _load_sprint(db, sprint_id)
        require(db, actor, Action.UPDATE, chain_for_project(sprint.project), "this sprint")

        changes = collect_changes(data, REQUIRED_UPDATE_FIELDS)
        name = changes.get("name") or sprint.name
        start_date = changes.get("start_date") or sprint.start_date
        end_date = changes.get("end_date") or sprint.end_date
        if name != sprint.name or start_date != sprint.start_date or end_date != sprint.end_date:
            _ensure_schedulable(db, sprint.project_id, name, start_date, end_date, exclude_id=sprint.id)

        for key, value in changes.items():
            setattr(sprint, key, value)

        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.SPRINT,
            sprint.id, sprint.project.organization_id,
            f"Sprint '{sprint.name}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated sprint {sprint.id}")
    return sprint


def update_sprint_status(
    db: Session,
    actor: models.User,
    sprint_id: UUID,
    status: str,
    now: Optional[datetime] = None,
) -> models.Sprint:
    """
    Move a sprint through its state machine.

    A request for the current status succeeds without changing anything.

    Raises:
        ValidationError: If ``status`` is not a SprintStatus value
        StateTransitionError: If the transition is illegal
        SprintNotStartedError: If activating before the start date
        IncompleteTasksError: If completing with tasks not DONE
    """
    new_status = parse_enum(models.SprintStatus, status, "status")
    now = now or datetime.utcnow()

    with unit_of_work(db):
        sprint = _load_sprint(db, sprint_id)
        require(db, actor, Action.UPDATE, chain_for_project(sprint.project), "this sprint")

        validate_transition(sprint.status, new_status)
        if sprint.status == new_status:
            return sprint

        if new_status == models.SprintStatus.ACTIVE and now < sprint.start_date:
            raise SprintNotStartedError(sprint.start_date)

        if new_status == models.SprintStatus.COMPLETED:
            incomplete = count_unfinished_tasks(db, sprint.id)
            if incomplete:
                logger.warning(f"Sprint {sprint.id} has {incomplete} unfinished task(s)")
                raise IncompleteTasksError(incomplete)

        previous = sprint.status
        sprint.status = new_status
        action = (
            models.ActionType.SPRINT_STARTED
            if new_status == models.SprintStatus.ACTIVE
            else models.ActionType.SPRINT_COMPLETED
        )
        record_activity(
            db, actor, action, models.EntityType.SPRINT,
            sprint.id, sprint.project.organization_id,
            f"Sprint '{sprint.name}' moved from {previous.value} to {new_status.value}",
            {"from": previous.value, "to": new_status.value},
        )

    logger.info(f"Sprint {sprint.id} status: {previous.value} → {new_status.value}")
    return sprint


def soft_delete_sprint(db: Session, actor: models.User, sprint_id: UUID) -> models.Sprint:
    """
    Soft-delete a sprint.

    Raises:
        ConflictError: (400) If already deleted
        UnfinishedTasksError: If the sprint is ACTIVE with tasks not DONE
    """
    with unit_of_work(db):
        sprint = _load_sprint(db, sprint_id, include_deleted=True)
        require(db, actor, Action.DELETE, chain_for_project(sprint.project), "this sprint")

        if sprint.deleted_at is None and sprint.status == models.SprintStatus.ACTIVE:
            unfinished = count_unfinished_tasks(db, sprint.id)
            if unfinished:
                raise UnfinishedTasksError(unfinished)
        mark_deleted(sprint, "Sprint")

        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.SPRINT,
            sprint.id, sprint.project.organization_id,
            f"Sprint '{sprint.name}' deleted",
        )

    logger.info(f"Soft-deleted sprint {sprint.id}")
    return sprint


def restore_sprint(db: Session, actor: models.User, sprint_id: UUID) -> models.Sprint:
    """
    Restore a sprint.

    Name uniqueness and non-overlap are checked again against the sprints
    that are active now.

    Raises:
        ConflictError: If the sprint is not deleted or its name was reused
        SprintOverlapError: If another active sprint now occupies its window
    """
    with unit_of_work(db):
        sprint = _load_sprint(db, sprint_id, include_deleted=True)
        require(db, actor, Action.RESTORE, chain_for_project(sprint.project), "this sprint")
        mark_restored(sprint, "Sprint")
        _ensure_schedulable(
            db, sprint.project_id, sprint.name, sprint.start_date, sprint.end_date,
            exclude_id=sprint.id,
        )
        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.SPRINT,
            sprint.id, sprint.project.organization_id,
            f"Sprint '{sprint.name}' restored",
        )

    logger.info(f"Restored sprint {sprint.id}")
    return sprint
