"""Task hierarchy management.

Tasks nest through ``parent_id``. The parent chain never revisits a task
and never leaves the task's project. Soft deletes cascade down to active
subtasks; restores cascade only on request.
"""
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .lifecycle import collect_changes, get_active, mark_deleted
from .permissions import Action, chain_for_project, require
from .projects import is_active_project_member
from .schemas import parse_enum

logger = logging.getLogger("taskhub-core.tasks")

REQUIRED_FIELDS = ("title", "priority", "status", "due_date", "labels")


class SprintNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Sprint not found or does not belong to the specified project")


class ParentNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Parent task not found or does not belong to the specified project")


class AssignedUserNotFoundError(NotFoundError):
    """Raised when the assignee is unknown or not an active project member.

    Both cases share one error so membership is not leaked.
    """

    def __init__(self):
        super().__init__("Assigned user not found")


class SelfParentError(ValidationError):
    def __init__(self):
        super().__init__("A task cannot be its own parent", field="parent_id")


class CyclicHierarchyError(ValidationError):
    """Raised when a new parent would make the task its own ancestor."""

    def __init__(self, path: list[UUID]):
        super().__init__(
            "Circular dependency detected in task hierarchy",
            field="parent_id",
            cycle=[str(task_id) for task_id in path],
        )


# ============================================================================
# Validation
# ============================================================================

def _validate_sprint(db: Session, project_id: UUID, sprint_id: UUID) -> models.Sprint:
    sprint = db.query(models.Sprint).filter(
        models.Sprint.id == sprint_id,
        models.Sprint.project_id == project_id,
        models.Sprint.deleted_at.is_(None),
    ).first()
    if sprint is None:
        raise SprintNotFoundError()
    return sprint


def _validate_parent(db: Session, project_id: UUID, parent_id: UUID) -> models.Task:
    parent = db.query(models.Task).filter(
        models.Task.id == parent_id,
        models.Task.project_id == project_id,
        models.Task.deleted_at.is_(None),
    ).first()
    if parent is None:
        raise ParentNotFoundError()
    return parent


def _validate_assignee(db: Session, project_id: UUID, user_id: UUID) -> models.User:
    user = db.query(models.User).filter(
        models.User.id == user_id,
        models.User.is_active.is_(True),
        models.User.deleted_at.is_(None),
    ).first()
    if user is None or not is_active_project_member(db, project_id, user_id):
        raise AssignedUserNotFoundError()
    return user


def detect_cycle(db: Session, task_id: UUID, new_parent_id: UUID) -> Optional[list[UUID]]:
    """
    Walk the ancestor chain of ``new_parent_id`` looking for ``task_id``.

    Returns:
        The chain from the new parent up to the task if re-parenting would
        create a cycle, None otherwise
    """
    path = [new_parent_id]
    visited = {new_parent_id}
    current_id = new_parent_id
    while current_id is not None:
        if current_id == task_id:
            return path
        row = db.query(models.Task.parent_id).filter(models.Task.id == current_id).first()
        current_id = row.parent_id if row else None
        if current_id in visited:
            # Pre-existing loop that does not involve task_id
            return None
        if current_id is not None:
            visited.add(current_id)
            path.append(current_id)
    return None


def collect_descendants(db: Session, task_id: UUID) -> list[models.Task]:
    """All tasks below ``task_id`` (any state), breadth first."""
    descendants: list[models.Task] = []
    seen = {task_id}
    frontier = [task_id]
    while frontier:
        children = db.query(models.Task).filter(models.Task.parent_id.in_(frontier)).all()
        frontier = []
        for child in children:
            if child.id in seen:
                continue
            seen.add(child.id)
            descendants.append(child)
            frontier.append(child.id)
    return descendants


def _load_task(db: Session, task_id: UUID, include_deleted: bool = False) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if task is None or task.project.deleted_at is not None:
        raise NotFoundError("Task not found")
    if task.deleted_at is not None and not include_deleted:
        raise NotFoundError("Task not found")
    return task


# ============================================================================
# Operations
# ============================================================================

def create_task(
    db: Session,
    actor: models.User,
    project_id: UUID,
    data: schemas.TaskCreate,
) -> models.Task:
    """
    Create a task in a project.

    Raises:
        NotFoundError: If the project is missing
        SprintNotFoundError: If sprint_id is not an active sprint of the project
        ParentNotFoundError: If parent_id is not an active task of the project
        AssignedUserNotFoundError: If the assignee is unknown or not a project member
    """
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.CREATE, chain_for_project(project), "tasks in this project")

        if data.sprint_id:
            _validate_sprint(db, project.id, data.sprint_id)
        if data.parent_id:
            _validate_parent(db, project.id, data.parent_id)
        if data.assigned_to:
            _validate_assignee(db, project.id, data.assigned_to)

        task = models.Task(
            project_id=project.id,
            sprint_id=data.sprint_id,
            parent_id=data.parent_id,
            title=data.title,
            description=data.description,
            status=data.status,
            priority=data.priority,
            due_date=data.due_date,
            assigned_to=data.assigned_to,
            labels=list(dict.fromkeys(data.labels)),
            estimated_time=data.estimated_time,
            actual_time=data.actual_time,
            created_by=actor.id,
            last_modified_by=actor.id,
        )
        db.add(task)
        db.flush()
        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.TASK,
            task.id, project.organization_id,
            f"Task '{task.title}' created in project '{project.name}'",
            {"parent_id": str(task.parent_id) if task.parent_id else None},
        )

    logger.info(f"Created task '{task.title}' (ID: {task.id})")
    return task


def get_task(db: Session, actor: models.User, task_id: UUID) -> tuple[models.Task, list[UUID]]:
    """
    Get a task and the ids of its active direct subtasks.
    """
    task = _load_task(db, task_id)
    require(db, actor, Action.READ, chain_for_project(task.project), "this task")
    subtask_ids = [
        row.id
        for row in db.query(models.Task.id).filter(
            models.Task.parent_id == task.id,
            models.Task.deleted_at.is_(None),
        ).order_by(models.Task.created_at).all()
    ]
    return task, subtask_ids


def list_tasks(
    db: Session,
    actor: models.User,
    project_id: UUID,
    status_filter: Optional[models.TaskStatus] = None,
    priority_filter: Optional[models.TaskPriority] = None,
    sprint_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
    parent_id: Optional[UUID] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Task], int]:
    """
    List active tasks of a project with optional filters.

    Args:
        db: Database session
        actor: Requesting user
        project_id: Project UUID
        status_filter: Filter by status
        priority_filter: Filter by priority
        sprint_id: Filter by sprint
        assigned_to: Filter by assignee
        parent_id: Filter by parent task (direct subtasks only)
        search: Search in title and description
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        Tuple of (tasks list, total count)
    """
    project = get_active(db, models.Project, project_id, "Project")
    require(db, actor, Action.READ, chain_for_project(project), "tasks in this project")

    query = db.query(models.Task).filter(
        models.Task.project_id == project.id,
        models.Task.deleted_at.is_(None),
    )
    if status_filter:
        query = query.filter(models.Task.status == status_filter)
    if priority_filter:
        query = query.filter(models.Task.priority == priority_filter)
    if sprint_id:
        query = query.filter(models.Task.sprint_id == sprint_id)
    if assigned_to:
        query = query.filter(models.Task.assigned_to == assigned_to)
    if parent_id:
        query = query.filter(models.Task.parent_id == parent_id)
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Task.title.ilike(search_pattern),
                models.Task.description.ilike(search_pattern),
            )
        )

    total = query.count()
    items = query.order_by(models.Task.due_date, models.Task.created_at).offset(skip).limit(limit).all()
    return items, total


def update_task(
    db: Session,
    actor: models.User,
    task_id: UUID,
    data: schemas.TaskUpdate,
) -> models.Task:
    """
    Update a task. Only fields present in ``data`` are applied.

    Re-parenting walks the new parent's ancestor chain so the task never
    becomes its own ancestor. Setting parent_id to null detaches the task.

    Raises:
        ValidationError: If a required field is cleared
        SelfParentError: If parent_id is the task's own id
        CyclicHierarchyError: If the new parent descends from the task
        ParentNotFoundError / SprintNotFoundError / AssignedUserNotFoundError
    """
    changes: dict[str, Any] = collect_changes(data, REQUIRED_FIELDS)

    with unit_of_work(db):
        task = _load_task(db, task_id)
        require(db, actor, Action.UPDATE, chain_for_project(task.project), "this task")

        if changes.get("parent_id") is not None:
            new_parent_id = changes["parent_id"]
            if new_parent_id == task.id:
                logger.warning(f"Rejected self-parent for task {task.id}")
                raise SelfParentError()
            _validate_parent(db, task.project_id, new_parent_id)
            cycle = detect_cycle(db, task.id, new_parent_id)
            if cycle:
                logger.warning(f"Rejected cyclic parent {new_parent_id} for task {task.id}")
                raise CyclicHierarchyError(cycle)
        if changes.get("sprint_id") is not None:
            _validate_sprint(db, task.project_id, changes["sprint_id"])
        if changes.get("assigned_to") is not None:
            _validate_assignee(db, task.project_id, changes["assigned_to"])
        if changes.get("labels") is not None:
            changes["labels"] = list(dict.fromkeys(changes["labels"]))

        reassigned = "assigned_to" in changes and changes["assigned_to"] != task.assigned_to
        for key, value in changes.items():
            setattr(task, key, value)
        task.last_modified_by = actor.id

        record_activity(
            db, actor,
            models.ActionType.ASSIGNED if reassigned else models.ActionType.UPDATED,
            models.EntityType.TASK,
            task.id, task.project.organization_id,
            f"Task '{task.title}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated task {task.id}")
    return task


def update_task_status(db: Session, actor: models.User, task_id: UUID, status: str) -> models.Task:
    """
    Set a task's status. Requires update rights on the project.

    Raises:
        ValidationError: If ``status`` is not a TaskStatus value
    """
    new_status = parse_enum(models.TaskStatus, status, "status")
    with unit_of_work(db):
        task = _load_task(db, task_id)
        require(db, actor, Action.UPDATE, chain_for_project(task.project), "this task")

        previous = task.status
        task.status = new_status
        task.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.STATUS_CHANGED, models.EntityType.TASK,
            task.id, task.project.organization_id,
            f"Task '{task.title}' status changed from {previous.value} to {new_status.value}",
            {"from": previous.value, "to": new_status.value},
        )

    logger.info(f"Task {task.id} status: {previous.value} → {new_status.value}")
    return task


def update_task_priority(db: Session, actor: models.User, task_id: UUID, priority: str) -> models.Task:
    """
    Set a task's priority. Requires update rights on the project.

    Raises:
        ValidationError: If ``priority`` is not a TaskPriority value
    """
    new_priority = parse_enum(models.TaskPriority, priority, "priority")
    with unit_of_work(db):
        task = _load_task(db, task_id)
        require(db, actor, Action.UPDATE, chain_for_project(task.project), "this task")

        previous = task.priority
        task.priority = new_priority
        task.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.TASK,
            task.id, task.project.organization_id,
            f"Task '{task.title}' priority changed from {previous.value} to {new_priority.value}",
            {"from": previous.value, "to": new_priority.value},
        )

    logger.info(f"Task {task.id} priority: {previous.value} → {new_priority.value}")
    return task


def delete_task(
    db: Session,
    actor: models.User,
    task_id: UUID,
    permanent: bool = False,
) -> dict[str, Any]:
    """
    Delete a task and its subtasks.

    A soft delete marks the task and every active descendant as deleted. A
    permanent delete physically removes the whole subtree and is reserved
    for platform admins.

    Returns:
        Dict with id, permanent and deleted_subtasks_count

    Raises:
        PermissionDeniedError: On a permanent delete by a non-admin
        ConflictError: (400) On a soft delete of an already-deleted task
    """
    with unit_of_work(db):
        task = _load_task(db, task_id, include_deleted=permanent)
        organization_id = task.project.organization_id

        if permanent:
            if actor.role != models.UserRole.ADMIN:
                logger.warning(f"Denied permanent delete of task {task.id} by {actor.id}")
                raise PermissionDeniedError("Only administrators can permanently delete tasks")

            descendants = collect_descendants(db, task.id)
            # Deepest first so no row outlives its parent
            for row in reversed(descendants):
                db.delete(row)
                db.flush()
            db.delete(task)
            db.flush()
            deleted_subtasks_count = len(descendants)
        else:
            require(db, actor, Action.DELETE, chain_for_project(task.project), "this task")
            now = datetime.utcnow()
            mark_deleted(task, "Task", now)
            deleted_subtasks_count = 0
            for row in collect_descendants(db, task.id):
                if row.deleted_at is None:
                    row.deleted_at = now
                    deleted_subtasks_count += 1
            task.last_modified_by = actor.id

        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.TASK,
            task.id, organization_id,
            f"Task '{task.title}' {'permanently ' if permanent else ''}deleted"
            f" with {deleted_subtasks_count} subtask(s)",
            {"permanent": permanent, "deleted_subtasks_count": deleted_subtasks_count},
        )

    logger.info(
        f"{'Permanently' if permanent else 'Soft'}-deleted task {task_id} "
        f"and {deleted_subtasks_count} subtask(s)"
    )
    return {"id": task_id, "permanent": permanent, "deleted_subtasks_count": deleted_subtasks_count}


def restore_task(
    db: Session,
    actor: models.User,
    task_id: UUID,
    restore_subtasks: bool = False,
) -> tuple[models.Task, int]:
    """
    Restore a soft-deleted task.

    A task whose parent is still deleted cannot be restored on its own;
    restore the parent (with ``restore_subtasks``) instead.

    Returns:
        Tuple of (task, number of subtasks restored with it)

    Raises:
        NotFoundError: If the task is missing, not deleted, or its parent is deleted
    """
    with unit_of_work(db):
        task = db.query(models.Task).filter(
            models.Task.id == task_id,
            models.Task.deleted_at.isnot(None),
        ).first()
        if task is None or task.project.deleted_at is not None:
            raise NotFoundError("Task not found, already active, or its parent task is deleted")
        if task.parent_id is not None:
            parent = db.query(models.Task).filter(
                models.Task.id == task.parent_id,
                models.Task.deleted_at.is_(None),
            ).first()
            if parent is None:
                raise NotFoundError("Task not found, already active, or its parent task is deleted")
        require(db, actor, Action.RESTORE, chain_for_project(task.project), "this task")

        task.deleted_at = None
        task.last_modified_by = actor.id
        restored_subtasks_count = 0
        if restore_subtasks:
            for row in collect_descendants(db, task.id):
                if row.deleted_at is not None:
                    row.deleted_at = None
                    row.last_modified_by = actor.id
                    restored_subtasks_count += 1

        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.TASK,
            task.id, task.project.organization_id,
            f"Task '{task.title}' restored with {restored_subtasks_count} subtask(s)",
            {"restored_subtasks_count": restored_subtasks_count},
        )

    logger.info(f"Restored task {task.id} and {restored_subtasks_count} subtask(s)")
    return task, restored_subtasks_count
