"""Task API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import models, schemas, tasks
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["tasks"])


@router.post("/projects/{project_id}/tasks", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    project_id: UUID,
    task: schemas.TaskCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new task.

    - **title**: Task title (required)
    - **priority**: LOW, MEDIUM, HIGH or URGENT (required)
    - **due_date**: Due date (required)
    - **sprint_id**: Optional sprint of the same project
    - **parent_id**: Optional parent task of the same project
    - **assigned_to**: Optional assignee; must be an active project member
    - **labels**: Optional labels
    """
    return tasks.create_task(db, current_user, project_id, task)


@router.get("/projects/{project_id}/tasks", response_model=schemas.TaskListResponse)
def list_tasks(
    project_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TaskPriority] = Query(None, description="Filter by priority"),
    sprint_id: Optional[UUID] = Query(None, description="Filter by sprint"),
    assigned_to: Optional[UUID] = Query(None, description="Filter by assignee"),
    parent_id: Optional[UUID] = Query(None, description="Filter by parent task"),
    search: Optional[str] = Query(None, description="Search in title and description"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List a project's active tasks with optional filtering and pagination.

    - **status**: Filter by task status
    - **priority**: Filter by priority
    - **sprint_id**: Filter by sprint
    - **assigned_to**: Filter by assignee
    - **parent_id**: Only direct subtasks of this task
    - **search**: Search text in title and description
    """
    skip = (page - 1) * page_size
    items, total = tasks.list_tasks(
        db,
        current_user,
        project_id,
        status_filter=status,
        priority_filter=priority,
        sprint_id=sprint_id,
        assigned_to=assigned_to,
        parent_id=parent_id,
        search=search,
        skip=skip,
        limit=page_size,
    )
    return schemas.TaskListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/tasks/{task_id}", response_model=schemas.TaskDetailResponse)
def get_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a task with the ids of its active subtasks.
    """
    task, subtask_ids = tasks.get_task(db, current_user, task_id)
    response = schemas.TaskDetailResponse.model_validate(task)
    return response.model_copy(update={"subtask_ids": subtask_ids})


@router.put("/tasks/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: UUID,
    task_update: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update a task. Only the fields sent are changed.

    - **parent_id**: New parent; may not be the task itself or one of its descendants
    - **sprint_id**: New sprint of the same project
    - **assigned_to**: New assignee (active project member)
    """
    return tasks.update_task(db, current_user, task_id, task_update)


@router.patch("/tasks/{task_id}/status", response_model=schemas.TaskResponse)
def update_task_status(
    task_id: UUID,
    status_update: schemas.StatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change task status (TODO, IN_PROGRESS, REVIEW or DONE).
    """
    return tasks.update_task_status(db, current_user, task_id, status_update.status)


@router.patch("/tasks/{task_id}/priority", response_model=schemas.TaskResponse)
def update_task_priority(
    task_id: UUID,
    priority_update: schemas.PriorityUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change task priority (LOW, MEDIUM, HIGH or URGENT).
    """
    return tasks.update_task_priority(db, current_user, task_id, priority_update.priority)


@router.delete("/tasks/{task_id}", response_model=schemas.TaskDeleteResponse)
def delete_task(
    task_id: UUID,
    permanent: bool = Query(False, description="Physically delete the task and its subtasks (admins only)"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Delete a task together with its subtasks.

    - **permanent**: When true the rows are removed; otherwise they are soft-deleted
    """
    return tasks.delete_task(db, current_user, task_id, permanent=permanent)


@router.patch("/tasks/{task_id}/restore", response_model=schemas.TaskRestoreResponse)
def restore_task(
    task_id: UUID,
    restore_subtasks: bool = Query(False, description="Also restore deleted subtasks"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Restore a soft-deleted task. Its parent must be active.

    - **restore_subtasks**: Also restore every deleted descendant
    """
    task, restored = tasks.restore_task(db, current_user, task_id, restore_subtasks=restore_subtasks)
    return schemas.TaskRestoreResponse(
        task=schemas.TaskResponse.model_validate(task),
        restored_subtasks_count=restored,
    )
