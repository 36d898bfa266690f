"""Sprint API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import models, schemas, sprints
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["sprints"])


@router.post("/projects/{project_id}/sprints", response_model=schemas.SprintResponse, status_code=201)
def create_sprint(
    project_id: UUID,
    sprint: schemas.SprintCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new sprint at the end of the project's sprint order.

    - **name**: Sprint name (unique within the project)
    - **start_date** / **end_date**: Sprint window; must not overlap another active sprint
    - **goal**: Optional sprint goal
    - **status**: Optional; derived from the dates when omitted
    """
    return sprints.create_sprint(db, current_user, project_id, sprint)


@router.get("/projects/{project_id}/sprints", response_model=schemas.SprintListResponse)
def list_sprints(
    project_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status: Optional[models.SprintStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List a project's active sprints in order.

    - **status**: Filter by sprint status
    """
    skip = (page - 1) * page_size
    items, total = sprints.list_sprints(
        db, current_user, project_id, status_filter=status, skip=skip, limit=page_size,
    )
    return schemas.SprintListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/sprints/{sprint_id}", response_model=schemas.SprintDetailResponse)
def get_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a sprint with its task progress.
    """
    sprint, stats = sprints.get_sprint(db, current_user, sprint_id)
    response = schemas.SprintDetailResponse.model_validate(sprint)
    return response.model_copy(update=stats)


@router.put("/sprints/{sprint_id}", response_model=schemas.SprintResponse)
def update_sprint(
    sprint_id: UUID,
    sprint_update: schemas.SprintUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update sprint details. Name and window are re-validated.
    """
    return sprints.update_sprint(db, current_user, sprint_id, sprint_update)


@router.patch("/sprints/{sprint_id}/status", response_model=schemas.SprintResponse)
def update_sprint_status(
    sprint_id: UUID,
    status_update: schemas.StatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Move a sprint to a new status.

    Legal transitions: PLANNING → ACTIVE, PLANNING → COMPLETED,
    ACTIVE → COMPLETED. Completing requires every task to be DONE.
    """
    return sprints.update_sprint_status(db, current_user, sprint_id, status_update.status)


@router.delete("/sprints/{sprint_id}", response_model=schemas.SprintResponse)
def delete_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Soft-delete a sprint. Active sprints with unfinished tasks cannot be deleted.
    """
    return sprints.soft_delete_sprint(db, current_user, sprint_id)


@router.patch("/sprints/{sprint_id}/restore", response_model=schemas.SprintResponse)
def restore_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Restore a soft-deleted sprint if its name and window are still free.
    """
    return sprints.restore_sprint(db, current_user, sprint_id)
