"""Projects API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import models, projects, schemas
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["projects"])


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new project. The caller becomes its PROJECT_OWNER.

    - **team_id**: Team running the project
    - **name**: Project name (unique within the team)
    - **start_date** / **end_date**: Project window (start must be before end)
    - **status**: Project status (default: PLANNING)
    - **priority**: Project priority (default: MEDIUM)
    - **member_ids**: Optional initial members
    """
    return projects.create_project(db, current_user, project)


@router.get("/", response_model=schemas.ProjectListResponse)
def list_projects(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    team_id: Optional[UUID] = Query(None, description="Filter by team"),
    organization_id: Optional[UUID] = Query(None, description="Filter by organization"),
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.ProjectPriority] = Query(None, description="Filter by priority"),
    search: Optional[str] = Query(None, description="Search in name and description"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List projects with optional filtering and pagination.

    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    - **team_id**: Filter by team (this or organization_id is required)
    - **organization_id**: Filter by organization
    - **status**: Filter by project status
    - **priority**: Filter by priority
    - **search**: Search text in name and description
    """
    skip = (page - 1) * page_size
    items, total = projects.list_projects(
        db,
        current_user,
        team_id=team_id,
        organization_id=organization_id,
        status_filter=status,
        priority_filter=priority,
        search=search,
        skip=skip,
        limit=page_size,
    )
    return schemas.ProjectListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a specific project by ID.
    """
    return projects.get_project(db, current_user, project_id)


@router.put("/{project_id}", response_model=schemas.ProjectResponse)
def update_project(
    project_id: UUID,
    project_update: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update a project.

    - **name**: New project name (optional)
    - **description**: New description (optional)
    - **start_date** / **end_date**: New window (optional, re-validated)
    - **progress**: Completion percentage 0-100 (optional)
    - **budget**: New budget (optional)
    """
    return projects.update_project(db, current_user, project_id, project_update)


@router.patch("/{project_id}/status", response_model=schemas.ProjectResponse)
def update_project_status(
    project_id: UUID,
    status_update: schemas.StatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change project status. Requires update rights on the project.
    """
    return projects.update_project_status(db, current_user, project_id, status_update.status)


@router.patch("/{project_id}/priority", response_model=schemas.ProjectResponse)
def update_project_priority(
    project_id: UUID,
    priority_update: schemas.PriorityUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change project priority. Requires update rights on the project.
    """
    return projects.update_project_priority(db, current_user, project_id, priority_update.priority)


@router.delete("/{project_id}", response_model=schemas.ProjectResponse)
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Soft-delete a project.
    """
    return projects.soft_delete_project(db, current_user, project_id)


@router.patch("/{project_id}/restore", response_model=schemas.ProjectResponse)
def restore_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Restore a soft-deleted project. Its team must be active.
    """
    return projects.restore_project(db, current_user, project_id)


# Project Members endpoints

@router.get("/{project_id}/members", response_model=list[schemas.ProjectMemberResponse])
def list_project_members(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List all active members of a project.
    """
    return projects.list_project_members(db, current_user, project_id)


@router.post("/{project_id}/members", response_model=schemas.MembershipBatchResponse)
def add_project_members(
    project_id: UUID,
    members: schemas.ProjectMembersAdd,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Add users to a project.

    - **user_ids**: Users to add (existing members are skipped)
    - **role**: Role for the new members (default: MEMBER)
    """
    batch = projects.add_project_members(db, current_user, project_id, members.user_ids, members.role)
    return batch.to_dict()


@router.delete("/{project_id}/members/{user_id}", response_model=schemas.ProjectMemberResponse)
def remove_project_member(
    project_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Remove a member from a project. The only PROJECT_OWNER cannot be removed.
    """
    return projects.remove_project_member(db, current_user, project_id, user_id)


@router.put("/{project_id}/members/{user_id}/role", response_model=schemas.ProjectMemberResponse)
def update_project_member_role(
    project_id: UUID,
    user_id: UUID,
    role_update: schemas.ProjectMemberRoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change a project member's role.
    """
    return projects.update_project_member_role(db, current_user, project_id, user_id, role_update.role)
