"""Teams API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import models, schemas, teams
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["teams"])


@router.post("/", response_model=schemas.TeamResponse, status_code=201)
def create_team(
    team: schemas.TeamCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new team. The caller becomes its LEADER.

    - **organization_id**: Parent organization UUID
    - **department_id**: Optional department UUID
    - **name**: Team name (unique within the organization)
    - **member_ids**: Optional initial members (unknown users are skipped)
    """
    return teams.create_team(db, current_user, team)


@router.get("/", response_model=schemas.TeamListResponse)
def list_teams(
    organization_id: UUID = Query(..., description="Organization to list teams of"),
    department_id: Optional[UUID] = Query(None, description="Filter by department"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List the active teams of an organization.

    - **organization_id**: Organization UUID
    - **department_id**: Filter by department
    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    """
    skip = (page - 1) * page_size
    items, total = teams.list_teams(
        db, current_user, organization_id,
        department_id=department_id, skip=skip, limit=page_size,
    )
    return schemas.TeamListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{team_id}", response_model=schemas.TeamResponse)
def get_team(
    team_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a specific team by ID.
    """
    return teams.get_team(db, current_user, team_id)


@router.put("/{team_id}", response_model=schemas.TeamResponse)
def update_team(
    team_id: UUID,
    team_update: schemas.TeamUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update a team.

    - **name**: New name (optional)
    - **description**: New description (optional)
    - **department_id**: New department (optional)
    """
    return teams.update_team(db, current_user, team_id, team_update)


@router.delete("/{team_id}", response_model=schemas.TeamDeleteResponse)
def delete_team(
    team_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Soft-delete a team and all of its active projects.

    The response reports how many projects were deleted with it.
    """
    team, deleted_projects_count = teams.soft_delete_team(db, current_user, team_id)
    return schemas.TeamDeleteResponse(
        team=schemas.TeamResponse.model_validate(team),
        deleted_projects_count=deleted_projects_count,
    )


@router.patch("/{team_id}/restore", response_model=schemas.TeamResponse)
def restore_team(
    team_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Restore a soft-deleted team. Its projects stay deleted.
    """
    return teams.restore_team(db, current_user, team_id)


# Team Members endpoints

@router.get("/{team_id}/members", response_model=list[schemas.TeamMemberResponse])
def list_team_members(
    team_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List the active members of a team.
    """
    return teams.list_team_members(db, current_user, team_id)


@router.post("/{team_id}/members", response_model=schemas.MembershipBatchResponse)
def add_team_members(
    team_id: UUID,
    members: schemas.MembersAdd,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Add users to a team as MEMBER.

    - **user_ids**: Users to add. Existing members are skipped and unknown
      users reported; the request fails only if none of the users exist.
    """
    batch = teams.add_team_members(db, current_user, team_id, members.user_ids)
    return batch.to_dict()


@router.delete("/{team_id}/members/{user_id}", response_model=schemas.TeamMemberResponse)
def remove_team_member(
    team_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Remove a member from a team. The only LEADER cannot be removed.
    """
    return teams.remove_team_member(db, current_user, team_id, user_id)


@router.put("/{team_id}/members/{user_id}/role", response_model=schemas.TeamMemberResponse)
def update_team_member_role(
    team_id: UUID,
    user_id: UUID,
    role_update: schemas.TeamMemberRoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change a member's role.

    - **role**: LEADER or MEMBER
    """
    return teams.update_team_member_role(db, current_user, team_id, user_id, role_update.role)
