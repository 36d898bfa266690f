"""Organizations API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import models, organizations, schemas
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["organizations"])


@router.post("/", response_model=schemas.OrganizationResponse, status_code=201)
def create_organization(
    organization: schemas.OrganizationCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new organization.

    - **name**: Organization name (unique among active organizations)
    - **description**: Optional description
    - **contact_email**: Optional contact address
    - **owner_id**: Optional owner (defaults to the caller)

    Organizations created by a platform admin start verified.
    """
    return organizations.create_organization(db, current_user, organization)


@router.get("/", response_model=schemas.OrganizationListResponse)
def list_organizations(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in name"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List organizations the caller owns or belongs to.

    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    - **search**: Search text in name
    """
    skip = (page - 1) * page_size
    items, total = organizations.list_organizations(
        db, current_user, skip=skip, limit=page_size, search=search,
    )
    return schemas.OrganizationListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.post("/join", response_model=schemas.OrganizationMemberResponse, status_code=201)
def join_organization(
    request: schemas.JoinOrganizationRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Join an organization with its join code.
    """
    return organizations.join_organization(db, current_user, request.join_code)


@router.get("/{organization_id}", response_model=schemas.OrganizationResponse)
def get_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Get a specific organization by ID.
    """
    return organizations.get_organization(db, current_user, organization_id)


@router.put("/{organization_id}", response_model=schemas.OrganizationResponse)
def update_organization(
    organization_id: UUID,
    organization_update: schemas.OrganizationUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update an organization.

    - **name**: New name (optional)
    - **description**: New description (optional)
    - **contact_email**: New contact address (optional)
    """
    return organizations.update_organization(db, current_user, organization_id, organization_update)


@router.delete("/{organization_id}", response_model=schemas.OrganizationResponse)
def delete_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Soft-delete an organization. Its departments and teams are not touched.
    """
    return organizations.soft_delete_organization(db, current_user, organization_id)


@router.patch("/{organization_id}/restore", response_model=schemas.OrganizationResponse)
def restore_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Restore a soft-deleted organization.
    """
    return organizations.restore_organization(db, current_user, organization_id)


@router.post("/{organization_id}/join-code", response_model=schemas.OrganizationResponse)
def regenerate_join_code(
    organization_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Replace the organization's join code. The old code stops working.
    """
    return organizations.regenerate_join_code(db, current_user, organization_id)


# Owner endpoints

@router.get("/{organization_id}/owners", response_model=list[schemas.OrganizationOwnerResponse])
def list_owners(
    organization_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List the owners of an organization.
    """
    return organizations.list_owners(db, current_user, organization_id)


@router.post("/{organization_id}/owners", response_model=schemas.OrganizationOwnerResponse, status_code=201)
def add_owner(
    organization_id: UUID,
    owner: schemas.OwnerRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Add an owner to an organization.

    - **user_id**: User to promote
    """
    return organizations.add_owner(db, current_user, organization_id, owner.user_id)


@router.delete("/{organization_id}/owners/{user_id}", status_code=204)
def remove_owner(
    organization_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Remove an owner. The last owner cannot be removed.
    """
    organizations.remove_owner(db, current_user, organization_id, user_id)
