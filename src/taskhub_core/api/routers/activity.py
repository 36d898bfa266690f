"""Activity log API endpoints."""
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import activity, models, schemas
from taskhub_core.api.dependencies import get_current_user
from taskhub_core.lifecycle import get_active
from taskhub_core.permissions import Action, chain_for_organization, require

from ...database import get_db

router = APIRouter(tags=["activity"])


@router.get("/organizations/{organization_id}/activity", response_model=schemas.ActivityListResponse)
def list_activity(
    organization_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    entity_type: Optional[models.EntityType] = Query(None, description="Filter by entity type"),
    entity_id: Optional[UUID] = Query(None, description="Filter by entity"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List an organization's activity log, newest first.

    - **entity_type**: Filter by entity type
    - **entity_id**: Filter by entity
    """
    organization = get_active(db, models.Organization, organization_id, "Organization")
    require(db, current_user, Action.READ, chain_for_organization(organization), "this organization's activity")

    skip = (page - 1) * page_size
    items, total = activity.list_activity(
        db, organization.id, skip=skip, limit=page_size,
        entity_type=entity_type, entity_id=entity_id,
    )
    return schemas.ActivityListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )
