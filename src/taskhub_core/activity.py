"""Activity log emitter.

Rows are written inside the caller's unit of work, so a failed insert
aborts the mutation it describes.
"""
import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("taskhub-core.activity")


def record_activity(
    db: Session,
    actor: Optional[models.User],
    action: models.ActionType,
    entity_type: models.EntityType,
    entity_id: UUID,
    organization_id: Optional[UUID],
    description: str,
    details: Optional[dict[str, Any]] = None,
) -> models.ActivityLog:
    """
    Append an activity log entry.

    The row is flushed but not committed; the surrounding unit of work
    decides whether it persists. Store errors propagate unchanged.

    Args:
        db: Database session
        actor: User performing the action
        action: What happened
        entity_type: Kind of entity affected
        entity_id: UUID of the entity affected
        organization_id: Owning organization, if any
        description: Human-readable summary
        details: Optional structured payload

    Returns:
        The new ActivityLog row
    """
    entry = models.ActivityLog(
        user_id=actor.id if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        organization_id=organization_id,
        description=description,
        details=details,
    )
    db.add(entry)
    db.flush()
    logger.debug(f"Activity: {entity_type.value} {entity_id} {action.value}")
    return entry


def list_activity(
    db: Session,
    organization_id: UUID,
    skip: int = 0,
    limit: int = 50,
    entity_type: Optional[models.EntityType] = None,
    entity_id: Optional[UUID] = None,
) -> tuple[list[models.ActivityLog], int]:
    """List an organization's activity, newest first, with total count."""
    query = db.query(models.ActivityLog).filter(
        models.ActivityLog.organization_id == organization_id
    )
    if entity_type:
        query = query.filter(models.ActivityLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.ActivityLog.entity_id == entity_id)

    total = query.count()
    items = (
        query.order_by(models.ActivityLog.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return items, total
