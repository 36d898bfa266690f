"""Organization lifecycle: creation, ownership, self-service membership,
soft delete and restore.

Deleting an organization does not cascade to its departments or teams.
"""
import logging
import secrets
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .errors import ConflictError, NotFoundError
from .lifecycle import (
    collect_changes,
    ensure_not_last_elevated,
    ensure_unique_name,
    get_active,
    get_active_user,
    get_any,
    mark_deleted,
    mark_restored,
)
from .permissions import Action, chain_for_organization, require

logger = logging.getLogger("taskhub-core.organizations")

REQUIRED_UPDATE_FIELDS = ("name",)

NAME_TAKEN = "Organization with this name already exists"


def generate_join_code() -> str:
    """Opaque token granting self-service membership."""
    return secrets.token_urlsafe(12)


def _owner_ids(db: Session, organization_id: UUID) -> list[UUID]:
    return [
        row.user_id
        for row in db.query(models.OrganizationOwner).filter(
            models.OrganizationOwner.organization_id == organization_id
        ).all()
    ]


def create_organization(
    db: Session,
    actor: models.User,
    data: schemas.OrganizationCreate,
) -> models.Organization:
    """
    Create an organization and its first owner in one unit of work.

    Organizations created by a platform admin start verified. The owner is
    the creator unless ``owner_id`` nominates someone else.

    Raises:
        ConflictError: If an active organization already has the name
        NotFoundError: If the nominated owner does not exist
    """
    with unit_of_work(db):
        ensure_unique_name(db, models.Organization, data.name, message=NAME_TAKEN)
        owner = get_active_user(db, data.owner_id, "Owner") if data.owner_id else actor

        organization = models.Organization(
            name=data.name,
            description=data.description,
            contact_email=data.contact_email,
            is_verified=actor.role == models.UserRole.ADMIN,
            join_code=generate_join_code(),
            created_by=actor.id,
        )
        db.add(organization)
        db.flush()

        db.add(models.OrganizationOwner(organization_id=organization.id, user_id=owner.id))
        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Organization '{organization.name}' created",
            {"owner_id": str(owner.id), "is_verified": organization.is_verified},
        )

    logger.info(f"Created organization '{organization.name}' (ID: {organization.id})")
    return organization


def get_organization(db: Session, actor: models.User, organization_id: UUID) -> models.Organization:
    organization = get_active(db, models.Organization, organization_id, "Organization")
    require(db, actor, Action.READ, chain_for_organization(organization), "this organization")
    return organization


def list_organizations(
    db: Session,
    actor: models.User,
    skip: int = 0,
    limit: int = 50,
    search: Optional[str] = None,
) -> tuple[list[models.Organization], int]:
    """
    List active organizations visible to the actor.

    Platform admins see every organization; everyone else sees the ones
    they own or belong to.
    """
    query = db.query(models.Organization).filter(models.Organization.deleted_at.is_(None))

    if actor.role != models.UserRole.ADMIN:
        owned = db.query(models.OrganizationOwner.organization_id).filter(
            models.OrganizationOwner.user_id == actor.id
        )
        joined = db.query(models.OrganizationMember.organization_id).filter(
            models.OrganizationMember.user_id == actor.id,
            models.OrganizationMember.left_at.is_(None),
        )
        query = query.filter(or_(models.Organization.id.in_(owned), models.Organization.id.in_(joined)))

    if search:
        query = query.filter(models.Organization.name.ilike(f"%{search}%"))

    total = query.count()
    items = query.order_by(models.Organization.created_at.desc()).offset(skip).limit(limit).all()
    return items, total


def update_organization(
    db: Session,
    actor: models.User,
    organization_id: UUID,
    data: schemas.OrganizationUpdate,
) -> models.Organization:
    with unit_of_work(db):
        organization = get_active(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.UPDATE, chain_for_organization(organization), "this organization")

        changes = collect_changes(data, REQUIRED_UPDATE_FIELDS)
        if changes.get("name") and changes["name"] != organization.name:
            ensure_unique_name(
                db, models.Organization, changes["name"],
                exclude_id=organization.id, message=NAME_TAKEN,
            )
        for key, value in changes.items():
            setattr(organization, key, value)

        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Organization '{organization.name}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated organization {organization.id}")
    return organization


def soft_delete_organization(db: Session, actor: models.User, organization_id: UUID) -> models.Organization:
    """Soft-delete an organization. Departments and teams are left untouched."""
    with unit_of_work(db):
        organization = get_any(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.DELETE, chain_for_organization(organization), "this organization")
        mark_deleted(organization, "Organization")
        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Organization '{organization.name}' deleted",
        )

    logger.info(f"Soft-deleted organization {organization.id}")
    return organization


def restore_organization(db: Session, actor: models.User, organization_id: UUID) -> models.Organization:
    with unit_of_work(db):
        organization = get_any(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.RESTORE, chain_for_organization(organization), "this organization")
        mark_restored(organization, "Organization")
        ensure_unique_name(
            db, models.Organization, organization.name,
            exclude_id=organization.id, message=NAME_TAKEN,
        )
        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Organization '{organization.name}' restored",
        )

    logger.info(f"Restored organization {organization.id}")
    return organization


def join_organization(db: Session, actor: models.User, join_code: str) -> models.OrganizationMember:
    """
    Enroll the actor as a plain member using the organization's join code.

    Raises:
        NotFoundError: If no active organization has the code
        ConflictError: If the actor already owns or belongs to it
    """
    with unit_of_work(db):
        organization = db.query(models.Organization).filter(
            models.Organization.join_code == join_code,
            models.Organization.deleted_at.is_(None),
        ).first()
        if organization is None:
            raise NotFoundError("Invalid join code")

        if actor.id in _owner_ids(db, organization.id):
            raise ConflictError("You are already an owner of this organization")

        membership = db.query(models.OrganizationMember).filter(
            models.OrganizationMember.organization_id == organization.id,
            models.OrganizationMember.user_id == actor.id,
        ).first()
        if membership is not None and membership.left_at is None:
            raise ConflictError("You are already a member of this organization")

        if membership is None:
            membership = models.OrganizationMember(organization_id=organization.id, user_id=actor.id)
            db.add(membership)
        else:
            membership.left_at = None
            membership.joined_at = datetime.utcnow()
        db.flush()

        record_activity(
            db, actor, models.ActionType.MEMBER_ADDED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"User {actor.email} joined organization '{organization.name}'",
        )

    logger.info(f"User {actor.id} joined organization {organization.id}")
    return membership


def regenerate_join_code(db: Session, actor: models.User, organization_id: UUID) -> models.Organization:
    with unit_of_work(db):
        organization = get_active(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.UPDATE, chain_for_organization(organization), "this organization")
        organization.join_code = generate_join_code()
        record_activity(
            db, actor, models.ActionType.SETTINGS_CHANGED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Join code regenerated for organization '{organization.name}'",
        )

    logger.info(f"Regenerated join code for organization {organization.id}")
    return organization


def add_owner(
    db: Session,
    actor: models.User,
    organization_id: UUID,
    user_id: UUID,
) -> models.OrganizationOwner:
    """
    Add an owner to an organization.

    Raises:
        NotFoundError: If the organization or user is missing
        ConflictError: If the user is already an owner
    """
    with unit_of_work(db):
        organization = get_active(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_organization(organization), "this organization")
        user = get_active_user(db, user_id)

        if user.id in _owner_ids(db, organization.id):
            raise ConflictError("User is already an owner of this organization")

        owner = models.OrganizationOwner(organization_id=organization.id, user_id=user.id)
        db.add(owner)
        db.flush()
        record_activity(
            db, actor, models.ActionType.OWNER_ADDED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"{user.email} added as owner of '{organization.name}'",
            {"user_id": str(user.id)},
        )

    logger.info(f"Added owner {user_id} to organization {organization_id}")
    return owner


def remove_owner(db: Session, actor: models.User, organization_id: UUID, user_id: UUID) -> None:
    """
    Remove an owner from an organization.

    Raises:
        NotFoundError: If the user is not an owner
        ConflictError: (400) If they are the only owner
    """
    with unit_of_work(db):
        organization = get_active(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_organization(organization), "this organization")

        owner_ids = _owner_ids(db, organization.id)
        if user_id not in owner_ids:
            raise NotFoundError("Owner not found")
        ensure_not_last_elevated(
            len(owner_ids) - 1,
            "Cannot remove the only owner of the organization. Please add another owner first.",
        )

        db.query(models.OrganizationOwner).filter(
            models.OrganizationOwner.organization_id == organization.id,
            models.OrganizationOwner.user_id == user_id,
        ).delete(synchronize_session=False)
        record_activity(
            db, actor, models.ActionType.OWNER_REMOVED, models.EntityType.ORGANIZATION,
            organization.id, organization.id,
            f"Owner {user_id} removed from '{organization.name}'",
            {"user_id": str(user_id)},
        )

    logger.info(f"Removed owner {user_id} from organization {organization_id}")


def list_owners(db: Session, actor: models.User, organization_id: UUID) -> list[models.OrganizationOwner]:
    organization = get_organization(db, actor, organization_id)
    return db.query(models.OrganizationOwner).filter(
        models.OrganizationOwner.organization_id == organization.id
    ).order_by(models.OrganizationOwner.created_at).all()
