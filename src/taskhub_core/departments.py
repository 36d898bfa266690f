"""Department lifecycle operations."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .lifecycle import (
    collect_changes,
    ensure_unique_name,
    get_active,
    get_active_user,
    get_any,
    mark_deleted,
    mark_restored,
)
from .permissions import Action, chain_for_department, chain_for_organization, require

logger = logging.getLogger("taskhub-core.departments")

REQUIRED_UPDATE_FIELDS = ("name", "manager_id")

NAME_TAKEN = "A department with this name already exists in this organization"


def _ensure_name(db: Session, organization_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> None:
    ensure_unique_name(
        db, models.Department, name,
        scope=[models.Department.organization_id == organization_id],
        exclude_id=exclude_id,
        message=NAME_TAKEN,
    )


def create_department(
    db: Session,
    actor: models.User,
    data: schemas.DepartmentCreate,
) -> models.Department:
    """
    Create a department run by ``manager_id``.

    Raises:
        NotFoundError: If the organization or manager is missing
        ConflictError: If the name is taken within the organization
        PermissionDeniedError: Unless the actor owns the organization or is an admin
    """
    with unit_of_work(db):
        organization = get_active(db, models.Organization, data.organization_id, "Organization")
        require(
            db, actor, Action.CREATE, chain_for_organization(organization),
            "departments in this organization",
        )
        manager = get_active_user(db, data.manager_id, "Manager")
        _ensure_name(db, organization.id, data.name)

        department = models.Department(
            organization_id=organization.id,
            name=data.name,
            description=data.description,
            manager_id=manager.id,
            created_by=actor.id,
        )
        db.add(department)
        db.flush()
        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.DEPARTMENT,
            department.id, organization.id,
            f"Department '{department.name}' created",
            {"manager_id": str(manager.id)},
        )

    logger.info(f"Created department '{department.name}' (ID: {department.id})")
    return department


def get_department(db: Session, actor: models.User, department_id: UUID) -> models.Department:
    department = get_active(db, models.Department, department_id, "Department")
    require(db, actor, Action.READ, chain_for_department(department), "this department")
    return department


def list_departments(
    db: Session,
    actor: models.User,
    organization_id: UUID,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Department], int]:
    organization = get_active(db, models.Organization, organization_id, "Organization")
    require(db, actor, Action.READ, chain_for_organization(organization), "departments in this organization")

    query = db.query(models.Department).filter(
        models.Department.organization_id == organization.id,
        models.Department.deleted_at.is_(None),
    )
    total = query.count()
    items = query.order_by(models.Department.name).offset(skip).limit(limit).all()
    return items, total


def update_department(
    db: Session,
    actor: models.User,
    department_id: UUID,
    data: schemas.DepartmentUpdate,
) -> models.Department:
    with unit_of_work(db):
        department = get_active(db, models.Department, department_id, "Department")
        require(db, actor, Action.UPDATE, chain_for_department(department), "this department")

        changes = collect_changes(data, REQUIRED_UPDATE_FIELDS)
        if changes.get("name") and changes["name"] != department.name:
            _ensure_name(db, department.organization_id, changes["name"], exclude_id=department.id)
        if changes.get("manager_id"):
            get_active_user(db, changes["manager_id"], "Manager")
        for key, value in changes.items():
            setattr(department, key, value)

        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.DEPARTMENT,
            department.id, department.organization_id,
            f"Department '{department.name}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated department {department.id}")
    return department


def soft_delete_department(db: Session, actor: models.User, department_id: UUID) -> models.Department:
    """Soft-delete a department. Its teams keep running."""
    with unit_of_work(db):
        department = get_any(db, models.Department, department_id, "Department")
        require(db, actor, Action.DELETE, chain_for_department(department), "this department")
        mark_deleted(department, "Department")
        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.DEPARTMENT,
            department.id, department.organization_id,
            f"Department '{department.name}' deleted",
        )

    logger.info(f"Soft-deleted department {department.id}")
    return department


def restore_department(db: Session, actor: models.User, department_id: UUID) -> models.Department:
    with unit_of_work(db):
        department = get_any(db, models.Department, department_id, "Department")
        require(db, actor, Action.RESTORE, chain_for_department(department), "this department")
        mark_restored(department, "Department")
        _ensure_name(db, department.organization_id, department.name, exclude_id=department.id)
        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.DEPARTMENT,
            department.id, department.organization_id,
            f"Department '{department.name}' restored",
        )

    logger.info(f"Restored department {department.id}")
    return department
