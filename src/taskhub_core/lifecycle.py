"""Shared lifecycle helpers: active lookups, scoped name uniqueness,
soft delete / restore guards and membership batch bookkeeping.

The per-entity modules (organizations, departments, teams, projects,
sprints, tasks) build on these so every entity follows the same rules.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("taskhub-core.lifecycle")


def get_active(db: Session, model, entity_id: UUID, label: str):
    """
    Fetch a non-deleted row by id.

    Raises:
        NotFoundError: If the row is missing or soft-deleted
    """
    row = db.query(model).filter(model.id == entity_id, model.deleted_at.is_(None)).first()
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row


def get_any(db: Session, model, entity_id: UUID, label: str):
    """Fetch a row by id whether or not it is soft-deleted."""
    row = db.query(model).filter(model.id == entity_id).first()
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row


def collect_changes(data, required: Iterable[str] = ()) -> dict[str, Any]:
    """
    Return the fields explicitly set on an update schema.

    Raises:
        ValidationError: If a field in ``required`` was sent as null
    """
    changes = data.model_dump(exclude_unset=True)
    for name in required:
        if name in changes and changes[name] is None:
            raise ValidationError(f"{name} is required", field=name)
    return changes


def get_active_user(db: Session, user_id: UUID, label: str = "User") -> models.User:
    user = db.query(models.User).filter(
        models.User.id == user_id,
        models.User.is_active.is_(True),
        models.User.deleted_at.is_(None),
    ).first()
    if user is None:
        raise NotFoundError(f"{label} not found")
    return user


def ensure_unique_name(
    db: Session,
    model,
    name: str,
    scope: Iterable[Any] = (),
    exclude_id: Optional[UUID] = None,
    message: str = "An entity with this name already exists",
    status_code: int = 409,
) -> None:
    """
    Reject a name already used by an active sibling in scope.

    Deleted rows never block a name.

    Args:
        db: Database session
        model: Model class with ``name`` and ``deleted_at`` columns
        name: Candidate name
        scope: Extra filter clauses defining the sibling set
        exclude_id: Row to ignore (the entity being renamed or restored)
        message: Conflict message
        status_code: Status the conflict surfaces as

    Raises:
        ConflictError: If an active sibling already has the name
    """
    query = db.query(model).filter(model.name == name, model.deleted_at.is_(None), *scope)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    duplicate = query.first()
    if duplicate is not None:
        logger.warning(f"Duplicate name '{name}' for {model.__tablename__}")
        raise ConflictError(message, status_code=status_code, conflicting_id=str(duplicate.id))


def mark_deleted(entity, label: str, now: Optional[datetime] = None) -> None:
    """
    Soft-delete one row.

    Raises:
        ConflictError: (400) If the row is already deleted
    """
    if entity.deleted_at is not None:
        raise ConflictError(f"{label} is already deleted", status_code=400)
    entity.deleted_at = now or datetime.utcnow()


def mark_restored(entity, label: str) -> None:
    """
    Clear the soft-delete timestamp of one row.

    Raises:
        ConflictError: (400) If the row is not deleted
    """
    if entity.deleted_at is None:
        raise ConflictError(f"{label} is not deleted", status_code=400)
    entity.deleted_at = None


def ensure_not_last_elevated(remaining: int, message: str) -> None:
    """
    Reject a change that would leave a scope without an elevated member.

    Args:
        remaining: Elevated members left after the change
        message: Conflict message

    Raises:
        ConflictError: (400) If nobody would remain
    """
    if remaining < 1:
        logger.warning(f"Blocked removal of last elevated member: {message}")
        raise ConflictError(message, status_code=400)


@dataclass
class MembershipBatch:
    """Outcome of a batch membership mutation."""

    to_add: list[models.User] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    not_found: list[UUID] = field(default_factory=list)

    @property
    def added(self) -> list[UUID]:
        return [user.id for user in self.to_add]

    def to_dict(self) -> dict[str, Any]:
        return {
            "added_count": len(self.to_add),
            "skipped_count": len(self.skipped),
            "not_found_count": len(self.not_found),
            "added": [str(user_id) for user_id in self.added],
            "skipped": [str(user_id) for user_id in self.skipped],
            "not_found": [str(user_id) for user_id in self.not_found],
        }


def partition_users(
    db: Session,
    user_ids: Iterable[UUID],
    existing_member_ids: Iterable[UUID],
) -> MembershipBatch:
    """
    Split requested user ids into users to add, existing members and unknowns.

    Duplicates in the request are collapsed. Unknown ids are reported but do
    not abort the batch unless every id is unknown.

    Raises:
        NotFoundError: If none of the requested users exist
    """
    requested = list(dict.fromkeys(user_ids))
    existing = set(existing_member_ids)

    users = {
        user.id: user
        for user in db.query(models.User).filter(
            models.User.id.in_(requested),
            models.User.is_active.is_(True),
            models.User.deleted_at.is_(None),
        ).all()
    } if requested else {}

    batch = MembershipBatch()
    for user_id in requested:
        if user_id not in users:
            batch.not_found.append(user_id)
        elif user_id in existing:
            batch.skipped.append(user_id)
        else:
            batch.to_add.append(users[user_id])

    if requested and len(batch.not_found) == len(requested):
        raise NotFoundError("None of the specified users were found", not_found=[str(u) for u in requested])
    return batch
