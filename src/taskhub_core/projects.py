"""Project lifecycle and project membership.

A project always keeps at least one active PROJECT_OWNER. The creator gets
that membership in the same unit of work as the project itself.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .errors import NotFoundError, ValidationError
from .lifecycle import (
    MembershipBatch,
    collect_changes,
    ensure_not_last_elevated,
    ensure_unique_name,
    get_active,
    get_any,
    mark_deleted,
    mark_restored,
    partition_users,
)
from .permissions import Action, chain_for_organization, chain_for_project, chain_for_team, require
from .schemas import parse_enum

logger = logging.getLogger("taskhub-core.projects")

REQUIRED_UPDATE_FIELDS = ("name", "start_date", "end_date", "progress")

NAME_TAKEN = "A project with this name already exists in this team"
LAST_OWNER = "Cannot remove the only project owner. Please assign another owner first."


def validate_window(start_date: datetime, end_date: datetime) -> None:
    """
    Raises:
        ValidationError: If start_date is not strictly before end_date
    """
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date", field="end_date")


def _ensure_name(db: Session, team_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> None:
    ensure_unique_name(
        db, models.Project, name,
        scope=[models.Project.team_id == team_id],
        exclude_id=exclude_id,
        message=NAME_TAKEN,
    )


def _memberships(db: Session, project_id: UUID) -> dict[UUID, models.ProjectMember]:
    rows = db.query(models.ProjectMember).filter(models.ProjectMember.project_id == project_id).all()
    return {row.user_id: row for row in rows}


def _is_active_member(member: Optional[models.ProjectMember]) -> bool:
    return member is not None and member.is_active and member.left_at is None


def _active_owner_count(db: Session, project_id: UUID) -> int:
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == project_id,
        models.ProjectMember.role == models.ProjectRole.PROJECT_OWNER,
        models.ProjectMember.is_active.is_(True),
        models.ProjectMember.left_at.is_(None),
    ).count()


def _enroll(
    db: Session,
    project: models.Project,
    user: models.User,
    role: models.ProjectRole,
    existing: Optional[models.ProjectMember],
) -> models.ProjectMember:
    if existing is not None:
        existing.role = role
        existing.is_active = True
        existing.left_at = None
        existing.joined_at = datetime.utcnow()
        return existing
    member = models.ProjectMember(project_id=project.id, user_id=user.id, role=role)
    db.add(member)
    return member


def cascade_delete_projects(db: Session, team_id: UUID, now: datetime) -> int:
    """
    Soft-delete every active project of a team.

    This is the only lifecycle cascade: it reaches projects and nothing
    below them (members, sprints and tasks are left as they are).

    Returns:
        Number of projects soft-deleted
    """
    projects = db.query(models.Project).filter(
        models.Project.team_id == team_id,
        models.Project.deleted_at.is_(None),
    ).all()
    for project in projects:
        project.deleted_at = now
    return len(projects)


def create_project(db: Session, actor: models.User, data: schemas.ProjectCreate) -> models.Project:
    """
    Create a project and the creator's PROJECT_OWNER membership.

    Initial members join as MEMBER; unknown user ids are skipped.

    Raises:
        NotFoundError: If the team is missing or deleted
        ValidationError: If the date window is empty or inverted
        ConflictError: If the name is taken within the team
        PermissionDeniedError: Unless admin, organization owner, department manager or team leader
    """
    with unit_of_work(db):
        team = get_active(db, models.Team, data.team_id, "Team")
        require(db, actor, Action.CREATE, chain_for_team(team), "projects in this team")
        validate_window(data.start_date, data.end_date)
        _ensure_name(db, team.id, data.name)

        project = models.Project(
            organization_id=team.organization_id,
            team_id=team.id,
            name=data.name,
            description=data.description,
            start_date=data.start_date,
            end_date=data.end_date,
            status=data.status,
            priority=data.priority,
            progress=0,
            budget=data.budget,
            created_by=actor.id,
            last_modified_by=actor.id,
        )
        db.add(project)
        db.flush()

        _enroll(db, project, actor, models.ProjectRole.PROJECT_OWNER, None)
        initial = [user_id for user_id in dict.fromkeys(data.member_ids) if user_id != actor.id]
        added = 0
        if initial:
            for user in db.query(models.User).filter(
                models.User.id.in_(initial),
                models.User.is_active.is_(True),
                models.User.deleted_at.is_(None),
            ).all():
                _enroll(db, project, user, models.ProjectRole.MEMBER, None)
                added += 1
        db.flush()

        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' created",
            {"team_id": str(team.id), "initial_members": added},
        )

    logger.info(f"Created project '{project.name}' (ID: {project.id})")
    return project


def get_project(db: Session, actor: models.User, project_id: UUID) -> models.Project:
    project = get_active(db, models.Project, project_id, "Project")
    require(db, actor, Action.READ, chain_for_project(project), "this project")
    return project


def list_projects(
    db: Session,
    actor: models.User,
    team_id: Optional[UUID] = None,
    organization_id: Optional[UUID] = None,
    status_filter: Optional[models.ProjectStatus] = None,
    priority_filter: Optional[models.ProjectPriority] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Project], int]:
    """
    List active projects of a team or of a whole organization.

    Raises:
        ValidationError: If neither team_id nor organization_id is given
    """
    query = db.query(models.Project).filter(models.Project.deleted_at.is_(None))

    if team_id:
        team = get_active(db, models.Team, team_id, "Team")
        require(db, actor, Action.READ, chain_for_team(team), "projects in this team")
        query = query.filter(models.Project.team_id == team.id)
    elif organization_id:
        organization = get_active(db, models.Organization, organization_id, "Organization")
        require(db, actor, Action.READ, chain_for_organization(organization), "projects in this organization")
        query = query.filter(models.Project.organization_id == organization.id)
    else:
        raise ValidationError("team_id or organization_id is required", field="team_id")

    if status_filter:
        query = query.filter(models.Project.status == status_filter)
    if priority_filter:
        query = query.filter(models.Project.priority == priority_filter)
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Project.name.ilike(search_pattern),
                models.Project.description.ilike(search_pattern),
            )
        )

    total = query.count()
    items = query.order_by(models.Project.created_at.desc()).offset(skip).limit(limit).all()
    return items, total


def update_project(
    db: Session,
    actor: models.User,
    project_id: UUID,
    data: schemas.ProjectUpdate,
) -> models.Project:
    """
    Update project details. The date window is re-validated against the
    merged old and new values.
    """
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.UPDATE, chain_for_project(project), "this project")

        changes = collect_changes(data, REQUIRED_UPDATE_FIELDS)
        if "start_date" in changes or "end_date" in changes:
            validate_window(
                changes.get("start_date") or project.start_date,
                changes.get("end_date") or project.end_date,
            )
        if changes.get("name") and changes["name"] != project.name:
            _ensure_name(db, project.team_id, changes["name"], exclude_id=project.id)

        for key, value in changes.items():
            setattr(project, key, value)
        project.last_modified_by = actor.id

        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated project {project.id}")
    return project


def update_project_status(db: Session, actor: models.User, project_id: UUID, status: str) -> models.Project:
    """
    Set the project status. Requires update rights on the project.

    Raises:
        ValidationError: If ``status`` is not a ProjectStatus value
    """
    new_status = parse_enum(models.ProjectStatus, status, "status")
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.UPDATE, chain_for_project(project), "this project")

        previous = project.status
        project.status = new_status
        project.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.STATUS_CHANGED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' status changed from {previous.value} to {new_status.value}",
            {"from": previous.value, "to": new_status.value},
        )

    logger.info(f"Project {project.id} status: {previous.value} → {new_status.value}")
    return project


def update_project_priority(db: Session, actor: models.User, project_id: UUID, priority: str) -> models.Project:
    """
    Set the project priority. Requires update rights on the project.

    Raises:
        ValidationError: If ``priority`` is not a ProjectPriority value
    """
    new_priority = parse_enum(models.ProjectPriority, priority, "priority")
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.UPDATE, chain_for_project(project), "this project")

        previous = project.priority
        project.priority = new_priority
        project.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' priority changed from {previous.value} to {new_priority.value}",
            {"from": previous.value, "to": new_priority.value},
        )

    logger.info(f"Project {project.id} priority: {previous.value} → {new_priority.value}")
    return project


def soft_delete_project(db: Session, actor: models.User, project_id: UUID) -> models.Project:
    with unit_of_work(db):
        project = get_any(db, models.Project, project_id, "Project")
        require(db, actor, Action.DELETE, chain_for_project(project), "this project")
        mark_deleted(project, "Project")
        project.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' deleted",
        )

    logger.info(f"Soft-deleted project {project.id}")
    return project


def restore_project(db: Session, actor: models.User, project_id: UUID) -> models.Project:
    """
    Restore a project.

    Raises:
        NotFoundError: If the project's team is still deleted
        ConflictError: If the project is not deleted or its name was reused
    """
    with unit_of_work(db):
        project = get_any(db, models.Project, project_id, "Project")
        require(db, actor, Action.RESTORE, chain_for_project(project), "this project")
        if project.team.deleted_at is not None:
            raise NotFoundError("Team not found or deleted. Restore the team first.")
        mark_restored(project, "Project")
        _ensure_name(db, project.team_id, project.name, exclude_id=project.id)
        project.last_modified_by = actor.id
        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Project '{project.name}' restored",
        )

    logger.info(f"Restored project {project.id}")
    return project


# ============================================================================
# Membership
# ============================================================================

def list_project_members(db: Session, actor: models.User, project_id: UUID) -> list[models.ProjectMember]:
    project = get_project(db, actor, project_id)
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == project.id,
        models.ProjectMember.is_active.is_(True),
        models.ProjectMember.left_at.is_(None),
    ).order_by(models.ProjectMember.joined_at).all()


def is_active_project_member(db: Session, project_id: UUID, user_id: UUID) -> bool:
    return _is_active_member(_memberships(db, project_id).get(user_id))


def add_project_members(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_ids: list[UUID],
    role: models.ProjectRole = models.ProjectRole.MEMBER,
) -> MembershipBatch:
    """
    Add users to a project with ``role``.

    Raises:
        NotFoundError: If the project is missing or none of the users exist
    """
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_project(project), "this project")

        memberships = _memberships(db, project.id)
        active_ids = [uid for uid, row in memberships.items() if _is_active_member(row)]
        batch = partition_users(db, user_ids, active_ids)

        for user in batch.to_add:
            _enroll(db, project, user, role, memberships.get(user.id))
        db.flush()

        if batch.to_add:
            record_activity(
                db, actor, models.ActionType.MEMBER_ADDED, models.EntityType.PROJECT,
                project.id, project.organization_id,
                f"{len(batch.to_add)} member(s) added to project '{project.name}'",
                {**batch.to_dict(), "role": role.value},
            )

    logger.info(
        f"Project {project_id}: added {len(batch.to_add)}, skipped {len(batch.skipped)}, "
        f"not found {len(batch.not_found)}"
    )
    return batch


def remove_project_member(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
) -> models.ProjectMember:
    """
    Remove a member from a project (sets left_at).

    Raises:
        NotFoundError: If the user is not an active member
        ConflictError: (400) If they are the only PROJECT_OWNER
    """
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_project(project), "this project")

        member = _memberships(db, project.id).get(user_id)
        if not _is_active_member(member):
            raise NotFoundError("Project member not found")
        if member.role == models.ProjectRole.PROJECT_OWNER:
            ensure_not_last_elevated(_active_owner_count(db, project.id) - 1, LAST_OWNER)

        member.is_active = False
        member.left_at = datetime.utcnow()
        record_activity(
            db, actor, models.ActionType.MEMBER_REMOVED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Member {user_id} removed from project '{project.name}'",
            {"user_id": str(user_id)},
        )

    logger.info(f"Removed member {user_id} from project {project_id}")
    return member


def update_project_member_role(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
    role: models.ProjectRole,
) -> models.ProjectMember:
    """
    Raises:
        NotFoundError: If the user is not an active member
        ConflictError: (400) If it would demote the only PROJECT_OWNER
    """
    with unit_of_work(db):
        project = get_active(db, models.Project, project_id, "Project")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_project(project), "this project")

        member = _memberships(db, project.id).get(user_id)
        if not _is_active_member(member):
            raise NotFoundError("Project member not found")
        if member.role == role:
            return member
        if member.role == models.ProjectRole.PROJECT_OWNER:
            ensure_not_last_elevated(
                _active_owner_count(db, project.id) - 1,
                "Cannot demote the only project owner. Please assign another owner first.",
            )

        previous = member.role
        member.role = role
        record_activity(
            db, actor, models.ActionType.MEMBER_ROLE_CHANGED, models.EntityType.PROJECT,
            project.id, project.organization_id,
            f"Member {user_id} role changed from {previous.value} to {role.value}",
            {"user_id": str(user_id), "from": previous.value, "to": role.value},
        )

    logger.info(f"Changed role of {user_id} in project {project_id} to {role.value}")
    return member
