"""Team lifecycle and team membership.

A team always keeps at least one active LEADER. Deleting a team cascades
exactly one level down, to its active projects; restoring it does not
bring those projects back.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models, schemas
from .activity import record_activity
from .database import unit_of_work
from .errors import NotFoundError
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
from .permissions import Action, EntityChain, chain_for_organization, chain_for_team, require
from .projects import cascade_delete_projects

logger = logging.getLogger("taskhub-core.teams")

REQUIRED_UPDATE_FIELDS = ("name",)

NAME_TAKEN = "A team with this name already exists in this organization"
LAST_LEADER = "Cannot remove the only team leader. Please assign another leader first."


def _ensure_name(db: Session, organization_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> None:
    ensure_unique_name(
        db, models.Team, name,
        scope=[models.Team.organization_id == organization_id],
        exclude_id=exclude_id,
        message=NAME_TAKEN,
    )


def _get_department(db: Session, organization_id: UUID, department_id: UUID) -> models.Department:
    department = get_active(db, models.Department, department_id, "Department")
    if department.organization_id != organization_id:
        raise NotFoundError("Department not found")
    return department


def _memberships(db: Session, team_id: UUID) -> dict[UUID, models.TeamMember]:
    """All membership rows of a team (active or not), keyed by user id."""
    rows = db.query(models.TeamMember).filter(models.TeamMember.team_id == team_id).all()
    return {row.user_id: row for row in rows}


def _active_leader_count(db: Session, team_id: UUID) -> int:
    return db.query(models.TeamMember).filter(
        models.TeamMember.team_id == team_id,
        models.TeamMember.role == models.TeamMemberRole.LEADER,
        models.TeamMember.is_active.is_(True),
        models.TeamMember.deleted_at.is_(None),
    ).count()


def _enroll(
    db: Session,
    team: models.Team,
    user: models.User,
    role: models.TeamMemberRole,
    existing: Optional[models.TeamMember],
) -> models.TeamMember:
    """Create a membership row, or reactivate a previously removed one."""
    if existing is not None:
        existing.role = role
        existing.is_active = True
        existing.deleted_at = None
        existing.joined_at = datetime.utcnow()
        return existing
    member = models.TeamMember(team_id=team.id, user_id=user.id, role=role)
    db.add(member)
    return member


def create_team(db: Session, actor: models.User, data: schemas.TeamCreate) -> models.Team:
    """
    Create a team with the actor as its LEADER.

    Initial members are enrolled as MEMBER in the same unit of work; unknown
    user ids are skipped.

    Raises:
        NotFoundError: If the organization or department is missing
        ConflictError: If the name is taken within the organization
        PermissionDeniedError: Unless admin, organization owner or department manager
    """
    with unit_of_work(db):
        organization = get_active(db, models.Organization, data.organization_id, "Organization")
        chain = chain_for_organization(organization)
        if data.department_id:
            chain = EntityChain(
                organization=organization,
                department=_get_department(db, organization.id, data.department_id),
            )
        require(db, actor, Action.CREATE, chain, "teams in this organization")
        _ensure_name(db, organization.id, data.name)

        team = models.Team(
            organization_id=organization.id,
            department_id=data.department_id,
            name=data.name,
            description=data.description,
            created_by=actor.id,
        )
        db.add(team)
        db.flush()

        _enroll(db, team, actor, models.TeamMemberRole.LEADER, None)
        initial = [user_id for user_id in dict.fromkeys(data.member_ids) if user_id != actor.id]
        added = 0
        if initial:
            for user in db.query(models.User).filter(
                models.User.id.in_(initial),
                models.User.is_active.is_(True),
                models.User.deleted_at.is_(None),
            ).all():
                _enroll(db, team, user, models.TeamMemberRole.MEMBER, None)
                added += 1
        db.flush()

        record_activity(
            db, actor, models.ActionType.CREATED, models.EntityType.TEAM,
            team.id, organization.id,
            f"Team '{team.name}' created",
            {"initial_members": added, "skipped_members": len(initial) - added},
        )

    logger.info(f"Created team '{team.name}' (ID: {team.id}) with {added} initial members")
    return team


def get_team(db: Session, actor: models.User, team_id: UUID) -> models.Team:
    team = get_active(db, models.Team, team_id, "Team")
    require(db, actor, Action.READ, chain_for_team(team), "this team")
    return team


def list_teams(
    db: Session,
    actor: models.User,
    organization_id: UUID,
    department_id: Optional[UUID] = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Team], int]:
    organization = get_active(db, models.Organization, organization_id, "Organization")
    require(db, actor, Action.READ, chain_for_organization(organization), "teams in this organization")

    query = db.query(models.Team).filter(
        models.Team.organization_id == organization.id,
        models.Team.deleted_at.is_(None),
    )
    if department_id:
        query = query.filter(models.Team.department_id == department_id)

    total = query.count()
    items = query.order_by(models.Team.name).offset(skip).limit(limit).all()
    return items, total


def update_team(db: Session, actor: models.User, team_id: UUID, data: schemas.TeamUpdate) -> models.Team:
    with unit_of_work(db):
        team = get_active(db, models.Team, team_id, "Team")
        require(db, actor, Action.UPDATE, chain_for_team(team), "this team")

        changes = collect_changes(data, REQUIRED_UPDATE_FIELDS)
        if changes.get("name") and changes["name"] != team.name:
            _ensure_name(db, team.organization_id, changes["name"], exclude_id=team.id)
        if changes.get("department_id"):
            _get_department(db, team.organization_id, changes["department_id"])
        for key, value in changes.items():
            setattr(team, key, value)

        record_activity(
            db, actor, models.ActionType.UPDATED, models.EntityType.TEAM,
            team.id, team.organization_id,
            f"Team '{team.name}' updated",
            {"fields": sorted(changes)},
        )

    logger.info(f"Updated team {team.id}")
    return team


def soft_delete_team(db: Session, actor: models.User, team_id: UUID) -> tuple[models.Team, int]:
    """
    Soft-delete a team and its active projects.

    Returns:
        Tuple of (team, number of projects soft-deleted with it)

    Raises:
        ConflictError: (400) If the team is already deleted
    """
    with unit_of_work(db):
        team = get_any(db, models.Team, team_id, "Team")
        require(db, actor, Action.DELETE, chain_for_team(team), "this team")

        now = datetime.utcnow()
        mark_deleted(team, "Team", now)
        deleted_projects_count = cascade_delete_projects(db, team.id, now)

        record_activity(
            db, actor, models.ActionType.DELETED, models.EntityType.TEAM,
            team.id, team.organization_id,
            f"Team '{team.name}' deleted with {deleted_projects_count} project(s)",
            {"deleted_projects_count": deleted_projects_count},
        )

    logger.info(f"Soft-deleted team {team.id} and {deleted_projects_count} project(s)")
    return team, deleted_projects_count


def restore_team(db: Session, actor: models.User, team_id: UUID) -> models.Team:
    """Restore a team. Projects deleted along with it stay deleted."""
    with unit_of_work(db):
        team = get_any(db, models.Team, team_id, "Team")
        require(db, actor, Action.RESTORE, chain_for_team(team), "this team")
        mark_restored(team, "Team")
        _ensure_name(db, team.organization_id, team.name, exclude_id=team.id)
        record_activity(
            db, actor, models.ActionType.RESTORED, models.EntityType.TEAM,
            team.id, team.organization_id,
            f"Team '{team.name}' restored",
        )

    logger.info(f"Restored team {team.id}")
    return team


# ============================================================================
# Membership
# ============================================================================

def list_team_members(db: Session, actor: models.User, team_id: UUID) -> list[models.TeamMember]:
    team = get_team(db, actor, team_id)
    return db.query(models.TeamMember).filter(
        models.TeamMember.team_id == team.id,
        models.TeamMember.is_active.is_(True),
        models.TeamMember.deleted_at.is_(None),
    ).order_by(models.TeamMember.joined_at).all()


def add_team_members(
    db: Session,
    actor: models.User,
    team_id: UUID,
    user_ids: list[UUID],
) -> MembershipBatch:
    """
    Add users to a team as MEMBER.

    Existing members are skipped and unknown users reported; the batch is
    applied atomically.

    Raises:
        NotFoundError: If the team is missing or none of the users exist
    """
    with unit_of_work(db):
        team = get_active(db, models.Team, team_id, "Team")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_team(team), "this team")

        memberships = _memberships(db, team.id)
        active_ids = [uid for uid, row in memberships.items() if row.is_active and row.deleted_at is None]
        batch = partition_users(db, user_ids, active_ids)

        for user in batch.to_add:
            _enroll(db, team, user, models.TeamMemberRole.MEMBER, memberships.get(user.id))
        db.flush()

        if batch.to_add:
            record_activity(
                db, actor, models.ActionType.MEMBER_ADDED, models.EntityType.TEAM,
                team.id, team.organization_id,
                f"{len(batch.to_add)} member(s) added to team '{team.name}'",
                batch.to_dict(),
            )

    logger.info(
        f"Team {team_id}: added {len(batch.to_add)}, skipped {len(batch.skipped)}, "
        f"not found {len(batch.not_found)}"
    )
    return batch


def remove_team_member(db: Session, actor: models.User, team_id: UUID, user_id: UUID) -> models.TeamMember:
    """
    Soft-remove a member from a team.

    Raises:
        NotFoundError: If the user is not an active member
        ConflictError: (400) If they are the only LEADER
    """
    with unit_of_work(db):
        team = get_active(db, models.Team, team_id, "Team")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_team(team), "this team")

        member = _memberships(db, team.id).get(user_id)
        if member is None or not member.is_active or member.deleted_at is not None:
            raise NotFoundError("Team member not found")
        if member.role == models.TeamMemberRole.LEADER:
            ensure_not_last_elevated(_active_leader_count(db, team.id) - 1, LAST_LEADER)

        member.is_active = False
        member.deleted_at = datetime.utcnow()
        record_activity(
            db, actor, models.ActionType.MEMBER_REMOVED, models.EntityType.TEAM,
            team.id, team.organization_id,
            f"Member {user_id} removed from team '{team.name}'",
            {"user_id": str(user_id)},
        )

    logger.info(f"Removed member {user_id} from team {team_id}")
    return member


def update_team_member_role(
    db: Session,
    actor: models.User,
    team_id: UUID,
    user_id: UUID,
    role: models.TeamMemberRole,
) -> models.TeamMember:
    """
    Change a member's role.

    Raises:
        NotFoundError: If the user is not an active member
        ConflictError: (400) If it would demote the only LEADER
    """
    with unit_of_work(db):
        team = get_active(db, models.Team, team_id, "Team")
        require(db, actor, Action.MANAGE_MEMBERS, chain_for_team(team), "this team")

        member = _memberships(db, team.id).get(user_id)
        if member is None or not member.is_active or member.deleted_at is not None:
            raise NotFoundError("Team member not found")
        if member.role == role:
            return member
        if member.role == models.TeamMemberRole.LEADER:
            ensure_not_last_elevated(
                _active_leader_count(db, team.id) - 1,
                "Cannot demote the only team leader. Please assign another leader first.",
            )

        previous = member.role
        member.role = role
        record_activity(
            db, actor, models.ActionType.MEMBER_ROLE_CHANGED, models.EntityType.TEAM,
            team.id, team.organization_id,
            f"Member {user_id} role changed from {previous.value} to {role.value}",
            {"user_id": str(user_id), "from": previous.value, "to": role.value},
        )

    logger.info(f"Changed role of {user_id} in team {team_id} to {role.value}")
    return member
