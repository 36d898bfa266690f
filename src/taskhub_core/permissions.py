"""Authorization resolver.

Decides whether an actor may perform an action on an entity, from the
actor's global role and its relationship to the entity's owning chain
(organization → department/team → project).

Each rule is an independent predicate ``rule(db, actor, chain) -> bool``.
Rules are combined with logical OR: the first rule that matches allows the
action. A rule whose entity is absent from the chain never matches, so a
team leader has authority over the team's projects but not over sibling
teams.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import PermissionDeniedError

logger = logging.getLogger("taskhub-core.permissions")


class Action(str, enum.Enum):
    """Kinds of action the resolver distinguishes between."""

    READ = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    MANAGE_MEMBERS = "manage members of"


@dataclass
class EntityChain:
    """The owning chain of the entity being acted on. Missing links are None."""

    organization: Optional[models.Organization] = None
    department: Optional[models.Department] = None
    team: Optional[models.Team] = None
    project: Optional[models.Project] = None


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization check."""

    allowed: bool
    rule: Optional[str] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


Rule = Callable[[Session, models.User, EntityChain], bool]


# ============================================================================
# Rules
# ============================================================================

def is_platform_admin(db: Session, actor: models.User, chain: EntityChain) -> bool:
    return actor.role == models.UserRole.ADMIN


def is_organization_owner(db: Session, actor: models.User, chain: EntityChain) -> bool:
    if chain.organization is None:
        return False
    return db.query(models.OrganizationOwner).filter(
        models.OrganizationOwner.organization_id == chain.organization.id,
        models.OrganizationOwner.user_id == actor.id,
    ).first() is not None


def is_department_manager(db: Session, actor: models.User, chain: EntityChain) -> bool:
    if chain.department is None:
        return False
    return chain.department.manager_id == actor.id


def is_team_leader(db: Session, actor: models.User, chain: EntityChain) -> bool:
    """Team creator, or an active LEADER membership."""
    if chain.team is None:
        return False
    if chain.team.created_by == actor.id:
        return True
    return db.query(models.TeamMember).filter(
        models.TeamMember.team_id == chain.team.id,
        models.TeamMember.user_id == actor.id,
        models.TeamMember.role == models.TeamMemberRole.LEADER,
        models.TeamMember.is_active.is_(True),
        models.TeamMember.deleted_at.is_(None),
    ).first() is not None


def is_project_owner(db: Session, actor: models.User, chain: EntityChain) -> bool:
    """Project creator, or an active PROJECT_OWNER membership."""
    if chain.project is None:
        return False
    if chain.project.created_by == actor.id:
        return True
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == chain.project.id,
        models.ProjectMember.user_id == actor.id,
        models.ProjectMember.role == models.ProjectRole.PROJECT_OWNER,
        models.ProjectMember.is_active.is_(True),
        models.ProjectMember.left_at.is_(None),
    ).first() is not None


def is_organization_member(db: Session, actor: models.User, chain: EntityChain) -> bool:
    if chain.organization is None:
        return False
    return db.query(models.OrganizationMember).filter(
        models.OrganizationMember.organization_id == chain.organization.id,
        models.OrganizationMember.user_id == actor.id,
        models.OrganizationMember.left_at.is_(None),
    ).first() is not None


def is_team_member(db: Session, actor: models.User, chain: EntityChain) -> bool:
    if chain.team is None:
        return False
    return db.query(models.TeamMember).filter(
        models.TeamMember.team_id == chain.team.id,
        models.TeamMember.user_id == actor.id,
        models.TeamMember.is_active.is_(True),
        models.TeamMember.deleted_at.is_(None),
    ).first() is not None


def is_project_member(db: Session, actor: models.User, chain: EntityChain) -> bool:
    if chain.project is None:
        return False
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == chain.project.id,
        models.ProjectMember.user_id == actor.id,
        models.ProjectMember.is_active.is_(True),
        models.ProjectMember.left_at.is_(None),
    ).first() is not None


# Rules that grant any action
ELEVATED_RULES: list[tuple[str, Rule]] = [
    ("platform_admin", is_platform_admin),
    ("organization_owner", is_organization_owner),
    ("department_manager", is_department_manager),
    ("team_leader", is_team_leader),
    ("project_owner", is_project_owner),
]

# Extra rules per action, tried after the elevated ones
ACTION_RULES: dict[Action, list[tuple[str, Rule]]] = {
    Action.READ: [
        ("organization_member", is_organization_member),
        ("team_member", is_team_member),
        ("project_member", is_project_member),
    ],
}


# ============================================================================
# Resolver
# ============================================================================

def resolve(
    db: Session,
    actor: models.User,
    action: Action,
    chain: EntityChain,
    target: str = "this resource",
) -> Decision:
    """
    Evaluate every applicable rule and return the decision.

    Args:
        db: Database session
        actor: User attempting the action
        action: Action being attempted
        chain: Owning chain of the target entity
        target: Phrase naming the target, used in the denial reason

    Returns:
        Decision with the matching rule name, or a denial reason
    """
    for name, rule in ELEVATED_RULES + ACTION_RULES.get(action, []):
        if rule(db, actor, chain):
            logger.debug(f"Allowed {actor.id} to {action.value} {target} via {name}")
            return Decision(allowed=True, rule=name)

    reason = f"You do not have permission to {action.value} {target}"
    return Decision(allowed=False, reason=reason)


def require(
    db: Session,
    actor: models.User,
    action: Action,
    chain: EntityChain,
    target: str = "this resource",
) -> Decision:
    """
    Like resolve(), but raise on denial.

    Raises:
        PermissionDeniedError: If no rule allows the action
    """
    decision = resolve(db, actor, action, chain, target)
    if not decision.allowed:
        logger.warning(f"Denied {actor.id}: {decision.reason}")
        raise PermissionDeniedError(decision.reason)
    return decision


# ============================================================================
# Chain builders
# ============================================================================

def chain_for_organization(organization: models.Organization) -> EntityChain:
    return EntityChain(organization=organization)


def chain_for_department(department: models.Department) -> EntityChain:
    return EntityChain(organization=department.organization, department=department)


def chain_for_team(team: models.Team) -> EntityChain:
    # A deleted department no longer confers authority over its teams
    department = team.department
    if department is not None and department.deleted_at is not None:
        department = None
    return EntityChain(organization=team.organization, department=department, team=team)


def chain_for_project(project: models.Project) -> EntityChain:
    chain = chain_for_team(project.team)
    chain.project = project
    return chain
