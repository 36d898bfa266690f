"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Index,
    JSON,
    Uuid,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()

ACTIVE_ROWS = text("deleted_at IS NULL")


def _enum(enum_cls):
    return Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj])


class UserRole(str, enum.Enum):
    """Global (platform-wide) user role. ADMIN is the elevated platform role."""

    OWNER = "OWNER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    GUEST = "GUEST"


class TeamMemberRole(str, enum.Enum):
    """Team membership role."""

    LEADER = "LEADER"
    MEMBER = "MEMBER"


class ProjectRole(str, enum.Enum):
    """Project membership role."""

    PROJECT_OWNER = "PROJECT_OWNER"
    DEVELOPER = "DEVELOPER"
    TESTER = "TESTER"
    DESIGNER = "DESIGNER"
    PRODUCT_OWNER = "PRODUCT_OWNER"
    MEMBER = "MEMBER"


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class ProjectPriority(str, enum.Enum):
    """Project priority enum."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class SprintStatus(str, enum.Enum):
    """Sprint lifecycle status. COMPLETED is terminal."""

    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class TaskStatus(str, enum.Enum):
    """Task workflow status. DONE is the only finished status."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class EntityType(str, enum.Enum):
    """Entity kinds recorded in the activity log."""

    ORGANIZATION = "ORGANIZATION"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    PROJECT = "PROJECT"
    SPRINT = "SPRINT"
    TASK = "TASK"


class ActionType(str, enum.Enum):
    """Activity log action enum."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    RESTORED = "RESTORED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"
    MEMBER_ADDED = "MEMBER_ADDED"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    MEMBER_ROLE_CHANGED = "MEMBER_ROLE_CHANGED"
    OWNER_ADDED = "OWNER_ADDED"
    OWNER_REMOVED = "OWNER_REMOVED"
    SPRINT_STARTED = "SPRINT_STARTED"
    SPRINT_COMPLETED = "SPRINT_COMPLETED"
    SETTINGS_CHANGED = "SETTINGS_CHANGED"


class User(Base):
    """
    User model.

    Identity and credentials are issued elsewhere; this table only holds
    what authorization needs (global role, active flag).
    """

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    role = Column(_enum(UserRole), nullable=False, default=UserRole.MEMBER, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class Organization(Base):
    """
    Organization model - top of the ownership chain.

    Owners have full authority over everything inside the organization.
    The join code lets users enroll themselves as plain members.
    """

    __tablename__ = "organizations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    contact_email = Column(String(255))
    is_verified = Column(Boolean, nullable=False, default=False)
    join_code = Column(String(64), nullable=False, unique=True, index=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    owners = relationship("OrganizationOwner", back_populates="organization")
    members = relationship("OrganizationMember", back_populates="organization")

    __table_args__ = (
        Index(
            "uq_organizations_name_active", "name",
            unique=True, postgresql_where=ACTIVE_ROWS, sqlite_where=ACTIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<Organization {self.name}>"


class OrganizationOwner(Base):
    """Junction table listing the owners of an organization."""

    __tablename__ = "organization_owners"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    organization = relationship("Organization", back_populates="owners")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="unique_org_owner"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationOwner {self.user_id}>"


class OrganizationMember(Base):
    """Plain (read-only) membership of an organization."""

    __tablename__ = "organization_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    left_at = Column(DateTime, nullable=True)

    organization = relationship("Organization", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="unique_org_user"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationMember {self.user_id}>"


class Department(Base):
    """Department inside an organization, run by one manager."""

    __tablename__ = "departments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    manager_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    organization = relationship("Organization")
    manager = relationship("User", foreign_keys=[manager_id])

    __table_args__ = (
        Index(
            "uq_departments_org_name_active", "organization_id", "name",
            unique=True, postgresql_where=ACTIVE_ROWS, sqlite_where=ACTIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<Department {self.name}>"


class Team(Base):
    """
    Team inside an organization, optionally attached to a department.

    The creator is the initial LEADER; at least one active LEADER must remain
    while the team is active.
    """

    __tablename__ = "teams"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    organization = relationship("Organization")
    department = relationship("Department")
    members = relationship("TeamMember", back_populates="team")

    __table_args__ = (
        Index(
            "uq_teams_org_name_active", "organization_id", "name",
            unique=True, postgresql_where=ACTIVE_ROWS, sqlite_where=ACTIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<Team {self.name}>"


class TeamMember(Base):
    """Junction table linking users to teams with roles. Removal is soft."""

    __tablename__ = "team_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    team_id = Column(Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(_enum(TeamMemberRole), nullable=False, default=TeamMemberRole.MEMBER, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    team = relationship("Team", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="unique_team_user"),
    )

    def __repr__(self) -> str:
        return f"<TeamMember {self.role.value}>"


class Project(Base):
    """
    Project run by a team.

    Name is unique per team among active projects. The creator receives a
    PROJECT_OWNER membership in the same transaction.
    """

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)

    # Core fields
    name = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(_enum(ProjectStatus), nullable=False, default=ProjectStatus.PLANNING, index=True)
    priority = Column(_enum(ProjectPriority), nullable=False, default=ProjectPriority.MEDIUM, index=True)
    progress = Column(Integer, nullable=False, default=0)
    budget = Column(Float, nullable=True)

    # Audit fields
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    last_modified_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    team = relationship("Team")
    organization = relationship("Organization")
    members = relationship("ProjectMember", back_populates="project")

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="valid_project_progress"),
        CheckConstraint("start_date < end_date", name="valid_project_window"),
        Index(
            "uq_projects_team_name_active", "team_id", "name",
            unique=True, postgresql_where=ACTIVE_ROWS, sqlite_where=ACTIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<Project {self.name}>"


class ProjectMember(Base):
    """Junction table linking users to projects with roles. Leaving sets left_at."""

    __tablename__ = "project_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(_enum(ProjectRole), nullable=False, default=ProjectRole.MEMBER, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    left_at = Column(DateTime, nullable=True)

    project = relationship("Project", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember {self.role.value}>"


class Sprint(Base):
    """
    Time-boxed iteration of a project.

    Active sprints of one project never overlap: for any two,
    start < other.end AND end > other.start is false.
    """

    __tablename__ = "sprints"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    goal = Column(Text)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(_enum(SprintStatus), nullable=False, default=SprintStatus.PLANNING, index=True)
    order = Column("order", Integer, nullable=False, default=0)

    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    project = relationship("Project")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="valid_sprint_window"),
        Index(
            "uq_sprints_project_name_active", "project_id", "name",
            unique=True, postgresql_where=ACTIVE_ROWS, sqlite_where=ACTIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<Sprint {self.name} ({self.status.value})>"


class Task(Base):
    """
    Unit of work inside a project, optionally scheduled into a sprint.

    Tasks nest through parent_id. The parent chain is acyclic and never
    leaves the task's project.
    """

    __tablename__ = "tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sprint_id = Column(Uuid(as_uuid=True), ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    # Core task fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum(TaskStatus), nullable=False, default=TaskStatus.TODO, index=True)
    priority = Column(_enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM, index=True)
    due_date = Column(DateTime, nullable=False, index=True)
    assigned_to = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    labels = Column(JSON, nullable=False, default=list)
    estimated_time = Column(Float, nullable=True)
    actual_time = Column(Float, nullable=True)

    # Audit fields
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_modified_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    project = relationship("Project")
    sprint = relationship("Sprint")
    parent = relationship("Task", remote_side=[id])
    assignee = relationship("User", foreign_keys=[assigned_to])

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id != id", name="no_self_parent"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.title[:30]}>"


class ActivityLog(Base):
    """Append-only record of every mutation, written in the mutation's transaction."""

    __tablename__ = "activity_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(_enum(ActionType), nullable=False)
    entity_type = Column(_enum(EntityType), nullable=False, index=True)
    entity_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    description = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<ActivityLog {self.entity_type.value} {self.action.value}>"
