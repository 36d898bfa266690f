"""Pydantic schemas for request/response validation."""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, Field, ConfigDict

from .errors import ValidationError
from .models import (
    UserRole,
    TeamMemberRole,
    ProjectRole,
    ProjectStatus,
    ProjectPriority,
    SprintStatus,
    TaskStatus,
    TaskPriority,
    ActionType,
    EntityType,
)

EnumT = TypeVar("EnumT", bound=Enum)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Stored timestamps are naive UTC
UtcDateTime = Annotated[datetime, AfterValidator(_to_naive_utc)]


# ============================================================================
# Validation helpers
# ============================================================================

def error_field(loc: tuple) -> str:
    """Dotted field path for a pydantic error location (request prefixes dropped)."""
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def parse_enum(enum_cls: type[EnumT], value: Any, field: str) -> EnumT:
    """
    Convert a raw value into an enum member.

    Raises:
        ValidationError: Listing the legal values when ``value`` is not one
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        legal = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid {field}. Must be one of: {', '.join(legal)}",
            field=field,
            allowed_values=legal,
        )


# ============================================================================
# User Schemas
# ============================================================================

class UserResponse(BaseModel):
    """Schema for user responses."""

    id: UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole
    is_active: bool

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Organization Schemas
# ============================================================================

class OrganizationCreate(BaseModel):
    """Schema for creating an organization."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    contact_email: Optional[str] = Field(None, max_length=255)
    owner_id: Optional[UUID] = Field(None, description="Owner to record instead of the creator")


class OrganizationUpdate(BaseModel):
    """Schema for updating an organization."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    contact_email: Optional[str] = Field(None, max_length=255)


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""

    id: UUID
    name: str
    description: Optional[str] = None
    contact_email: Optional[str] = None
    is_verified: bool
    join_code: str
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrganizationListResponse(BaseModel):
    """Paginated list of organizations."""

    items: list[OrganizationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class JoinOrganizationRequest(BaseModel):
    join_code: str = Field(..., min_length=1, max_length=64)


class OwnerRequest(BaseModel):
    user_id: UUID


class OrganizationMemberResponse(BaseModel):
    """Schema for organization membership responses."""

    id: UUID
    organization_id: UUID
    user_id: UUID
    joined_at: datetime
    left_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrganizationOwnerResponse(BaseModel):
    """Schema for organization owner responses."""

    id: UUID
    organization_id: UUID
    user_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Department Schemas
# ============================================================================

class DepartmentCreate(BaseModel):
    """Schema for creating a department."""

    organization_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: UUID


class DepartmentUpdate(BaseModel):
    """Schema for updating a department."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    manager_id: Optional[UUID] = None


class DepartmentResponse(BaseModel):
    """Schema for department responses."""

    id: UUID
    organization_id: UUID
    name: str
    description: Optional[str] = None
    manager_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DepartmentListResponse(BaseModel):
    """Paginated list of departments."""

    items: list[DepartmentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Membership Schemas
# ============================================================================

class MembersAdd(BaseModel):
    """Schema for adding users to a team or project."""

    user_ids: list[UUID] = Field(..., min_length=1)


class ProjectMembersAdd(MembersAdd):
    role: ProjectRole = ProjectRole.MEMBER


class MembershipBatchResponse(BaseModel):
    """Outcome of a batch membership change."""

    added_count: int
    skipped_count: int
    not_found_count: int
    added: list[UUID] = Field(default_factory=list)
    skipped: list[UUID] = Field(default_factory=list)
    not_found: list[UUID] = Field(default_factory=list)


# ============================================================================
# Team Schemas
# ============================================================================

class TeamCreate(BaseModel):
    """Schema for creating a team. The creator becomes its LEADER."""

    organization_id: UUID
    department_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    member_ids: list[UUID] = Field(default_factory=list, description="Initial MEMBER users")


class TeamUpdate(BaseModel):
    """Schema for updating a team."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    department_id: Optional[UUID] = None


class TeamResponse(BaseModel):
    """Schema for team responses."""

    id: UUID
    organization_id: UUID
    department_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TeamListResponse(BaseModel):
    """Paginated list of teams."""

    items: list[TeamResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TeamDeleteResponse(BaseModel):
    """Result of a team soft delete, including the project cascade."""

    team: TeamResponse
    deleted_projects_count: int


class TeamMemberResponse(BaseModel):
    """Schema for team member responses."""

    id: UUID
    team_id: UUID
    user_id: UUID
    role: TeamMemberRole
    is_active: bool
    joined_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TeamMemberRoleUpdate(BaseModel):
    role: TeamMemberRole


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectCreate(BaseModel):
    """Schema for creating a project. The creator becomes its PROJECT_OWNER."""

    team_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: UtcDateTime
    end_date: UtcDateTime
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: ProjectPriority = ProjectPriority.MEDIUM
    budget: Optional[float] = Field(None, ge=0)
    member_ids: list[UUID] = Field(default_factory=list, description="Initial MEMBER users")


class ProjectUpdate(BaseModel):
    """Schema for updating a project."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[UtcDateTime] = None
    end_date: Optional[UtcDateTime] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    budget: Optional[float] = Field(None, ge=0)


class ProjectResponse(BaseModel):
    """Schema for project responses."""

    id: UUID
    organization_id: UUID
    team_id: UUID
    name: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: ProjectStatus
    priority: ProjectPriority
    progress: int
    budget: Optional[float] = None
    created_by: Optional[UUID] = None
    last_modified_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectListResponse(BaseModel):
    """Paginated list of projects."""

    items: list[ProjectResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProjectMemberResponse(BaseModel):
    """Schema for project member responses."""

    id: UUID
    project_id: UUID
    user_id: UUID
    role: ProjectRole
    is_active: bool
    joined_at: datetime
    left_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectMemberRoleUpdate(BaseModel):
    role: ProjectRole


# Raw strings: unknown values are rejected with the legal set listed
class StatusUpdate(BaseModel):
    status: str


class PriorityUpdate(BaseModel):
    priority: str


# ============================================================================
# Sprint Schemas
# ============================================================================

class SprintCreate(BaseModel):
    """Schema for creating a sprint."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: UtcDateTime
    end_date: UtcDateTime
    status: Optional[SprintStatus] = Field(None, description="Defaults to a status derived from the dates")


class SprintUpdate(BaseModel):
    """Schema for updating sprint details (status has its own endpoint)."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: Optional[UtcDateTime] = None
    end_date: Optional[UtcDateTime] = None


class SprintResponse(BaseModel):
    """Schema for sprint responses."""

    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: SprintStatus
    order: int
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class SprintDetailResponse(SprintResponse):
    """Sprint with task progress statistics."""

    total_tasks: int = 0
    completed_tasks: int = 0
    progress: int = Field(0, description="Percentage of tasks DONE")


class SprintListResponse(BaseModel):
    """Paginated list of sprints."""

    items: list[SprintResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Task Schemas
# ============================================================================

class TaskCreate(BaseModel):
    """Schema for creating a task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus = TaskStatus.TODO
    due_date: UtcDateTime
    sprint_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    assigned_to: Optional[UUID] = None
    labels: list[str] = Field(default_factory=list)
    estimated_time: Optional[float] = Field(None, ge=0)
    actual_time: Optional[float] = Field(None, ge=0)


class TaskUpdate(BaseModel):
    """Schema for updating a task. Only fields that are set are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[UtcDateTime] = None
    sprint_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    assigned_to: Optional[UUID] = None
    labels: Optional[list[str]] = None
    estimated_time: Optional[float] = Field(None, ge=0)
    actual_time: Optional[float] = Field(None, ge=0)


class TaskResponse(BaseModel):
    """Schema for task responses."""

    id: UUID
    project_id: UUID
    sprint_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime
    assigned_to: Optional[UUID] = None
    labels: list[str] = Field(default_factory=list)
    estimated_time: Optional[float] = None
    actual_time: Optional[float] = None
    created_by: Optional[UUID] = None
    last_modified_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskDetailResponse(TaskResponse):
    subtask_ids: list[UUID] = Field(default_factory=list)


class TaskListResponse(BaseModel):
    """Paginated list of tasks."""

    items: list[TaskResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TaskDeleteResponse(BaseModel):
    """Result of a task delete."""

    id: UUID
    permanent: bool
    deleted_subtasks_count: int


class TaskRestoreResponse(BaseModel):
    """Result of a task restore."""

    task: TaskResponse
    restored_subtasks_count: int


# ============================================================================
# Activity Log Schemas
# ============================================================================

class ActivityLogResponse(BaseModel):
    """Schema for activity log responses."""

    id: UUID
    user_id: Optional[UUID] = None
    action: ActionType
    entity_type: EntityType
    entity_id: UUID
    organization_id: Optional[UUID] = None
    description: str
    details: Optional[dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ActivityListResponse(BaseModel):
    """Paginated list of activity log entries."""

    items: list[ActivityLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
