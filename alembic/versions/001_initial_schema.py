"""Initial schema: organizations, departments, teams, projects, sprints, tasks and activity log.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_ROWS = sa.text('deleted_at IS NULL')


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('role', sa.Enum('OWNER', 'MANAGER', 'ADMIN', 'MEMBER', 'GUEST', name='userrole'), nullable=False, server_default='MEMBER'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_audit_columns(),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('contact_email', sa.String(255)),
        sa.Column('is_verified', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('join_code', sa.String(64), nullable=False, unique=True),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
    )
    op.create_index('uq_organizations_name_active', 'organizations', ['name'], unique=True, postgresql_where=ACTIVE_ROWS)
    op.create_index('ix_organizations_deleted_at', 'organizations', ['deleted_at'])

    op.create_table(
        'organization_owners',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'user_id', name='unique_org_owner'),
    )

    op.create_table(
        'organization_members',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('left_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('organization_id', 'user_id', name='unique_org_user'),
    )

    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('manager_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
    )
    op.create_index('uq_departments_org_name_active', 'departments', ['organization_id', 'name'], unique=True, postgresql_where=ACTIVE_ROWS)

    op.create_table(
        'teams',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('department_id', sa.Uuid, sa.ForeignKey('departments.id', ondelete='SET NULL')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
    )
    op.create_index('uq_teams_org_name_active', 'teams', ['organization_id', 'name'], unique=True, postgresql_where=ACTIVE_ROWS)

    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('team_id', sa.Uuid, sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.Enum('LEADER', 'MEMBER', name='teammemberrole'), nullable=False, server_default='MEMBER'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('team_id', 'user_id', name='unique_team_user'),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.Uuid, sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('start_date', sa.DateTime, nullable=False),
        sa.Column('end_date', sa.DateTime, nullable=False),
        sa.Column('status', sa.Enum('PLANNING', 'ACTIVE', 'ON_HOLD', 'COMPLETED', 'CANCELED', name='projectstatus'), nullable=False, server_default='PLANNING'),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='projectpriority'), nullable=False, server_default='MEDIUM'),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('budget', sa.Float),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('last_modified_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='valid_project_progress'),
        sa.CheckConstraint('start_date < end_date', name='valid_project_window'),
    )
    op.create_index('uq_projects_team_name_active', 'projects', ['team_id', 'name'], unique=True, postgresql_where=ACTIVE_ROWS)
    op.create_index('ix_projects_status', 'projects', ['status'])

    op.create_table(
        'project_members',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.Enum('PROJECT_OWNER', 'DEVELOPER', 'TESTER', 'DESIGNER', 'PRODUCT_OWNER', 'MEMBER', name='projectrole'), nullable=False, server_default='MEMBER'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('left_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user'),
    )

    op.create_table(
        'sprints',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('goal', sa.Text),
        sa.Column('start_date', sa.DateTime, nullable=False),
        sa.Column('end_date', sa.DateTime, nullable=False),
        sa.Column('status', sa.Enum('PLANNING', 'ACTIVE', 'COMPLETED', name='sprintstatus'), nullable=False, server_default='PLANNING'),
        sa.Column('order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
        sa.CheckConstraint('start_date < end_date', name='valid_sprint_window'),
    )
    op.create_index('uq_sprints_project_name_active', 'sprints', ['project_id', 'name'], unique=True, postgresql_where=ACTIVE_ROWS)
    op.create_index('ix_sprints_project_window', 'sprints', ['project_id', 'start_date', 'end_date'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sprint_id', sa.Uuid, sa.ForeignKey('sprints.id', ondelete='SET NULL')),
        sa.Column('parent_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE')),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', sa.Enum('TODO', 'IN_PROGRESS', 'REVIEW', 'DONE', name='taskstatus'), nullable=False, server_default='TODO'),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='taskpriority'), nullable=False, server_default='MEDIUM'),
        sa.Column('due_date', sa.DateTime, nullable=False),
        sa.Column('assigned_to', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('labels', sa.JSON, nullable=False),
        sa.Column('estimated_time', sa.Float),
        sa.Column('actual_time', sa.Float),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('last_modified_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_audit_columns(),
        sa.CheckConstraint('parent_id IS NULL OR parent_id != id', name='no_self_parent'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_sprint_id', 'tasks', ['sprint_id'])
    op.create_index('ix_tasks_parent_id', 'tasks', ['parent_id'])
    op.create_index('ix_tasks_assigned_to', 'tasks', ['assigned_to'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('action', sa.Enum(
            'CREATED', 'UPDATED', 'DELETED', 'RESTORED', 'STATUS_CHANGED', 'ASSIGNED',
            'MEMBER_ADDED', 'MEMBER_REMOVED', 'MEMBER_ROLE_CHANGED', 'OWNER_ADDED', 'OWNER_REMOVED',
            'SPRINT_STARTED', 'SPRINT_COMPLETED', 'SETTINGS_CHANGED',
            name='actiontype',
        ), nullable=False),
        sa.Column('entity_type', sa.Enum('ORGANIZATION', 'DEPARTMENT', 'TEAM', 'PROJECT', 'SPRINT', 'TASK', name='entitytype'), nullable=False),
        sa.Column('entity_id', sa.Uuid, nullable=False),
        sa.Column('organization_id', sa.Uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE')),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('details', sa.JSON),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activity_logs_org_created', 'activity_logs', ['organization_id', 'created_at'])
    op.create_index('ix_activity_logs_entity', 'activity_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_table('activity_logs')
    op.drop_table('tasks')
    op.drop_table('sprints')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('departments')
    op.drop_table('organization_members')
    op.drop_table('organization_owners')
    op.drop_table('organizations')
    op.drop_table('users')

    for enum_name in (
        'actiontype', 'entitytype', 'taskpriority', 'taskstatus', 'sprintstatus',
        'projectrole', 'projectpriority', 'projectstatus', 'teammemberrole', 'userrole',
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
