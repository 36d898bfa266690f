"""Tests for the authorization resolver."""
from datetime import datetime, timedelta

import pytest
from taskhub_core import departments, models, organizations, projects, schemas, teams
from taskhub_core.errors import PermissionDeniedError
from taskhub_core.permissions import (
    Action,
    chain_for_organization,
    chain_for_project,
    chain_for_team,
    require,
    resolve,
)


@pytest.fixture
def manager(make_user):
    return make_user(email="manager@example.com")


@pytest.fixture
def department(db, owner, organization, manager):
    return departments.create_department(
        db, owner,
        schemas.DepartmentCreate(organization_id=organization.id, name="Engineering", manager_id=manager.id),
    )


@pytest.fixture
def sibling_team(db, owner, organization):
    return teams.create_team(db, owner, schemas.TeamCreate(organization_id=organization.id, name="Billing"))


class TestElevatedRoles:
    """Elevated roles allow every action inside their chain."""

    def test_platform_admin_allowed_everywhere(self, db, admin, project):
        for action in Action:
            decision = resolve(db, admin, action, chain_for_project(project))
            assert decision.allowed
            assert decision.rule == "platform_admin"

    def test_organization_owner_reaches_projects(self, db, owner, project):
        decision = resolve(db, owner, Action.DELETE, chain_for_project(project))
        assert decision
        assert decision.rule == "organization_owner"

    def test_team_leader_reaches_own_projects(self, db, leader, project):
        decision = resolve(db, leader, Action.UPDATE, chain_for_project(project))
        assert decision.allowed

    def test_team_leader_has_no_authority_over_sibling_team(self, db, leader, sibling_team):
        decision = resolve(db, leader, Action.UPDATE, chain_for_team(sibling_team))
        assert not decision.allowed
        assert decision.reason == "You do not have permission to update this resource"

    def test_team_leader_cannot_manage_organization(self, db, leader, organization):
        assert not resolve(db, leader, Action.UPDATE, chain_for_organization(organization))


class TestDepartmentManager:
    """Department managers control the teams of their department."""

    def test_manager_can_create_team_in_department(self, db, manager, organization, department):
        team = teams.create_team(
            db, manager,
            schemas.TeamCreate(organization_id=organization.id, department_id=department.id, name="Infra"),
        )
        assert team.department_id == department.id

    def test_manager_has_no_authority_outside_department(self, db, manager, sibling_team):
        assert not resolve(db, manager, Action.DELETE, chain_for_team(sibling_team))

    def test_deleted_department_confers_nothing(self, db, owner, manager, organization, department):
        team = teams.create_team(
            db, owner,
            schemas.TeamCreate(organization_id=organization.id, department_id=department.id, name="Infra"),
        )
        assert resolve(db, manager, Action.UPDATE, chain_for_team(team))

        departments.soft_delete_department(db, owner, department.id)
        assert not resolve(db, manager, Action.UPDATE, chain_for_team(team))


class TestMemberAccess:
    """Plain members may read but never mutate."""

    def test_organization_member_can_read_but_not_update(self, db, make_user, organization):
        member = make_user()
        organizations.join_organization(db, member, organization.join_code)

        chain = chain_for_organization(organization)
        assert resolve(db, member, Action.READ, chain).rule == "organization_member"
        assert not resolve(db, member, Action.UPDATE, chain)

    def test_project_member_can_read_but_not_update(self, db, make_user, leader, project):
        member = make_user()
        projects.add_project_members(db, leader, project.id, [member.id], role=models.ProjectRole.DEVELOPER)

        chain = chain_for_project(project)
        assert resolve(db, member, Action.READ, chain).rule == "project_member"
        assert not resolve(db, member, Action.UPDATE, chain)
        assert not resolve(db, member, Action.MANAGE_MEMBERS, chain)

    def test_outsider_denied(self, db, make_user, project):
        outsider = make_user()
        for action in Action:
            assert not resolve(db, outsider, action, chain_for_project(project))

    def test_require_raises_with_target_phrase(self, db, make_user, team):
        outsider = make_user()
        with pytest.raises(PermissionDeniedError) as exc_info:
            require(db, outsider, Action.CREATE, chain_for_team(team), "projects in this team")

        error = exc_info.value
        assert error.status_code == 403
        assert error.message == "You do not have permission to create projects in this team"


class TestServiceEnforcement:
    """Service operations consult the resolver before mutating."""

    def test_outsider_cannot_create_project(self, db, make_user, team):
        outsider = make_user()
        start = datetime(2026, 1, 1)
        with pytest.raises(PermissionDeniedError):
            projects.create_project(
                db, outsider,
                schemas.ProjectCreate(
                    team_id=team.id, name="Shadow",
                    start_date=start, end_date=start + timedelta(days=10),
                ),
            )
        assert db.query(models.Project).filter(models.Project.name == "Shadow").count() == 0

    def test_project_developer_cannot_change_project_status_or_priority(self, db, make_user, leader, project):
        developer = make_user()
        projects.add_project_members(db, leader, project.id, [developer.id], role=models.ProjectRole.DEVELOPER)

        with pytest.raises(PermissionDeniedError) as exc_info:
            projects.update_project_status(db, developer, project.id, "CANCELED")
        assert exc_info.value.status_code == 403
        with pytest.raises(PermissionDeniedError):
            projects.update_project_priority(db, developer, project.id, "HIGH")

        assert project.status == models.ProjectStatus.PLANNING
        assert project.priority == models.ProjectPriority.MEDIUM
