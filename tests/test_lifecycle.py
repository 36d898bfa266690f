"""Tests for organization, team and project lifecycle rules."""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from taskhub_core import departments, models, organizations, projects, schemas, teams
from taskhub_core.database import unit_of_work
from taskhub_core.errors import ConflictError, NotFoundError, ValidationError

START = datetime(2026, 3, 2, 9, 0, 0)


def _project_data(team, name, **overrides):
    data = {"team_id": team.id, "name": name, "start_date": START, "end_date": START + timedelta(days=30)}
    data.update(overrides)
    return schemas.ProjectCreate(**data)


class TestOrganizations:
    """Organization creation, ownership and self-service membership."""

    def test_creator_becomes_owner(self, db, owner, organization):
        owners = organizations.list_owners(db, owner, organization.id)
        assert [row.user_id for row in owners] == [owner.id]
        assert not organization.is_verified

    def test_admin_created_organization_is_verified(self, db, admin):
        organization = organizations.create_organization(db, admin, schemas.OrganizationCreate(name="Verified"))
        assert organization.is_verified

    def test_duplicate_name_rejected(self, db, owner, organization):
        with pytest.raises(ConflictError) as exc_info:
            organizations.create_organization(db, owner, schemas.OrganizationCreate(name="Acme"))
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["conflicting_id"] == str(organization.id)

    def test_deleted_name_can_be_reused(self, db, owner, organization):
        organizations.soft_delete_organization(db, owner, organization.id)
        again = organizations.create_organization(db, owner, schemas.OrganizationCreate(name="Acme"))
        assert again.id != organization.id

    def test_restore_rechecks_name(self, db, owner, organization):
        organizations.soft_delete_organization(db, owner, organization.id)
        organizations.create_organization(db, owner, schemas.OrganizationCreate(name="Acme"))

        with pytest.raises(ConflictError):
            organizations.restore_organization(db, owner, organization.id)

    def test_cannot_remove_last_owner(self, db, owner, organization):
        with pytest.raises(ConflictError) as exc_info:
            organizations.remove_owner(db, owner, organization.id, owner.id)
        assert exc_info.value.status_code == 400
        assert "only owner" in exc_info.value.message

    def test_join_with_code(self, db, make_user, organization):
        member = make_user()
        membership = organizations.join_organization(db, member, organization.join_code)
        assert membership.organization_id == organization.id

        with pytest.raises(ConflictError):
            organizations.join_organization(db, member, organization.join_code)

    def test_regenerated_code_invalidates_old_one(self, db, owner, make_user, organization):
        old_code = organization.join_code
        organizations.regenerate_join_code(db, owner, organization.id)
        assert organization.join_code != old_code

        with pytest.raises(NotFoundError):
            organizations.join_organization(db, make_user(), old_code)


class TestTeamLifecycle:
    """Team deletion cascades one level, to projects only."""

    def test_delete_team_cascades_to_projects(self, db, owner, leader, team):
        for name in ("Alpha", "Beta", "Gamma"):
            projects.create_project(db, leader, _project_data(team, name))

        deleted_team, deleted_projects_count = teams.soft_delete_team(db, owner, team.id)

        assert deleted_team.deleted_at is not None
        assert deleted_projects_count == 3
        remaining = db.query(models.Project).filter(
            models.Project.team_id == team.id,
            models.Project.deleted_at.is_(None),
        ).count()
        assert remaining == 0

    def test_delete_twice_is_rejected(self, db, owner, team):
        teams.soft_delete_team(db, owner, team.id)
        with pytest.raises(ConflictError) as exc_info:
            teams.soft_delete_team(db, owner, team.id)
        assert exc_info.value.status_code == 400

    def test_restore_team_leaves_projects_deleted(self, db, owner, leader, team, project):
        teams.soft_delete_team(db, owner, team.id)
        teams.restore_team(db, owner, team.id)
        assert project.deleted_at is not None

    def test_project_restore_requires_active_team(self, db, owner, team, project):
        teams.soft_delete_team(db, owner, team.id)
        with pytest.raises(NotFoundError) as exc_info:
            projects.restore_project(db, owner, project.id)
        assert "Restore the team first" in exc_info.value.message

        teams.restore_team(db, owner, team.id)
        restored = projects.restore_project(db, owner, project.id)
        assert restored.deleted_at is None


class TestTeamMembership:
    """Team membership batches and the last-leader guard."""

    def test_cannot_remove_only_leader(self, db, make_user, organization, owner):
        solo = make_user()
        organizations.add_owner(db, owner, organization.id, solo.id)
        team = teams.create_team(db, solo, schemas.TeamCreate(organization_id=organization.id, name="Solo"))

        with pytest.raises(ConflictError) as exc_info:
            teams.remove_team_member(db, solo, team.id, solo.id)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == teams.LAST_LEADER
        leaders = [m for m in teams.list_team_members(db, solo, team.id) if m.role == models.TeamMemberRole.LEADER]
        assert [m.user_id for m in leaders] == [solo.id]

    def test_cannot_demote_only_leader(self, db, make_user, organization, owner):
        team = teams.create_team(db, owner, schemas.TeamCreate(organization_id=organization.id, name="Solo"))
        with pytest.raises(ConflictError):
            teams.update_team_member_role(db, owner, team.id, owner.id, models.TeamMemberRole.MEMBER)

    def test_second_leader_can_be_removed(self, db, owner, leader, team):
        member = teams.remove_team_member(db, owner, team.id, leader.id)
        assert not member.is_active
        assert member.deleted_at is not None

    def test_batch_add_reports_skipped_and_unknown(self, db, make_user, owner, leader, team):
        newcomer = make_user()
        unknown = uuid4()

        batch = teams.add_team_members(db, owner, team.id, [newcomer.id, leader.id, unknown])

        assert batch.added == [newcomer.id]
        assert batch.skipped == [leader.id]
        assert batch.not_found == [unknown]
        assert batch.to_dict()["added_count"] == 1

    def test_batch_of_unknown_users_fails(self, db, owner, team):
        with pytest.raises(NotFoundError) as exc_info:
            teams.add_team_members(db, owner, team.id, [uuid4(), uuid4()])
        assert exc_info.value.message == "None of the specified users were found"

    def test_removed_member_can_rejoin(self, db, make_user, owner, team):
        member = make_user()
        teams.add_team_members(db, owner, team.id, [member.id])
        teams.remove_team_member(db, owner, team.id, member.id)

        batch = teams.add_team_members(db, owner, team.id, [member.id])

        assert batch.added == [member.id]
        active_ids = [m.user_id for m in teams.list_team_members(db, owner, team.id)]
        assert member.id in active_ids


class TestProjects:
    """Project creation, window validation and the last-owner guard."""

    def test_creator_is_project_owner(self, db, leader, project):
        members = projects.list_project_members(db, leader, project.id)
        assert [(m.user_id, m.role) for m in members] == [(leader.id, models.ProjectRole.PROJECT_OWNER)]
        assert project.progress == 0

    def test_inverted_window_rejected(self, db, leader, team):
        with pytest.raises(ValidationError) as exc_info:
            projects.create_project(db, leader, _project_data(team, "Backwards", end_date=START))
        assert exc_info.value.field == "end_date"

    def test_update_checks_merged_window(self, db, leader, project):
        with pytest.raises(ValidationError):
            projects.update_project(
                db, leader, project.id,
                schemas.ProjectUpdate(start_date=project.end_date + timedelta(days=1)),
            )

    def test_duplicate_name_in_team_rejected(self, db, leader, team, project):
        with pytest.raises(ConflictError) as exc_info:
            projects.create_project(db, leader, _project_data(team, "Roadmap"))
        assert exc_info.value.message == projects.NAME_TAKEN

    def test_cannot_remove_only_project_owner(self, db, leader, project):
        with pytest.raises(ConflictError) as exc_info:
            projects.remove_project_member(db, leader, project.id, leader.id)
        assert exc_info.value.message == projects.LAST_OWNER

    def test_invalid_status_lists_legal_values(self, db, leader, project):
        with pytest.raises(ValidationError) as exc_info:
            projects.update_project_status(db, leader, project.id, "SHIPPED")

        error = exc_info.value
        assert error.field == "status"
        assert error.details["allowed_values"] == [s.value for s in models.ProjectStatus]

    def test_list_requires_a_scope(self, db, leader):
        with pytest.raises(ValidationError):
            projects.list_projects(db, leader)


class TestClearedRequiredFields:
    """Updates that null out a required column are rejected before writing."""

    def test_organization_name(self, db, owner, organization):
        with pytest.raises(ValidationError) as exc_info:
            organizations.update_organization(db, owner, organization.id, schemas.OrganizationUpdate(name=None))
        assert exc_info.value.field == "name"
        assert organization.name == "Acme"

    def test_team_name(self, db, owner, team):
        with pytest.raises(ValidationError) as exc_info:
            teams.update_team(db, owner, team.id, schemas.TeamUpdate(name=None))
        assert exc_info.value.field == "name"
        assert team.name == "Platform"

    @pytest.mark.parametrize("field", ["name", "start_date", "end_date", "progress"])
    def test_project_fields(self, db, leader, project, field):
        with pytest.raises(ValidationError) as exc_info:
            projects.update_project(db, leader, project.id, schemas.ProjectUpdate(**{field: None}))
        assert exc_info.value.field == field
        assert project.start_date == START

    def test_project_optional_field_can_be_cleared(self, db, leader, project):
        updated = projects.update_project(db, leader, project.id, schemas.ProjectUpdate(description=None))
        assert updated.description is None

    def test_department_name_and_manager(self, db, owner, organization, make_user):
        manager = make_user()
        department = departments.create_department(
            db, owner,
            schemas.DepartmentCreate(organization_id=organization.id, name="Engineering", manager_id=manager.id),
        )

        for field in ("name", "manager_id"):
            with pytest.raises(ValidationError) as exc_info:
                departments.update_department(db, owner, department.id, schemas.DepartmentUpdate(**{field: None}))
            assert exc_info.value.field == field
        assert department.manager_id == manager.id


class TestUniqueIndexRace:
    """A duplicate that slips past the name check still surfaces as a conflict."""

    def test_unique_index_violation_becomes_conflict(self, db, owner, organization):
        with pytest.raises(ConflictError) as exc_info:
            with unit_of_work(db):
                db.add(models.Organization(name="Acme", join_code=uuid4().hex, created_by=owner.id))

        assert exc_info.value.status_code == 409
        active = db.query(models.Organization).filter(
            models.Organization.name == "Acme", models.Organization.deleted_at.is_(None),
        ).count()
        assert active == 1
