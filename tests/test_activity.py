"""Tests for the activity log and unit-of-work atomicity."""
import pytest
from taskhub_core import activity, models, organizations, schemas, teams
from taskhub_core.errors import ConflictError


class TestActivityLog:
    """Every mutation is recorded in its own transaction."""

    def test_creation_is_logged(self, db, owner, organization):
        items, total = activity.list_activity(db, organization.id)

        assert total == 1
        entry = items[0]
        assert entry.action == models.ActionType.CREATED
        assert entry.entity_type == models.EntityType.ORGANIZATION
        assert entry.entity_id == organization.id
        assert entry.user_id == owner.id

    def test_filter_by_entity(self, db, owner, organization, team):
        items, total = activity.list_activity(
            db, organization.id, entity_type=models.EntityType.TEAM, entity_id=team.id,
        )
        assert total == 2
        assert {entry.action for entry in items} == {
            models.ActionType.CREATED,
            models.ActionType.MEMBER_ROLE_CHANGED,
        }

    def test_failed_log_write_rolls_back_mutation(self, db, owner, organization, monkeypatch):
        def broken_record_activity(*args, **kwargs):
            raise RuntimeError("activity store unavailable")

        monkeypatch.setattr(teams, "record_activity", broken_record_activity)

        with pytest.raises(RuntimeError):
            teams.create_team(db, owner, schemas.TeamCreate(organization_id=organization.id, name="Ghost"))

        assert db.query(models.Team).filter(models.Team.name == "Ghost").count() == 0
        assert db.query(models.TeamMember).count() == 0

    def test_failed_mutation_leaves_no_log(self, db, owner, organization):
        with pytest.raises(ConflictError):
            organizations.create_organization(db, owner, schemas.OrganizationCreate(name="Acme"))

        _, total = activity.list_activity(db, organization.id)
        assert total == 1
        assert db.query(models.ActivityLog).count() == 1
