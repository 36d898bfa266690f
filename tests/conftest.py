"""Shared test fixtures."""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from taskhub_core import models, organizations, projects, schemas, teams
from taskhub_core.api.main import create_app
from taskhub_core.database import Store

NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def store():
    """In-memory SQLite store with the full schema."""
    store = Store("sqlite://")
    store.open()
    store.create_all()
    yield store
    store.close()


@pytest.fixture
def db(store):
    session = store.session()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make_user(role=models.UserRole.MEMBER, email=None, is_active=True):
        user = models.User(
            email=email or f"{uuid4().hex[:10]}@example.com",
            first_name="Test",
            last_name="User",
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def owner(make_user):
    """Owner of the test organization."""
    return make_user(email="owner@example.com")


@pytest.fixture
def admin(make_user):
    return make_user(role=models.UserRole.ADMIN, email="admin@example.com")


@pytest.fixture
def organization(db, owner):
    return organizations.create_organization(
        db, owner, schemas.OrganizationCreate(name="Acme")
    )


@pytest.fixture
def leader(make_user):
    """LEADER of the test team and creator of its project."""
    return make_user(email="leader@example.com")


@pytest.fixture
def team(db, owner, leader, organization):
    """Team created by the owner, with a second LEADER who runs its projects."""
    team = teams.create_team(
        db, owner,
        schemas.TeamCreate(organization_id=organization.id, name="Platform", member_ids=[leader.id]),
    )
    teams.update_team_member_role(db, owner, team.id, leader.id, models.TeamMemberRole.LEADER)
    return team


@pytest.fixture
def project(db, leader, team):
    return projects.create_project(
        db, leader,
        schemas.ProjectCreate(
            team_id=team.id,
            name="Roadmap",
            start_date=NOW,
            end_date=NOW + timedelta(days=90),
        ),
    )


@pytest.fixture
def client(store):
    """HTTP client bound to the test store."""
    return TestClient(create_app(store=store))


@pytest.fixture
def auth():
    """Build headers identifying a user to the API."""
    def _auth(user) -> dict:
        return {"X-User-Id": str(user.id)}

    return _auth
