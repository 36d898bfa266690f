"""HTTP-level tests: status codes and error bodies."""
from uuid import uuid4

import pytest


class TestAuthentication:
    """The acting user comes from the X-User-Id header."""

    def test_missing_header_is_unauthorized(self, client):
        response = client.get("/api/v1/users/me")
        assert response.status_code == 401

    def test_unknown_user_is_unauthorized(self, client):
        response = client.get("/api/v1/users/me", headers={"X-User-Id": str(uuid4())})
        assert response.status_code == 401

    def test_me(self, client, auth, owner):
        response = client.get("/api/v1/users/me", headers=auth(owner))
        assert response.status_code == 200
        assert response.json()["email"] == "owner@example.com"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "store_open": True}


class TestOrganizationEndpoints:
    """Organization endpoints."""

    def test_create_and_duplicate(self, client, auth, owner):
        response = client.post("/api/v1/organizations/", json={"name": "Globex"}, headers=auth(owner))
        assert response.status_code == 201
        assert response.json()["name"] == "Globex"

        duplicate = client.post("/api/v1/organizations/", json={"name": "Globex"}, headers=auth(owner))
        assert duplicate.status_code == 409
        body = duplicate.json()
        assert body["success"] is False
        assert body["error"] == "conflict"
        assert body["conflicting_id"] == response.json()["id"]

    def test_missing_field_is_validation_error(self, client, auth, owner):
        response = client.post("/api/v1/organizations/", json={}, headers=auth(owner))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["field"] == "name"

    def test_outsider_is_forbidden(self, client, auth, make_user, organization):
        response = client.get(f"/api/v1/organizations/{organization.id}", headers=auth(make_user()))
        assert response.status_code == 403
        assert response.json()["message"] == "You do not have permission to view this organization"

    def test_remove_last_owner(self, client, auth, owner, organization):
        response = client.delete(
            f"/api/v1/organizations/{organization.id}/owners/{owner.id}", headers=auth(owner)
        )
        assert response.status_code == 400

    def test_activity_feed(self, client, auth, owner, organization):
        response = client.get(f"/api/v1/organizations/{organization.id}/activity", headers=auth(owner))
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["action"] == "CREATED"


class TestTeamEndpoints:
    """Team endpoints."""

    def test_delete_reports_cascaded_projects(self, client, auth, owner, team, project):
        response = client.delete(f"/api/v1/teams/{team.id}", headers=auth(owner))
        assert response.status_code == 200
        body = response.json()
        assert body["deleted_projects_count"] == 1
        assert body["team"]["deleted_at"] is not None

    def test_add_members_batch(self, client, auth, owner, make_user, team):
        newcomer = make_user()
        unknown = uuid4()
        response = client.post(
            f"/api/v1/teams/{team.id}/members",
            json={"user_ids": [str(newcomer.id), str(unknown)]},
            headers=auth(owner),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["added"] == [str(newcomer.id)]
        assert body["not_found"] == [str(unknown)]

    def test_null_name_is_validation_error(self, client, auth, owner, team):
        response = client.put(f"/api/v1/teams/{team.id}", json={"name": None}, headers=auth(owner))
        assert response.status_code == 400
        assert response.json()["field"] == "name"


class TestProjectEndpoints:
    """Project endpoints."""

    def test_null_start_date_is_validation_error(self, client, auth, leader, project):
        response = client.put(f"/api/v1/projects/{project.id}", json={"start_date": None}, headers=auth(leader))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["field"] == "start_date"

    def test_developer_cannot_change_status(self, client, auth, leader, make_user, project):
        developer = make_user()
        added = client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_ids": [str(developer.id)], "role": "DEVELOPER"},
            headers=auth(leader),
        )
        assert added.status_code == 200
        response = client.patch(
            f"/api/v1/projects/{project.id}/status", json={"status": "CANCELED"}, headers=auth(developer)
        )
        assert response.status_code == 403


class TestSprintEndpoints:
    """Sprint endpoints."""

    def _create(self, client, headers, project, name, start, end):
        return client.post(
            f"/api/v1/projects/{project.id}/sprints",
            json={"name": name, "start_date": start, "end_date": end, "status": "PLANNING"},
            headers=headers,
        )

    def test_overlap_is_reported(self, client, auth, leader, project):
        first = self._create(client, auth(leader), project, "Sprint 1", "2026-04-01T00:00:00", "2026-04-15T00:00:00")
        assert first.status_code == 201
        assert first.json()["order"] == 0

        second = self._create(client, auth(leader), project, "Sprint 2", "2026-04-08T00:00:00", "2026-04-22T00:00:00")
        assert second.status_code == 400
        body = second.json()
        assert body["error"] == "sprint_overlap"
        assert body["overlapping_sprint"]["id"] == first.json()["id"]

    def test_timezone_offsets_are_normalized(self, client, auth, leader, project):
        response = self._create(
            client, auth(leader), project, "Sprint 1", "2026-04-01T02:00:00+02:00", "2026-04-15T00:00:00Z",
        )
        assert response.status_code == 201
        assert response.json()["start_date"] == "2026-04-01T00:00:00"

    def test_invalid_transition(self, client, auth, leader, project):
        sprint = self._create(client, auth(leader), project, "Sprint 1", "2020-01-01T00:00:00", "2020-01-15T00:00:00")
        sprint_id = sprint.json()["id"]

        completed = client.patch(f"/api/v1/sprints/{sprint_id}/status", json={"status": "COMPLETED"}, headers=auth(leader))
        assert completed.status_code == 200

        reopened = client.patch(f"/api/v1/sprints/{sprint_id}/status", json={"status": "ACTIVE"}, headers=auth(leader))
        assert reopened.status_code == 400
        body = reopened.json()
        assert body["error"] == "invalid_state_transition"
        assert body["allowed_transitions"] == []

    def test_detail_includes_progress(self, client, auth, leader, project):
        sprint = self._create(client, auth(leader), project, "Sprint 1", "2026-04-01T00:00:00", "2026-04-15T00:00:00")
        response = client.get(f"/api/v1/sprints/{sprint.json()['id']}", headers=auth(leader))
        assert response.status_code == 200
        assert response.json()["total_tasks"] == 0
        assert response.json()["progress"] == 0


class TestTaskEndpoints:
    """Task endpoints."""

    def _create(self, client, headers, project, title, parent_id=None):
        return client.post(
            f"/api/v1/projects/{project.id}/tasks",
            json={
                "title": title,
                "priority": "HIGH",
                "due_date": "2026-04-10T00:00:00",
                "parent_id": parent_id,
            },
            headers=headers,
        )

    def test_create_and_detail(self, client, auth, leader, project):
        parent = self._create(client, auth(leader), project, "Parent")
        assert parent.status_code == 201
        child = self._create(client, auth(leader), project, "Child", parent_id=parent.json()["id"])
        assert child.status_code == 201

        detail = client.get(f"/api/v1/tasks/{parent.json()['id']}", headers=auth(leader))
        assert detail.json()["subtask_ids"] == [child.json()["id"]]

    @pytest.mark.parametrize("missing", ["title", "priority", "due_date"])
    def test_missing_required_field_is_named(self, client, auth, leader, project, missing):
        body = {"title": "Task", "priority": "HIGH", "due_date": "2026-04-10T00:00:00"}
        del body[missing]

        response = client.post(f"/api/v1/projects/{project.id}/tasks", json=body, headers=auth(leader))

        assert response.status_code == 400
        assert response.json()["field"] == missing

    def test_invalid_priority_lists_legal_values(self, client, auth, leader, project):
        task = self._create(client, auth(leader), project, "Task")
        response = client.patch(
            f"/api/v1/tasks/{task.json()['id']}/priority", json={"priority": "CRITICAL"}, headers=auth(leader)
        )
        assert response.status_code == 400
        assert response.json()["allowed_values"] == ["LOW", "MEDIUM", "HIGH", "URGENT"]

    def test_permanent_delete_forbidden_for_non_admin(self, client, auth, leader, project):
        task = self._create(client, auth(leader), project, "Task")
        response = client.delete(
            f"/api/v1/tasks/{task.json()['id']}", params={"permanent": True}, headers=auth(leader)
        )
        assert response.status_code == 403

    def test_soft_delete_and_restore(self, client, auth, leader, project):
        parent = self._create(client, auth(leader), project, "Parent")
        self._create(client, auth(leader), project, "Child", parent_id=parent.json()["id"])
        parent_id = parent.json()["id"]

        deleted = client.delete(f"/api/v1/tasks/{parent_id}", headers=auth(leader))
        assert deleted.status_code == 200
        assert deleted.json()["deleted_subtasks_count"] == 1

        restored = client.patch(
            f"/api/v1/tasks/{parent_id}/restore", params={"restore_subtasks": True}, headers=auth(leader)
        )
        assert restored.status_code == 200
        assert restored.json()["restored_subtasks_count"] == 1
