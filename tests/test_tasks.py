"""Tests for task hierarchy management."""
from datetime import datetime
from uuid import uuid4

import pytest
from taskhub_core import models, projects, schemas, sprints, tasks
from taskhub_core.errors import NotFoundError, PermissionDeniedError, ValidationError
from taskhub_core.tasks import (
    AssignedUserNotFoundError,
    CyclicHierarchyError,
    ParentNotFoundError,
    SelfParentError,
    SprintNotFoundError,
)

DUE = datetime(2026, 4, 15)


@pytest.fixture
def new_task(db, leader, project):
    def _new_task(title, parent=None, **fields):
        data = schemas.TaskCreate(
            title=title,
            priority=models.TaskPriority.MEDIUM,
            due_date=DUE,
            parent_id=parent.id if parent else None,
            **fields,
        )
        return tasks.create_task(db, leader, project.id, data)

    return _new_task


@pytest.fixture
def tree(new_task):
    """root → child → grandchild"""
    root = new_task("Root")
    child = new_task("Child", parent=root)
    grandchild = new_task("Grandchild", parent=child)
    return root, child, grandchild


class TestHierarchy:
    """Parent links stay inside the project and never form a cycle."""

    def test_self_parent_rejected(self, db, leader, new_task):
        task = new_task("Lonely")
        with pytest.raises(SelfParentError) as exc_info:
            tasks.update_task(db, leader, task.id, schemas.TaskUpdate(parent_id=task.id))
        assert exc_info.value.field == "parent_id"
        assert exc_info.value.message == "A task cannot be its own parent"

    def test_cycle_rejected(self, db, leader, tree):
        root, child, grandchild = tree

        with pytest.raises(CyclicHierarchyError) as exc_info:
            tasks.update_task(db, leader, root.id, schemas.TaskUpdate(parent_id=grandchild.id))

        assert exc_info.value.message == "Circular dependency detected in task hierarchy"
        assert exc_info.value.details["cycle"] == [str(grandchild.id), str(child.id), str(root.id)]
        assert root.parent_id is None

    def test_reparent_to_sibling_branch(self, db, leader, new_task, tree):
        root, child, grandchild = tree
        other = new_task("Other")

        moved = tasks.update_task(db, leader, grandchild.id, schemas.TaskUpdate(parent_id=other.id))

        assert moved.parent_id == other.id

    def test_detach_with_null_parent(self, db, leader, tree):
        _, child, _ = tree
        detached = tasks.update_task(db, leader, child.id, schemas.TaskUpdate(parent_id=None))
        assert detached.parent_id is None

    def test_parent_from_other_project_rejected(self, db, leader, team, new_task):
        other_project = projects.create_project(
            db, leader,
            schemas.ProjectCreate(
                team_id=team.id, name="Elsewhere",
                start_date=datetime(2026, 1, 1), end_date=datetime(2026, 12, 31),
            ),
        )
        foreign = tasks.create_task(
            db, leader, other_project.id,
            schemas.TaskCreate(title="Foreign", priority=models.TaskPriority.LOW, due_date=DUE),
        )

        with pytest.raises(ParentNotFoundError):
            new_task("Local", parent=foreign)

    def test_detail_lists_direct_subtasks(self, db, leader, tree):
        root, child, _ = tree
        task, subtask_ids = tasks.get_task(db, leader, root.id)
        assert task.id == root.id
        assert subtask_ids == [child.id]


class TestAssignment:
    """Assignees must be active project members."""

    def test_non_member_assignee_rejected(self, db, make_user, new_task):
        outsider = make_user()
        with pytest.raises(AssignedUserNotFoundError) as exc_info:
            new_task("Assigned", assigned_to=outsider.id)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Assigned user not found"

    def test_member_assignee_accepted(self, db, leader, make_user, project, new_task):
        member = make_user()
        projects.add_project_members(db, leader, project.id, [member.id])

        task = new_task("Assigned", assigned_to=member.id)

        assert task.assigned_to == member.id

    def test_cleared_required_field_rejected(self, db, leader, new_task):
        task = new_task("Titled")
        with pytest.raises(ValidationError) as exc_info:
            tasks.update_task(db, leader, task.id, schemas.TaskUpdate(title=None))
        assert exc_info.value.field == "title"

    def test_member_cannot_change_status_priority_or_details(self, db, leader, make_user, project, new_task):
        developer = make_user()
        projects.add_project_members(db, leader, project.id, [developer.id], role=models.ProjectRole.DEVELOPER)
        task = new_task("Shared")

        with pytest.raises(PermissionDeniedError) as exc_info:
            tasks.update_task_status(db, developer, task.id, "IN_PROGRESS")
        assert exc_info.value.status_code == 403
        with pytest.raises(PermissionDeniedError):
            tasks.update_task_priority(db, developer, task.id, "HIGH")
        with pytest.raises(PermissionDeniedError):
            tasks.update_task(db, developer, task.id, schemas.TaskUpdate(title="Renamed"))

        assert task.status == models.TaskStatus.TODO
        assert task.priority == models.TaskPriority.MEDIUM


class TestCreateReferences:
    """Sprint and assignee references are checked on create."""

    def _sprint(self, db, leader, project, name="Sprint 1"):
        return sprints.create_sprint(
            db, leader, project.id,
            schemas.SprintCreate(
                name=name, start_date=datetime(2026, 4, 1), end_date=datetime(2026, 4, 15),
                status=models.SprintStatus.PLANNING,
            ),
        )

    def test_unknown_sprint_rejected(self, db, new_task):
        with pytest.raises(SprintNotFoundError) as exc_info:
            new_task("Orphan", sprint_id=uuid4())
        assert exc_info.value.status_code == 404

    def test_deleted_sprint_rejected(self, db, leader, project, new_task):
        sprint = self._sprint(db, leader, project)
        sprints.soft_delete_sprint(db, leader, sprint.id)

        with pytest.raises(SprintNotFoundError):
            new_task("Late", sprint_id=sprint.id)

    def test_sprint_from_other_project_rejected(self, db, leader, team, new_task):
        other_project = projects.create_project(
            db, leader,
            schemas.ProjectCreate(
                team_id=team.id, name="Elsewhere",
                start_date=datetime(2026, 1, 1), end_date=datetime(2026, 12, 31),
            ),
        )
        foreign = self._sprint(db, leader, other_project)

        with pytest.raises(SprintNotFoundError):
            new_task("Misfiled", sprint_id=foreign.id)
        assert db.query(models.Task).filter(models.Task.title == "Misfiled").count() == 0

    def test_unknown_assignee_matches_non_member_error(self, db, new_task):
        with pytest.raises(AssignedUserNotFoundError) as exc_info:
            new_task("Assigned", assigned_to=uuid4())
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Assigned user not found"


class TestDeletion:
    """Soft delete cascades down; permanent delete is admin-only."""

    def test_soft_delete_cascades_to_subtasks(self, db, leader, tree):
        root, child, grandchild = tree

        result = tasks.delete_task(db, leader, root.id)

        assert result == {"id": root.id, "permanent": False, "deleted_subtasks_count": 2}
        for task in (root, child, grandchild):
            assert task.deleted_at is not None

    def test_permanent_delete_requires_admin(self, db, leader, tree):
        root, _, _ = tree
        with pytest.raises(PermissionDeniedError) as exc_info:
            tasks.delete_task(db, leader, root.id, permanent=True)
        assert exc_info.value.message == "Only administrators can permanently delete tasks"
        assert db.query(models.Task).filter(models.Task.id == root.id).count() == 1

    def test_admin_permanent_delete_removes_subtree(self, db, admin, tree):
        root, child, grandchild = tree

        result = tasks.delete_task(db, admin, root.id, permanent=True)

        assert result["deleted_subtasks_count"] == 2
        ids = [root.id, child.id, grandchild.id]
        assert db.query(models.Task).filter(models.Task.id.in_(ids)).count() == 0

    def test_restore_with_subtasks(self, db, leader, tree):
        root, child, grandchild = tree
        tasks.delete_task(db, leader, root.id)

        restored, count = tasks.restore_task(db, leader, root.id, restore_subtasks=True)

        assert restored.deleted_at is None
        assert count == 2
        assert child.deleted_at is None
        assert grandchild.deleted_at is None

    def test_restore_without_subtasks(self, db, leader, tree):
        root, child, _ = tree
        tasks.delete_task(db, leader, root.id)

        _, count = tasks.restore_task(db, leader, root.id)

        assert count == 0
        assert child.deleted_at is not None

    def test_restore_blocked_by_deleted_parent(self, db, leader, tree):
        root, child, _ = tree
        tasks.delete_task(db, leader, root.id)

        with pytest.raises(NotFoundError) as exc_info:
            tasks.restore_task(db, leader, child.id)
        assert "parent task is deleted" in exc_info.value.message

    def test_restore_active_task_is_not_found(self, db, leader, new_task):
        task = new_task("Alive")
        with pytest.raises(NotFoundError):
            tasks.restore_task(db, leader, task.id)
