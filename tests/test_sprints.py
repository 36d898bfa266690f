"""Tests for sprint scheduling."""
from datetime import datetime, timedelta

import pytest
from taskhub_core import models, schemas, sprints, tasks
from taskhub_core.errors import ConflictError, NotFoundError, StateTransitionError, ValidationError
from taskhub_core.sprints import (
    IncompleteTasksError,
    SprintNotStartedError,
    SprintOverlapError,
    UnfinishedTasksError,
)

DAY0 = datetime(2026, 4, 1)
BEFORE = DAY0 - timedelta(days=10)


def _sprint(db, actor, project, name, start_day, end_day, status=None, now=BEFORE):
    data = schemas.SprintCreate(
        name=name,
        start_date=DAY0 + timedelta(days=start_day),
        end_date=DAY0 + timedelta(days=end_day),
        status=status,
    )
    return sprints.create_sprint(db, actor, project.id, data, now=now)


def _task(db, actor, project, sprint, title, status=models.TaskStatus.TODO):
    return tasks.create_task(
        db, actor, project.id,
        schemas.TaskCreate(
            title=title,
            priority=models.TaskPriority.MEDIUM,
            status=status,
            due_date=DAY0 + timedelta(days=5),
            sprint_id=sprint.id,
        ),
    )


class TestSprintCreation:
    """Window, name and overlap checks on create."""

    def test_first_sprint_gets_order_zero(self, db, leader, project):
        first = _sprint(db, leader, project, "Sprint 1", 0, 14)
        second = _sprint(db, leader, project, "Sprint 2", 14, 28)
        assert (first.order, second.order) == (0, 1)

    def test_default_status_follows_dates(self, db, leader, project):
        upcoming = _sprint(db, leader, project, "Upcoming", 0, 14, now=BEFORE)
        running = _sprint(db, leader, project, "Running", 20, 30, now=DAY0 + timedelta(days=25))
        assert upcoming.status == models.SprintStatus.PLANNING
        assert running.status == models.SprintStatus.ACTIVE

    def test_explicit_status_overrides_suggestion(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Forced", 0, 14, status=models.SprintStatus.ACTIVE)
        assert sprint.status == models.SprintStatus.ACTIVE

    def test_overlap_rejected_with_conflicting_sprint(self, db, leader, project):
        existing = _sprint(db, leader, project, "Sprint 1", 0, 14)

        with pytest.raises(SprintOverlapError) as exc_info:
            _sprint(db, leader, project, "Sprint 2", 7, 21)

        error = exc_info.value
        assert error.status_code == 400
        assert error.message == "Sprint dates overlap with existing sprint"
        assert error.details["overlapping_sprint"]["id"] == str(existing.id)
        assert db.query(models.Sprint).filter(models.Sprint.name == "Sprint 2").count() == 0

    def test_back_to_back_sprints_do_not_overlap(self, db, leader, project):
        _sprint(db, leader, project, "Sprint 1", 0, 14)
        second = _sprint(db, leader, project, "Sprint 2", 14, 28)
        assert second.id is not None

    def test_deleted_sprint_frees_its_window(self, db, leader, project):
        first = _sprint(db, leader, project, "Sprint 1", 0, 14)
        sprints.soft_delete_sprint(db, leader, first.id)
        replacement = _sprint(db, leader, project, "Sprint 1b", 0, 14)
        assert replacement.id != first.id

    def test_inverted_window_rejected(self, db, leader, project):
        with pytest.raises(ValidationError):
            _sprint(db, leader, project, "Backwards", 14, 0)

    def test_duplicate_name_rejected(self, db, leader, project):
        _sprint(db, leader, project, "Sprint 1", 0, 14)
        with pytest.raises(ConflictError) as exc_info:
            _sprint(db, leader, project, "Sprint 1", 20, 30)
        assert exc_info.value.status_code == 409


class TestSprintUpdate:
    """Updates re-check the window, name and overlap, ignoring the sprint itself."""

    def test_shift_within_own_window(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        _sprint(db, leader, project, "Sprint 2", 14, 28)

        updated = sprints.update_sprint(
            db, leader, sprint.id,
            schemas.SprintUpdate(start_date=DAY0 + timedelta(days=2), end_date=DAY0 + timedelta(days=12)),
        )

        assert updated.start_date == DAY0 + timedelta(days=2)
        assert updated.end_date == DAY0 + timedelta(days=12)

    def test_overlap_with_sibling_rejected(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        sibling = _sprint(db, leader, project, "Sprint 2", 14, 28)

        with pytest.raises(SprintOverlapError) as exc_info:
            sprints.update_sprint(
                db, leader, sprint.id, schemas.SprintUpdate(end_date=DAY0 + timedelta(days=20)),
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.details["overlapping_sprint"]["id"] == str(sibling.id)
        assert sprint.end_date == DAY0 + timedelta(days=14)

    def test_inverted_window_rejected(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        with pytest.raises(ValidationError) as exc_info:
            sprints.update_sprint(
                db, leader, sprint.id, schemas.SprintUpdate(start_date=DAY0 + timedelta(days=20)),
            )
        assert exc_info.value.status_code == 400

    def test_rename_to_sibling_name_rejected(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        _sprint(db, leader, project, "Sprint 2", 14, 28)

        with pytest.raises(ConflictError) as exc_info:
            sprints.update_sprint(db, leader, sprint.id, schemas.SprintUpdate(name="Sprint 2"))

        assert exc_info.value.status_code == 409
        assert sprint.name == "Sprint 1"

    def test_cleared_dates_rejected(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        with pytest.raises(ValidationError) as exc_info:
            sprints.update_sprint(db, leader, sprint.id, schemas.SprintUpdate(start_date=None))
        assert exc_info.value.field == "start_date"


class TestSprintStatus:
    """Status transitions go through the state machine and task gates."""

    def test_invalid_transition_lists_allowed(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14, status=models.SprintStatus.ACTIVE)

        with pytest.raises(StateTransitionError) as exc_info:
            sprints.update_sprint_status(db, leader, sprint.id, "PLANNING")

        assert exc_info.value.to_dict()["allowed_transitions"] == ["COMPLETED"]

    def test_same_status_is_noop(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        updated = sprints.update_sprint_status(db, leader, sprint.id, "PLANNING")
        assert updated.status == models.SprintStatus.PLANNING

    def test_unknown_status_rejected(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        with pytest.raises(ValidationError) as exc_info:
            sprints.update_sprint_status(db, leader, sprint.id, "CLOSED")
        assert exc_info.value.details["allowed_values"] == ["PLANNING", "ACTIVE", "COMPLETED"]

    def test_cannot_activate_before_start(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        with pytest.raises(SprintNotStartedError):
            sprints.update_sprint_status(db, leader, sprint.id, "ACTIVE", now=BEFORE)

        started = sprints.update_sprint_status(db, leader, sprint.id, "ACTIVE", now=DAY0 + timedelta(days=1))
        assert started.status == models.SprintStatus.ACTIVE

    def test_completion_blocked_by_unfinished_tasks(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14, status=models.SprintStatus.ACTIVE)
        for i in range(3):
            _task(db, leader, project, sprint, f"Open {i}")
        _task(db, leader, project, sprint, "Finished", status=models.TaskStatus.DONE)

        with pytest.raises(IncompleteTasksError) as exc_info:
            sprints.update_sprint_status(db, leader, sprint.id, "COMPLETED")

        assert exc_info.value.details["incomplete_tasks"] == 3
        assert exc_info.value.status_code == 400
        assert sprint.status == models.SprintStatus.ACTIVE

    def test_completion_after_tasks_done(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14, status=models.SprintStatus.ACTIVE)
        task = _task(db, leader, project, sprint, "Only task")
        tasks.update_task_status(db, leader, task.id, "DONE")

        completed = sprints.update_sprint_status(db, leader, sprint.id, "COMPLETED")

        assert completed.status == models.SprintStatus.COMPLETED
        _, stats = sprints.get_sprint(db, leader, sprint.id)
        assert stats == {"total_tasks": 1, "completed_tasks": 1, "progress": 100}


class TestSprintDeletion:
    """Deletion and restore rules."""

    def test_active_sprint_with_open_tasks_cannot_be_deleted(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14, status=models.SprintStatus.ACTIVE)
        _task(db, leader, project, sprint, "Open")

        with pytest.raises(UnfinishedTasksError) as exc_info:
            sprints.soft_delete_sprint(db, leader, sprint.id)
        assert exc_info.value.details["unfinished_tasks"] == 1

    def test_planning_sprint_with_open_tasks_can_be_deleted(self, db, leader, project):
        sprint = _sprint(db, leader, project, "Sprint 1", 0, 14)
        _task(db, leader, project, sprint, "Open")

        deleted = sprints.soft_delete_sprint(db, leader, sprint.id)

        assert deleted.deleted_at is not None
        with pytest.raises(NotFoundError):
            sprints.get_sprint(db, leader, sprint.id)

    def test_restore_rechecks_overlap(self, db, leader, project):
        first = _sprint(db, leader, project, "Sprint 1", 0, 14)
        sprints.soft_delete_sprint(db, leader, first.id)
        _sprint(db, leader, project, "Sprint 1b", 7, 21)

        with pytest.raises(SprintOverlapError):
            sprints.restore_sprint(db, leader, first.id)

    def test_restore_without_conflict(self, db, leader, project):
        first = _sprint(db, leader, project, "Sprint 1", 0, 14)
        sprints.soft_delete_sprint(db, leader, first.id)

        restored = sprints.restore_sprint(db, leader, first.id)

        assert restored.deleted_at is None
        items, total = sprints.list_sprints(db, leader, project.id)
        assert total == 1
        assert items[0].id == first.id
