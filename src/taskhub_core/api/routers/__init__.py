"""API routers for Taskhub Core."""

from . import activity, departments, organizations, projects, sprints, tasks, teams, users

__all__ = ["activity", "departments", "organizations", "projects", "sprints", "tasks", "teams", "users"]
