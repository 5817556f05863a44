"""
Shared fixtures: an in-memory stand-in for the Supabase client.

Only the query shapes the workflow code issues are modelled:
projects insert, select/update filtered by eq, profiles select ... in_,
notifications insert, and storage uploads.
"""

from unittest.mock import MagicMock

import pytest


class FakeSupabase:
    """Records writes and answers reads from a dict of project rows."""

    def __init__(self, projects=None, profile_ids=()):
        self.projects = {p["project_id"]: dict(p) for p in (projects or [])}
        self.profile_ids = set(profile_ids)
        self.updates = []
        self.inserts = []
        self.notifications = []
        self.update_error = None
        self.insert_error = None
        self.notification_error = None
        self.profile_error = None
        self.stale = False
        self.client = MagicMock()
        self.client.table.side_effect = self._table
        self.storage = self.client.storage

    # -- tables -------------------------------------------------------------

    def _table(self, name):
        table = MagicMock()
        if name == "projects":
            table.update.side_effect = self._projects_update
            table.insert.side_effect = self._projects_insert
            table.select.side_effect = self._projects_select
        elif name == "profiles":
            table.select.side_effect = self._profiles_select
        elif name == "notifications":
            table.insert.side_effect = self._notifications_insert
        return table

    def _projects_update(self, patch):
        filters = {}
        query = MagicMock()

        def eq(field, value):
            filters[field] = value
            return query

        def execute():
            if self.update_error:
                raise self.update_error
            self.updates.append(dict(patch))
            row = self.projects.get(filters.get("project_id"))
            if row is None or self.stale:
                return MagicMock(data=[])
            if "updated_at" in filters and row.get("updated_at") != filters["updated_at"]:
                return MagicMock(data=[])
            row.update(patch)
            return MagicMock(data=[dict(row)])

        query.eq.side_effect = eq
        query.execute.side_effect = execute
        return query

    def _projects_insert(self, row):
        query = MagicMock()

        def execute():
            if self.insert_error:
                raise self.insert_error
            project_id = max(self.projects, default=0) + 1
            stored = {**row, "project_id": project_id}
            self.projects[project_id] = stored
            self.inserts.append(dict(row))
            return MagicMock(data=[dict(stored)])

        query.execute.side_effect = execute
        return query

    def _projects_select(self, *args):
        filters = {}
        query = MagicMock()

        def eq(field, value):
            filters[field] = value
            return query

        def contains(field, values):
            filters[f"contains:{field}"] = values
            return query

        def execute():
            rows = list(self.projects.values())
            if "project_id" in filters:
                rows = [r for r in rows if r["project_id"] == filters["project_id"]]
            wanted = filters.get("contains:preparer")
            if wanted:
                rows = [r for r in rows if set(wanted) <= set(r.get("preparer") or [])]
            return MagicMock(data=[dict(r) for r in rows])

        query.eq.side_effect = eq
        query.contains.side_effect = contains
        query.limit.return_value = query
        query.execute.side_effect = execute
        return query

    def _profiles_select(self, *args):
        query = MagicMock()

        def in_(field, values):
            if self.profile_error:
                query.execute.side_effect = self.profile_error
            else:
                query.execute.return_value = MagicMock(
                    data=[{"id": v} for v in values if v in self.profile_ids]
                )
            return query

        query.in_.side_effect = in_
        return query

    def _notifications_insert(self, rows):
        query = MagicMock()

        def execute():
            if self.notification_error:
                raise self.notification_error
            self.notifications.extend(rows)
            return MagicMock(data=rows)

        query.execute.side_effect = execute
        return query

    # -- assertions helpers -------------------------------------------------

    def recipients(self):
        return [n["user_id"] for n in self.notifications]


@pytest.fixture
def sample_project():
    return {
        "project_id": 42,
        "project_name": "Smith T1 2025",
        "status": "To Do",
        "client_status": "Pending",
        "preparer_status": "WIP",
        "reviewer_status": None,
        "is_locked": False,
        "archived_at": None,
        "date_in": None,
        "date_completed": None,
        "due_date": "2026-11-30",
        "preparer": ["user-prep-1", "user-prep-2"],
        "reviewer": "user-reviewer",
        "to_do_or_update": "Waiting on T4 slips",
        "updated_at": "2026-10-01T12:00:00",
        "comments": None,
        "notes": None,
    }


@pytest.fixture
def fake_supabase(sample_project):
    return FakeSupabase(
        projects=[sample_project],
        profile_ids={"user-prep-1", "user-prep-2", "user-reviewer", "user-partner"},
    )
