"""
InMemoryTaskStore: thread-safe TaskStore for tests, demos and small
single-process deployments.

Storage model:
  - Committed rows are plain column dicts keyed by id, guarded by one lock.
  - Every read materialises a fresh, session-less model instance, so callers
    can mutate what they read without touching shared state.
  - Writes inside ``transaction()`` are staged in a per-thread unit of work
    and applied under the lock on commit; an exception discards them.
  - Ids come from ``itertools.count`` under the same lock: monotonic,
    collision-free, never derived from existing keys.
"""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager

from casedesk.models.audit import TaskActivity
from casedesk.models.auth import User
from casedesk.models.stage import Stage, catalog_order
from casedesk.models.task import Task
from casedesk.store.base import TaskStore, check_filters


class _UnitOfWork:
    """Staged writes of one transaction.  ``None`` marks a deleted row."""

    def __init__(self):
        self.tasks: dict[int, dict | None] = {}
        self.stages: dict[int, dict | None] = {}
        self.users: dict[int, dict | None] = {}
        self.activities: list[dict] = []


class InMemoryTaskStore(TaskStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: dict[str, dict[int, dict]] = {"tasks": {}, "stages": {}, "users": {}}
        self._activities: list[dict] = []
        self._sequences = {
            "tasks": itertools.count(1),
            "stages": itertools.count(1),
            "users": itertools.count(1),
            "activities": itertools.count(1),
        }
        self._local = threading.local()

    # ── Transactions ─────────────────────────────────────────────────────

    def _uow(self) -> _UnitOfWork | None:
        return getattr(self._local, "uow", None)

    @contextmanager
    def transaction(self):
        if self._uow() is not None:
            yield self
            return

        uow = _UnitOfWork()
        self._local.uow = uow
        try:
            yield self
        except BaseException:
            self._local.uow = None
            raise
        self._local.uow = None
        self._commit(uow)

    def _commit(self, uow: _UnitOfWork) -> None:
        with self._lock:
            for table, staged in (
                ("tasks", uow.tasks),
                ("stages", uow.stages),
                ("users", uow.users),
            ):
                rows = self._tables[table]
                for row_id, row in staged.items():
                    if row is None:
                        rows.pop(row_id, None)
                    else:
                        rows[row_id] = row
            self._activities.extend(uow.activities)

    @contextmanager
    def _writing(self):
        """Join the caller's transaction, or autocommit a single write."""
        if self._uow() is not None:
            yield self._uow()
        else:
            with self.transaction():
                yield self._uow()

    def _next_id(self, sequence: str) -> int:
        with self._lock:
            return next(self._sequences[sequence])

    def _rows(self, table: str) -> dict[int, dict]:
        with self._lock:
            rows = dict(self._tables[table])
        uow = self._uow()
        if uow is not None:
            for row_id, row in getattr(uow, table).items():
                if row is None:
                    rows.pop(row_id, None)
                else:
                    rows[row_id] = row
        return rows

    def _stage_row(self, table: str, model) -> None:
        with self._writing() as uow:
            getattr(uow, table)[model.id] = model.to_row()

    # ── Tasks ────────────────────────────────────────────────────────────

    def get_task(self, task_id, *, for_update=False):
        row = self._rows("tasks").get(task_id)
        return Task.from_row(row) if row is not None else None

    def list_tasks(self, **filters):
        wanted = check_filters(filters)
        rows = self._rows("tasks")
        return [
            Task.from_row(rows[row_id])
            for row_id in sorted(rows)
            if all(rows[row_id].get(k) == v for k, v in wanted.items())
        ]

    def add_task(self, task):
        task.id = self._next_id("tasks")
        self._stage_row("tasks", task)
        return task

    def save_task(self, task):
        self._stage_row("tasks", task)
        return task

    def delete_task(self, task_id):
        with self._writing() as uow:
            uow.tasks[task_id] = None

    # ── Activity log ─────────────────────────────────────────────────────

    def append_activity(self, entry):
        entry.id = self._next_id("activities")
        with self._writing() as uow:
            uow.activities.append(entry.to_row())
        return entry

    def list_activities(self, task_id=None):
        with self._lock:
            rows = list(self._activities)
        uow = self._uow()
        if uow is not None:
            rows.extend(uow.activities)
        if task_id is not None:
            rows = [r for r in rows if r["task_id"] == task_id]
        return [TaskActivity.from_row(r) for r in sorted(rows, key=lambda r: r["id"])]

    # ── Stage catalog ────────────────────────────────────────────────────

    def list_stages(self):
        return catalog_order(Stage.from_row(r) for r in self._rows("stages").values())

    def get_stage(self, stage_id):
        row = self._rows("stages").get(stage_id)
        return Stage.from_row(row) if row is not None else None

    def add_stage(self, stage):
        stage.id = self._next_id("stages")
        self._stage_row("stages", stage)
        return stage

    def save_stage(self, stage):
        self._stage_row("stages", stage)
        return stage

    def delete_stage(self, stage_id):
        with self._writing() as uow:
            uow.stages[stage_id] = None

    # ── Users ────────────────────────────────────────────────────────────

    def get_user(self, user_id):
        row = self._rows("users").get(user_id)
        return User.from_row(row) if row is not None else None

    def list_users(self, role=None):
        rows = self._rows("users")
        return [
            User.from_row(rows[row_id])
            for row_id in sorted(rows)
            if role is None or rows[row_id]["role"] == role
        ]

    def add_user(self, user):
        user.id = self._next_id("users")
        if user.is_active is None:
            user.is_active = True
        if user.is_main_lawyer is None:
            user.is_main_lawyer = False
        self._stage_row("users", user)
        return user
