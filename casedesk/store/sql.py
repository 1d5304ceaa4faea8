"""
SqlTaskStore: TaskStore backed by the Flask-SQLAlchemy session.

Ids come from the database (autoincrement primary keys), so concurrent
creation never collides.  ``transaction()`` commits on success and rolls the
session back on any exception, which undoes both the task mutation and the
activity row appended alongside it.

Must be used inside a Flask application context.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager

from sqlalchemy import select

from casedesk.models import db
from casedesk.models.audit import TaskActivity
from casedesk.models.auth import User
from casedesk.models.stage import Stage
from casedesk.models.task import Task
from casedesk.store.base import TaskStore, check_filters


class SqlTaskStore(TaskStore):
    """Relational store.  Transaction control lives here, not in callers."""

    def __init__(self, session=None):
        self._session = session
        self._local = threading.local()

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def transaction(self):
        if getattr(self._local, "depth", 0):
            self._local.depth += 1
            try:
                yield self
            finally:
                self._local.depth -= 1
            return

        self._local.depth = 1
        try:
            yield self
            self.session.commit()
        except BaseException:
            self.session.rollback()
            raise
        finally:
            self._local.depth = 0

    def _flush(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    # ── Tasks ────────────────────────────────────────────────────────────

    def get_task(self, task_id, *, for_update=False):
        return self.session.get(
            Task, task_id,
            populate_existing=True,
            with_for_update=for_update or None,
        )

    def list_tasks(self, **filters):
        stmt = select(Task)
        for key, value in check_filters(filters).items():
            stmt = stmt.where(getattr(Task, key) == value)
        return list(self.session.execute(stmt.order_by(Task.id.asc())).scalars().all())

    def add_task(self, task):
        return self._flush(task)

    def save_task(self, task):
        return self._flush(task)

    def delete_task(self, task_id):
        task = self.session.get(Task, task_id)
        if task is not None:
            self.session.delete(task)
            self.session.flush()

    # ── Activity log ─────────────────────────────────────────────────────

    def append_activity(self, entry):
        return self._flush(entry)

    def list_activities(self, task_id=None):
        stmt = select(TaskActivity)
        if task_id is not None:
            stmt = stmt.where(TaskActivity.task_id == task_id)
        return list(self.session.execute(stmt.order_by(TaskActivity.id.asc())).scalars().all())

    # ── Stage catalog ────────────────────────────────────────────────────

    def list_stages(self):
        stmt = select(Stage).order_by(Stage.order.asc(), Stage.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def get_stage(self, stage_id):
        return self.session.get(Stage, stage_id)

    def add_stage(self, stage):
        return self._flush(stage)

    def save_stage(self, stage):
        return self._flush(stage)

    def delete_stage(self, stage_id):
        stage = self.session.get(Stage, stage_id)
        if stage is not None:
            self.session.delete(stage)
            self.session.flush()

    # ── Users ────────────────────────────────────────────────────────────

    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def list_users(self, role=None):
        stmt = select(User)
        if role is not None:
            stmt = stmt.where(User.role == role)
        return list(self.session.execute(stmt.order_by(User.id.asc())).scalars().all())

    def add_user(self, user):
        return self._flush(user)
