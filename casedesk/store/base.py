"""
TaskStore: persistence interface consumed by the workflow engine.

The engine's contracts are written against this interface only.  Two
implementations ship:

    SqlTaskStore       Flask-SQLAlchemy session, database-allocated ids
    InMemoryTaskStore  thread-safe dicts with staged transactions

Transaction contract:
    Every write happens inside ``transaction()``.  Leaving the block normally
    makes all writes visible at once; leaving it with an exception discards
    all of them.  Nested ``transaction()`` blocks join the outer one.

Id contract:
    ``add_task``, ``append_activity``, ``add_stage`` and ``add_user`` allocate
    ids atomically and monotonically.  Callers never pick ids.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager

TASK_FILTERS = (
    "status",
    "department_id",
    "assigned_to",
    "approval_status",
    "created_by",
    "stage_id",
    "main_lawyer_id",
)


class TaskStore(ABC):
    """Abstract task/stage/user/activity repository."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Atomic unit of work (see module docstring)."""

    # ── Tasks ────────────────────────────────────────────────────────────

    @abstractmethod
    def get_task(self, task_id: int, *, for_update: bool = False):
        """Return the task or None.  *for_update* locks the row where supported."""

    @abstractmethod
    def list_tasks(self, **filters) -> list:
        """Tasks matching every given ``TASK_FILTERS`` equality, id ascending."""

    @abstractmethod
    def add_task(self, task):
        """Insert a new task and allocate its id.  Returns the stored task."""

    @abstractmethod
    def save_task(self, task):
        """Persist the task's current column values (upsert)."""

    @abstractmethod
    def delete_task(self, task_id: int) -> None:
        """Remove the task.  Its activity entries are untouched."""

    # ── Activity log ─────────────────────────────────────────────────────

    @abstractmethod
    def append_activity(self, entry):
        """Append-only insert.  Allocates the entry id."""

    @abstractmethod
    def list_activities(self, task_id: int | None = None) -> list:
        """Activity entries, optionally for one task, oldest first."""

    # ── Stage catalog ────────────────────────────────────────────────────

    @abstractmethod
    def list_stages(self) -> list:
        """All stages in pipeline order (``order``, then id)."""

    @abstractmethod
    def get_stage(self, stage_id: int):
        """Return the stage or None."""

    @abstractmethod
    def add_stage(self, stage):
        """Insert a stage and allocate its id."""

    @abstractmethod
    def save_stage(self, stage):
        """Persist the stage's current column values."""

    @abstractmethod
    def delete_stage(self, stage_id: int) -> None:
        """Remove the stage row."""

    # ── Users ────────────────────────────────────────────────────────────

    @abstractmethod
    def get_user(self, user_id: int):
        """Return the user or None."""

    @abstractmethod
    def list_users(self, role: str | None = None) -> list:
        """Users, optionally of one role, id ascending."""

    @abstractmethod
    def add_user(self, user):
        """Insert a user and allocate its id."""

    # ── Shared helpers ───────────────────────────────────────────────────

    def count_tasks_on_stage(self, stage_id: int) -> int:
        return len(self.list_tasks(stage_id=stage_id))


def check_filters(filters: dict) -> dict:
    """Drop None-valued filters; reject unknown keys."""
    unknown = set(filters) - set(TASK_FILTERS)
    if unknown:
        raise ValueError(f"Unknown task filter(s): {', '.join(sorted(unknown))}")
    return {k: v for k, v in filters.items() if v is not None}
