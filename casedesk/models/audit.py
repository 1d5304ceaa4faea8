"""
CaseDesk
Audit domain model.

Models:
    - TaskActivity: immutable, append-only activity log for workflow actions.
"""

import json
from datetime import datetime, timezone

from casedesk.models import db
from casedesk.models.base import RowMixin

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ACTIONS = {
    # Task lifecycle
    "created",
    "updated",
    "approved_admin",
    "approved_main_lawyer",
    "approved_assigned_lawyer",
    "stage_changed",
    "deleted",
    "follow_up",
    "escalated",
    # Stage catalog
    "stage_created",
    "stage_updated",
    "stage_deleted",
}


class TaskActivity(RowMixin, db.Model):
    """
    Immutable activity trail for every workflow action.

    One row per state-changing operation.  ``task_id`` is a plain integer,
    not a foreign key: rows outlive the task they describe, and catalog
    entries carry NULL with the stage id inside ``details``.
    """

    __tablename__ = "task_activities"
    __table_args__ = (
        db.Index("idx_activity_task", "task_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_user", "user_id"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, nullable=True)
    action = db.Column(
        db.String(40), nullable=False,
        comment="created | updated | approved_admin | stage_changed | …",
    )
    user_id = db.Column(
        db.Integer, nullable=True,
        comment="Acting user; NULL for system sweeps (SLA escalation)",
    )

    details_json = db.Column(
        db.Text, default="{}",
        comment="JSON payload: {field: {old, new}} for updates, stage names for moves",
    )

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "action": self.action,
            "user_id": self.user_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<TaskActivity {self.id}: {self.action} on task {self.task_id}>"


# ── Convenience builder ──────────────────────────────────────────────────────

def build_activity(
    *,
    task_id: int | None,
    action: str,
    user_id: int | None,
    details: dict | None = None,
    timestamp: datetime | None = None,
) -> TaskActivity:
    """
    Build an unsaved activity row.  The caller hands it to
    ``TaskStore.append_activity`` inside the same transaction as the
    mutation it describes.
    """
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action: {action}")
    return TaskActivity(
        task_id=task_id,
        action=action,
        user_id=user_id,
        details_json=json.dumps(details or {}, default=str),
        timestamp=timestamp or datetime.now(timezone.utc),
    )
