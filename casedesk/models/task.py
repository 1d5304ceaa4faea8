"""
CaseDesk
Task domain model.

Models:
    - Task: a unit of legal work moving through two orthogonal axes,
      the three-tier approval chain and the stage pipeline.

Lifecycle states:
    approval_status:  pending_admin → pending_main_lawyer
                      → pending_assigned_lawyer → approved
    status:           pending → in_progress → completed  (derived from stage)

Approval columns:
    Exactly the tiers *before* the current ``approval_status`` carry an
    approver id and timestamp; every tier at or after it is NULL.
"""

from casedesk.models import db
from casedesk.models.base import RowMixin

# ── Constants ────────────────────────────────────────────────────────────────

TASK_PRIORITIES = {"low", "medium", "high"}
DEFAULT_PRIORITY = "medium"

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"

TASK_STATUSES = {STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED}

PENDING_ADMIN = "pending_admin"
PENDING_MAIN_LAWYER = "pending_main_lawyer"
PENDING_ASSIGNED_LAWYER = "pending_assigned_lawyer"
APPROVED = "approved"

APPROVAL_STATUSES = [
    PENDING_ADMIN,
    PENDING_MAIN_LAWYER,
    PENDING_ASSIGNED_LAWYER,
    APPROVED,
]

# Chain tiers in order: (tier name, approver column, timestamp column)
APPROVAL_TIERS = [
    ("admin", "approved_by_admin", "approved_at_admin"),
    ("main_lawyer", "approved_by_main_lawyer", "approved_at_main_lawyer"),
    ("assigned_lawyer", "approved_by_assigned_lawyer", "approved_at_assigned_lawyer"),
]

TASK_CODE_PREFIX = "TSK"


class Task(RowMixin, db.Model):
    """
    Authoritative task record.

    Mutated exclusively through ``WorkflowService``.  ``task_code`` is written
    once, right after the id is allocated, and never regenerated.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("idx_tasks_status", "status"),
        db.Index("idx_tasks_approval_status", "approval_status"),
        db.Index("idx_tasks_department", "department_id"),
        db.Index("idx_tasks_assigned_to", "assigned_to"),
        db.Index("idx_tasks_stage", "stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_code = db.Column(
        db.String(20), unique=True, nullable=True,
        comment="TSK-<year>-<seq>; NULL only between id allocation and code assignment",
    )

    # Classification
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text)
    priority = db.Column(db.String(10), nullable=False, default=DEFAULT_PRIORITY)
    client_id = db.Column(db.Integer, nullable=False)
    department_id = db.Column(db.Integer, nullable=False)

    # Assignment (plain ids: references survive actor deletion for display)
    assigned_to = db.Column(db.Integer, nullable=False)
    main_lawyer_id = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, nullable=False)
    main_lawyer_assigned_by = db.Column(db.Integer)

    # Lifecycle
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)

    # Approval chain
    approval_status = db.Column(db.String(30), nullable=False, default=PENDING_ADMIN)
    approved_by_admin = db.Column(db.Integer)
    approved_at_admin = db.Column(db.DateTime(timezone=True))
    approved_by_main_lawyer = db.Column(db.Integer)
    approved_at_main_lawyer = db.Column(db.DateTime(timezone=True))
    approved_by_assigned_lawyer = db.Column(db.Integer)
    approved_at_assigned_lawyer = db.Column(db.DateTime(timezone=True))

    # Stage pipeline
    stage_id = db.Column(db.Integer)
    progress = db.Column(db.Integer, nullable=False, default=0)
    last_moved_at = db.Column(db.DateTime(timezone=True))
    moved_by = db.Column(db.Integer)

    # Follow-up / SLA
    last_follow_up_by = db.Column(db.Integer)
    last_follow_up_at = db.Column(db.DateTime(timezone=True))
    last_follow_up_notes = db.Column(db.Text)
    escalated_at = db.Column(db.DateTime(timezone=True))

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True))
    due_date = db.Column(db.DateTime(timezone=True))
    completed_at = db.Column(db.DateTime(timezone=True))

    # ── Helpers ──────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        data = {}
        for name, value in self.to_row().items():
            data[name] = value.isoformat() if hasattr(value, "isoformat") else value
        return data

    def __repr__(self):
        return f"<Task {self.id}: {self.task_code} {self.approval_status}/{self.status}>"
