"""
CaseDesk
Identity directory model.

Models:
    - User: a member of the practice who can create, approve or execute tasks.

The workflow engine never authenticates.  Callers hand it an already-validated
``Actor``; the ``users`` table only backs reference resolution (does the
assigned lawyer exist?) and default-approver lookup.
"""

from datetime import datetime, timezone

from casedesk.models import db
from casedesk.models.base import RowMixin

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "admin"
ROLE_LAWYER = "lawyer"
ROLE_DEPARTMENT_HEAD = "department_head"
ROLE_ASSISTANT = "assistant"

USER_ROLES = {ROLE_ADMIN, ROLE_LAWYER, ROLE_DEPARTMENT_HEAD, ROLE_ASSISTANT}


class User(RowMixin, db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.Index("idx_users_role", "role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    email = db.Column(db.String(200))
    role = db.Column(
        db.String(30), nullable=False,
        comment="admin | lawyer | department_head | assistant",
    )
    is_main_lawyer = db.Column(
        db.Boolean, default=False,
        comment="Preferred default senior approver when a task names none",
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_main_lawyer": bool(self.is_main_lawyer),
            "is_active": self.is_active is not False,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"
