"""
CaseDesk
Stage catalog model.

Models:
    - Stage: one rung of the ordered work pipeline every task walks through.

Approval gating:
    admin_only  entering the stage needs no prior sign-off beyond the
                administrator moving the task
    single      entering requires the task's admin-tier approval
    multiple    same precondition as ``single``; intended for stages that
                expect more than one approving party
"""

from casedesk.models import db
from casedesk.models.base import RowMixin

# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_ADMIN_ONLY = "admin_only"
APPROVAL_SINGLE = "single"
APPROVAL_MULTIPLE = "multiple"

STAGE_APPROVAL_TYPES = {APPROVAL_ADMIN_ONLY, APPROVAL_SINGLE, APPROVAL_MULTIPLE}

DEFAULT_STAGE_COLOR = "#E0E7FF"

# Default legal pipeline, seeded by ``stage_catalog.seed_default_stages``.
DEFAULT_STAGES = [
    {
        "name": "Initial Review",
        "order": 1,
        "color": "#FEF3C7",
        "description": "Initial review of the case documents and files",
        "requirements": (
            "Collect all core documents\n"
            "Check the file is complete\n"
            "Assess document validity\n"
            "Record any missing documents"
        ),
        "approval_type": APPROVAL_ADMIN_ONLY,
    },
    {
        "name": "Legal Research",
        "order": 2,
        "color": "#DBEAFE",
        "description": "In-depth legal research and analysis",
        "requirements": (
            "Find relevant precedents\n"
            "Study applicable statutes and regulations\n"
            "Analyse competing legal opinions\n"
            "Record references and sources"
        ),
        "approval_type": APPROVAL_MULTIPLE,
    },
    {
        "name": "Argument Preparation",
        "order": 3,
        "color": "#C7D2FE",
        "description": "Drafting and organising the legal arguments",
        "requirements": (
            "Draft the main legal arguments\n"
            "Order the arguments logically\n"
            "Prepare likely rebuttals\n"
            "Back every argument with references"
        ),
        "approval_type": APPROVAL_MULTIPLE,
    },
    {
        "name": "Drafting & Review",
        "order": 4,
        "color": "#D1FAE5",
        "description": "Editing and polishing the documents and briefs",
        "requirements": (
            "Produce final document drafts\n"
            "Full language and spelling review\n"
            "Check consistency across documents\n"
            "Format documents to house standard"
        ),
        "approval_type": APPROVAL_MULTIPLE,
    },
    {
        "name": "Filing & Procedures",
        "order": 5,
        "color": "#FBCFE8",
        "description": "Filing the case and completing the legal procedures",
        "requirements": (
            "Prepare the filing bundle\n"
            "Pay the required fees\n"
            "File with the competent authority\n"
            "Obtain filing receipts"
        ),
        "approval_type": APPROVAL_ADMIN_ONLY,
    },
    {
        "name": "Follow-up",
        "order": 6,
        "color": "#FED7AA",
        "description": "Periodic follow-up and coordination",
        "requirements": (
            "Follow up with the authorities\n"
            "Keep the client informed\n"
            "Answer requests and enquiries\n"
            "Record every development"
        ),
        "approval_type": APPROVAL_SINGLE,
    },
    {
        "name": "Completed",
        "order": 7,
        "color": "#A7F3D0",
        "description": "Task completed and case closed",
        "requirements": (
            "Prepare the final report\n"
            "Record the outcome and final judgment\n"
            "Send the final documents to the client\n"
            "Formally close the case file"
        ),
        "approval_type": APPROVAL_ADMIN_ONLY,
    },
]


class Stage(RowMixin, db.Model):
    """
    A pipeline stage.  ``order`` defines the position; ties are broken by id.

    Metadata (description, requirements, color, is_active) is owned by
    administrators and plays no part in transition logic.
    """

    __tablename__ = "stages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    approval_type = db.Column(
        db.String(20), nullable=False, default=APPROVAL_SINGLE,
        comment="admin_only | single | multiple",
    )
    color = db.Column(db.String(20), default=DEFAULT_STAGE_COLOR)
    description = db.Column(db.Text, default="")
    requirements = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, default=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True))
    updated_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "order": self.order,
            "approval_type": self.approval_type,
            "color": self.color,
            "description": self.description,
            "requirements": self.requirements,
            "is_active": self.is_active is not False,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Stage {self.id}: #{self.order} {self.name} ({self.approval_type})>"


def catalog_order(stages):
    """Sort stages into pipeline order: ``order`` ascending, then id."""
    return sorted(stages, key=lambda s: (s.order or 0, s.id or 0))
