"""
Task Approval State Machine

Three-tier sequential sign-off:
  pending_admin → pending_main_lawyer → pending_assigned_lawyer → approved

Each approval action is legal only from its own ``from`` state and only for
the actor relation listed in APPROVAL_TRANSITIONS.  Approvals never skip a
tier.  The two reassignment operations reset the chain instead: a new main
lawyer sends it back to the admin or main-lawyer tier, a new executing
lawyer sends it to the final gate from wherever it stands.

Functions here are pure: they validate, then mutate the task object they are
given, and return a result dict.  Persistence, locking and the activity log
belong to ``WorkflowService``.

Usage:
    from casedesk.services.approval import approve

    result = approve(task, actor, "approve_admin")
    # {"action", "previous_status", "new_status"}
"""

from datetime import datetime, timezone

from casedesk.core.exceptions import IllegalStateError
from casedesk.models.task import (
    APPROVAL_STATUSES,
    APPROVAL_TIERS,
    APPROVED,
    PENDING_ADMIN,
    PENDING_ASSIGNED_LAWYER,
    PENDING_MAIN_LAWYER,
)
from casedesk.services.permission import (
    REL_ADMIN,
    REL_ASSIGNED_LAWYER,
    REL_CREATOR_OR_ADMIN,
    REL_MAIN_LAWYER,
    authorize,
)

# Approval transition rules
APPROVAL_TRANSITIONS = {
    "approve_admin": {
        "from": PENDING_ADMIN,
        "to": PENDING_MAIN_LAWYER,
        "relation": REL_CREATOR_OR_ADMIN,
        "tier": "admin",
        "activity": "approved_admin",
    },
    "approve_main_lawyer": {
        "from": PENDING_MAIN_LAWYER,
        "to": PENDING_ASSIGNED_LAWYER,
        "relation": REL_MAIN_LAWYER,
        "tier": "main_lawyer",
        "activity": "approved_main_lawyer",
    },
    "approve_assigned_lawyer": {
        "from": PENDING_ASSIGNED_LAWYER,
        "to": APPROVED,
        "relation": REL_ASSIGNED_LAWYER,
        "tier": "assigned_lawyer",
        "activity": "approved_assigned_lawyer",
    },
}

_TIER_COLUMNS = {tier: (by_col, at_col) for tier, by_col, at_col in APPROVAL_TIERS}


def _utcnow():
    return datetime.now(timezone.utc)


def _clear_tier(task, tier: str) -> None:
    by_col, at_col = _TIER_COLUMNS[tier]
    setattr(task, by_col, None)
    setattr(task, at_col, None)


# ── Chain inspection ─────────────────────────────────────────────────────────

def initial_approval_fields() -> dict:
    """Column values for a freshly created task: nothing approved yet."""
    fields = {"approval_status": PENDING_ADMIN}
    for _tier, by_col, at_col in APPROVAL_TIERS:
        fields[by_col] = None
        fields[at_col] = None
    return fields


def approval_fields_consistent(task) -> bool:
    """
    Chain invariant: exactly the tiers preceding ``approval_status`` carry an
    approver and a timestamp; every tier at or after it is empty.

    Holds across approvals and main-lawyer reassignment.  Executing-lawyer
    reassignment jumps to the final gate and may leave upstream tiers empty.
    """
    if task.approval_status not in APPROVAL_STATUSES:
        return False
    filled_count = APPROVAL_STATUSES.index(task.approval_status)
    for index, (_tier, by_col, at_col) in enumerate(APPROVAL_TIERS):
        by_val, at_val = getattr(task, by_col), getattr(task, at_col)
        if index < filled_count:
            if by_val is None or at_val is None:
                return False
        elif by_val is not None or at_val is not None:
            return False
    return True


def available_approvals(task) -> list[str]:
    """Approval actions whose ``from`` state matches the task right now."""
    return [
        action for action, rule in APPROVAL_TRANSITIONS.items()
        if task.approval_status == rule["from"]
    ]


def validate_approval(task, action: str) -> dict:
    """
    Validate whether *action* is legal for the task's current approval state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = APPROVAL_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": task.approval_status, "to": None,
                "reason": f"Unknown action: {action}"}

    if task.approval_status != rule["from"]:
        return {"valid": False, "from": task.approval_status, "to": rule["to"],
                "reason": f"Task is not awaiting {rule['tier']} approval"}

    return {"valid": True, "from": task.approval_status, "to": rule["to"], "reason": None}


# ── Approvals ────────────────────────────────────────────────────────────────

def approve(task, actor, action: str, *, now: datetime | None = None) -> dict:
    """
    Execute one approval step.

    Args:
        task: Task to approve (mutated in place on success).
        actor: The approving ``Actor``.
        action: approve_admin | approve_main_lawyer | approve_assigned_lawyer
        now: Approval timestamp; defaults to the current UTC time.

    Returns:
        {"action", "activity", "previous_status", "new_status"}

    Raises:
        IllegalStateError: The task is not awaiting this tier.
        ForbiddenError: The actor may not sign this tier.
    """
    validation = validate_approval(task, action)
    if not validation["valid"]:
        raise IllegalStateError(action, task.approval_status, validation["reason"])

    rule = APPROVAL_TRANSITIONS[action]
    authorize(actor, rule["relation"], task)

    by_col, at_col = _TIER_COLUMNS[rule["tier"]]
    previous_status = task.approval_status
    setattr(task, by_col, actor.id)
    setattr(task, at_col, now or _utcnow())
    task.approval_status = rule["to"]

    return {
        "action": action,
        "activity": rule["activity"],
        "previous_status": previous_status,
        "new_status": task.approval_status,
    }


def approve_admin(task, actor, *, now=None) -> dict:
    return approve(task, actor, "approve_admin", now=now)


def approve_main_lawyer(task, actor, *, now=None) -> dict:
    return approve(task, actor, "approve_main_lawyer", now=now)


def approve_assigned_lawyer(task, actor, *, now=None) -> dict:
    return approve(task, actor, "approve_assigned_lawyer", now=now)


# ── Reassignment ─────────────────────────────────────────────────────────────

def reassign_main_lawyer(task, actor, new_main_lawyer_id: int) -> dict:
    """
    Replace the senior approver.

    Clears the main-lawyer and assigned-lawyer tiers.  Admin approval, being
    upstream of the changed role, is kept: the chain resumes at
    ``pending_main_lawyer`` when it exists, else at ``pending_admin``.

    Raises:
        ForbiddenError: Only administrators may change the main lawyer.
    """
    authorize(actor, REL_ADMIN, task)

    previous_status = task.approval_status
    previous_main_lawyer = task.main_lawyer_id
    task.main_lawyer_id = new_main_lawyer_id
    task.main_lawyer_assigned_by = actor.id
    _clear_tier(task, "main_lawyer")
    _clear_tier(task, "assigned_lawyer")
    task.approval_status = PENDING_MAIN_LAWYER if task.approved_by_admin else PENDING_ADMIN

    return {
        "action": "reassign_main_lawyer",
        "previous_status": previous_status,
        "new_status": task.approval_status,
        "main_lawyer_id": {"old": previous_main_lawyer, "new": new_main_lawyer_id},
    }


def reassign_executing_lawyer(task, actor, new_assigned_to: int) -> dict:
    """
    Replace the executing lawyer and reopen the chain's final gate.

    The assigned-lawyer tier is cleared and the status forced to
    ``pending_assigned_lawyer`` from any state, ``approved`` included.
    Upstream tiers are left as they are, so a task reassigned before admin
    or main-lawyer approval reaches the final gate with those tiers empty.

    Raises:
        ForbiddenError: Actor is neither the creator nor an administrator.
    """
    authorize(actor, REL_CREATOR_OR_ADMIN, task)

    previous_status = task.approval_status
    previous_assignee = task.assigned_to
    task.assigned_to = new_assigned_to
    _clear_tier(task, "assigned_lawyer")
    task.approval_status = PENDING_ASSIGNED_LAWYER

    return {
        "action": "reassign_executing_lawyer",
        "previous_status": previous_status,
        "new_status": task.approval_status,
        "assigned_to": {"old": previous_assignee, "new": new_assigned_to},
    }
