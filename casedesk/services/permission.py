"""
Capability checks for the task workflow.

Every transition asks one question through one function:

    authorize(actor, relation, task)

where *relation* names how the actor must relate to the task (or the
system) for the operation to be allowed.  Deny-by-default: an unknown
relation is never granted.

Relations:
    admin               actor holds the administrator role
    creator_or_admin    actor created the task, or is an administrator
    main_lawyer         actor is the task's designated main lawyer
    assigned_lawyer     actor is the task's executing lawyer
    participant         creator, main lawyer, assigned lawyer, administrator
                        or department head
    stage_editor        administrator or department head
    tasks:create ...    any ROLE_PERMISSIONS codename

Usage:
    from casedesk.services.permission import Actor, authorize, can

    authorize(actor, REL_CREATOR_OR_ADMIN, task)   # raises ForbiddenError
    if can(actor, REL_ADMIN):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass

from casedesk.core.exceptions import ForbiddenError
from casedesk.models.auth import (
    ROLE_ADMIN,
    ROLE_ASSISTANT,
    ROLE_DEPARTMENT_HEAD,
    ROLE_LAWYER,
)


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller as supplied by the identity provider."""

    id: int
    role: str
    full_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ── Role → permission codenames ─────────────────────────────────────────────

ROLE_PERMISSIONS: dict[str, set[str]] = {
    ROLE_ADMIN: {"*"},
    ROLE_DEPARTMENT_HEAD: {
        "tasks:create",
        "tasks:update",
        "tasks:approve",
        "stages:write",
    },
    ROLE_LAWYER: {
        "tasks:read",
        "tasks:update_own",
    },
    ROLE_ASSISTANT: {
        "tasks:read",
    },
}


def has_permission(role: str | None, codename: str) -> bool:
    """Return True if *role* grants *codename* (``*`` grants everything)."""
    granted = ROLE_PERMISSIONS.get(role or "", set())
    return "*" in granted or codename in granted


# ── Relations ────────────────────────────────────────────────────────────────

REL_ADMIN = "admin"
REL_CREATOR_OR_ADMIN = "creator_or_admin"
REL_MAIN_LAWYER = "main_lawyer"
REL_ASSIGNED_LAWYER = "assigned_lawyer"
REL_PARTICIPANT = "participant"
REL_STAGE_EDITOR = "stage_editor"


def _is_creator(actor, task) -> bool:
    return task is not None and task.created_by == actor.id


_RELATION_CHECKS = {
    REL_ADMIN: lambda actor, task: actor.is_admin,
    REL_CREATOR_OR_ADMIN: lambda actor, task: actor.is_admin or _is_creator(actor, task),
    REL_MAIN_LAWYER: lambda actor, task: task is not None and task.main_lawyer_id == actor.id,
    REL_ASSIGNED_LAWYER: lambda actor, task: task is not None and task.assigned_to == actor.id,
    REL_PARTICIPANT: lambda actor, task: (
        actor.role in (ROLE_ADMIN, ROLE_DEPARTMENT_HEAD)
        or (
            task is not None
            and actor.id in (task.created_by, task.main_lawyer_id, task.assigned_to)
        )
    ),
    REL_STAGE_EDITOR: lambda actor, task: has_permission(actor.role, "stages:write"),
}


def can(actor: Actor | None, relation: str, task=None) -> bool:
    """
    Boolean capability check.

    Args:
        actor: The caller; ``None`` is never allowed anything.
        relation: A ``REL_*`` constant or a permission codename.
        task: The task the relation is evaluated against, if any.

    Returns:
        True if the actor holds the relation.
    """
    if actor is None:
        return False
    check = _RELATION_CHECKS.get(relation)
    if check is not None:
        return bool(check(actor, task))
    if ":" in relation:
        return has_permission(actor.role, relation)
    return False


def authorize(actor: Actor | None, relation: str, task=None) -> None:
    """
    Assert the actor holds *relation*; raise ForbiddenError if not.

    Raises:
        ForbiddenError: If the check fails.
    """
    if not can(actor, relation, task):
        raise ForbiddenError(
            getattr(actor, "id", None),
            relation,
            getattr(task, "id", None),
        )
