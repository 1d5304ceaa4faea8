"""
Workflow exception hierarchy.

Every service in CaseDesk raises one of these types and nothing else for
caller errors.  The consuming HTTP layer maps them once:

    ValidationError          → 400 / 422
    ForbiddenError           → 403
    NotFoundError            → 404
    ConflictError            → 409
    IllegalStateError        → 409
    PreconditionFailedError  → 412

None of them is ever raised after a state change has been committed; the
engine validates first and mutates second.

Usage:
    from casedesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a referenced task, stage or user does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Task", "Stage").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing or malformed.  No state is changed.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.  Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the actor lacks authority for the requested operation.

    Args:
        actor_id: Id of the acting user.
        relation: The capability that was required (see
                  ``casedesk.services.permission``).
        task_id: Optional task the check was made against.
    """

    def __init__(self, actor_id: int | None, relation: str, task_id: int | None = None) -> None:
        self.actor_id = actor_id
        self.relation = relation
        self.task_id = task_id
        msg = f"User {actor_id} lacks '{relation}'"
        if task_id is not None:
            msg += f" on task {task_id}"
        super().__init__(msg)


class IllegalStateError(Exception):
    """Raised when an operation is not legal from the task's current state.

    Args:
        action: The attempted operation (e.g. "approve_admin").
        current: The state the task was found in.
        reason: Optional extra explanation.
    """

    def __init__(self, action: str, current: str | None, reason: str | None = None) -> None:
        self.action = action
        self.current = current
        self.reason = reason
        msg = f"Cannot '{action}' (state={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PreconditionFailedError(Exception):
    """Raised when stage-entry gating is not satisfied.

    Args:
        stage_id: Target stage of the refused move.
        reason: What was missing.
    """

    def __init__(self, stage_id: int, reason: str) -> None:
        self.stage_id = stage_id
        self.reason = reason
        super().__init__(f"Cannot enter stage {stage_id}: {reason}")


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
