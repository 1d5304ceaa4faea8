"""
Stage Transition Engine

Moves a task along the stage pipeline and derives its progress and status.

Gating:
    admin_only stages   no precondition
    single / multiple   the task's admin-tier approval must be recorded

Progress is a function of pipeline position only:

    progress = round((position + 1) / total * 100)     (half-up)

and never of approval completeness, so a task may sit at 100% while its
approval chain is still open.

Status is projected from the composite phase ``(approval_phase,
stage_phase)`` by ``project_status``; no other code path writes it as part of
a stage move.
"""

from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime, timezone

from casedesk.core.exceptions import NotFoundError, PreconditionFailedError
from casedesk.models.stage import APPROVAL_ADMIN_ONLY, catalog_order
from casedesk.models.task import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING
from casedesk.services.permission import REL_PARTICIPANT, authorize

STAGE_NOT_STARTED = "not_started"
STAGE_IN_PROGRESS = "in_progress"
STAGE_FINAL = "final"

TaskPhase = namedtuple("TaskPhase", ["approval_phase", "stage_phase"])

_STATUS_BY_STAGE_PHASE = {
    STAGE_NOT_STARTED: STATUS_PENDING,
    STAGE_IN_PROGRESS: STATUS_IN_PROGRESS,
    STAGE_FINAL: STATUS_COMPLETED,
}


@dataclass
class StageMove:
    """A validated, not yet applied, stage movement."""

    previous_stage: object
    target_stage: object
    position: int
    total: int
    progress: int
    status: str


def compute_progress(position: int, total: int) -> int:
    """Half-up percentage for a 0-based *position* in a pipeline of *total*."""
    if total <= 0:
        return 0
    # floor(x + 0.5) in integers: no float drift, 12.5 → 13
    return (200 * (position + 1) + total) // (2 * total)


def stage_phase_for(position: int | None, total: int) -> str:
    if position is None:
        return STAGE_NOT_STARTED
    return STAGE_FINAL if position == total - 1 else STAGE_IN_PROGRESS


def project_status(phase: TaskPhase) -> str:
    """Single derivation of the lifecycle status from the composite phase."""
    return _STATUS_BY_STAGE_PHASE[phase.stage_phase]


def task_phase(task, stages) -> TaskPhase:
    """Current composite phase of *task* against the catalog *stages*."""
    if task.last_moved_at is None:
        return TaskPhase(task.approval_status, STAGE_NOT_STARTED)
    ordered = catalog_order(stages)
    ids = [s.id for s in ordered]
    position = ids.index(task.stage_id) if task.stage_id in ids else None
    return TaskPhase(task.approval_status, stage_phase_for(position, len(ordered)))


def plan_stage_move(task, stages, target_stage_id: int) -> StageMove:
    """
    Validate a move of *task* to *target_stage_id* without applying it.

    Raises:
        NotFoundError: Target stage not in the catalog.
        PreconditionFailedError: Target is gated and admin approval is missing.
    """
    ordered = catalog_order(stages)
    ids = [s.id for s in ordered]
    if target_stage_id not in ids:
        raise NotFoundError(resource="Stage", resource_id=target_stage_id)

    position = ids.index(target_stage_id)
    target = ordered[position]

    if target.approval_type != APPROVAL_ADMIN_ONLY and not task.approved_by_admin:
        raise PreconditionFailedError(
            target_stage_id, "administrator approval is required first",
        )

    total = len(ordered)
    previous = next((s for s in ordered if s.id == task.stage_id), None)
    phase = TaskPhase(task.approval_status, stage_phase_for(position, total))
    return StageMove(
        previous_stage=previous,
        target_stage=target,
        position=position,
        total=total,
        progress=compute_progress(position, total),
        status=project_status(phase),
    )


def move_to_stage(task, actor, stages, target_stage_id: int, *, now: datetime | None = None) -> dict:
    """
    Validate and apply a stage move.

    Args:
        task: Task to move (mutated in place on success).
        actor: The acting ``Actor``; must be a task participant.
        stages: The full stage catalog.
        target_stage_id: Destination stage id.
        now: Move timestamp; defaults to the current UTC time.

    Returns:
        {"previous_stage_id", "previous_stage_name", "stage_id", "stage_name",
         "progress", "previous_progress", "status", "previous_status"}

    Raises:
        ForbiddenError, NotFoundError, PreconditionFailedError
    """
    authorize(actor, REL_PARTICIPANT, task)
    move = plan_stage_move(task, stages, target_stage_id)

    now = now or datetime.now(timezone.utc)
    previous_progress = task.progress
    previous_status = task.status

    task.stage_id = move.target_stage.id
    task.progress = move.progress
    task.status = move.status
    task.last_moved_at = now
    task.moved_by = actor.id
    if task.status == STATUS_COMPLETED and task.completed_at is None:
        task.completed_at = now

    return {
        "previous_stage_id": move.previous_stage.id if move.previous_stage else None,
        "previous_stage_name": move.previous_stage.name if move.previous_stage else None,
        "stage_id": move.target_stage.id,
        "stage_name": move.target_stage.name,
        "progress": move.progress,
        "previous_progress": previous_progress,
        "status": move.status,
        "previous_status": previous_status,
    }
