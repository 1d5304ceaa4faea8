"""
Stage transition engine tests.

Pure tests against unsaved Task / Stage objects built from the default
seven-stage pipeline:

    1 Initial Review        admin_only
    2 Legal Research        multiple
    3 Argument Preparation  multiple
    4 Drafting & Review     multiple
    5 Filing & Procedures   admin_only
    6 Follow-up             single
    7 Completed             admin_only
"""

from datetime import datetime, timezone

import pytest

from casedesk.core.exceptions import ForbiddenError, NotFoundError, PreconditionFailedError
from casedesk.models.stage import DEFAULT_STAGES, Stage
from casedesk.models.task import Task
from casedesk.services.approval import approve_admin, initial_approval_fields
from casedesk.services.permission import Actor
from casedesk.services.stage_engine import (
    STAGE_FINAL,
    STAGE_IN_PROGRESS,
    STAGE_NOT_STARTED,
    compute_progress,
    move_to_stage,
    plan_stage_move,
    task_phase,
)

ADMIN = Actor(id=1, role="admin")
HEAD = Actor(id=2, role="department_head")
CREATOR = Actor(id=3, role="lawyer")
MAIN = Actor(id=4, role="lawyer")
LAWYER = Actor(id=5, role="lawyer")
ASSISTANT = Actor(id=6, role="assistant")

NOW = datetime(2026, 5, 4, 14, 0, tzinfo=timezone.utc)


def _stages():
    return [Stage(id=i + 1, is_active=True, **spec) for i, spec in enumerate(DEFAULT_STAGES)]


def _task(admin_approved=False, **overrides) -> Task:
    fields = dict(
        id=1,
        title="Lease dispute",
        created_by=CREATOR.id,
        main_lawyer_id=MAIN.id,
        assigned_to=LAWYER.id,
        status="pending",
        stage_id=1,
        progress=0,
        **initial_approval_fields(),
    )
    fields.update(overrides)
    task = Task(**fields)
    if admin_approved:
        approve_admin(task, ADMIN, now=NOW)
    return task


class TestComputeProgress:

    @pytest.mark.parametrize("position,expected", [
        (0, 14), (1, 29), (2, 43), (3, 57), (4, 71), (5, 86), (6, 100),
    ])
    def test_seven_stage_pipeline(self, position, expected):
        assert compute_progress(position, 7) == expected

    def test_exact_half_rounds_up(self):
        assert compute_progress(0, 8) == 13
        assert compute_progress(2, 8) == 38

    def test_thirds(self):
        assert compute_progress(0, 3) == 33
        assert compute_progress(1, 3) == 67
        assert compute_progress(2, 3) == 100

    def test_empty_pipeline(self):
        assert compute_progress(0, 0) == 0

    @pytest.mark.parametrize("total", [1, 2, 5, 7, 8, 13])
    def test_monotonic_and_last_is_100(self, total):
        values = [compute_progress(p, total) for p in range(total)]
        assert values == sorted(values)
        assert values[-1] == 100


class TestMoveToStage:

    def test_move_to_fourth_of_seven(self):
        task = _task(admin_approved=True)
        result = move_to_stage(task, LAWYER, _stages(), 4, now=NOW)

        assert task.stage_id == 4
        assert task.progress == 57
        assert task.status == "in_progress"
        assert task.last_moved_at == NOW
        assert task.moved_by == LAWYER.id
        assert task.completed_at is None
        assert result["previous_stage_name"] == "Initial Review"
        assert result["stage_name"] == "Drafting & Review"
        assert result["previous_status"] == "pending"

    def test_gated_stage_without_admin_approval_is_refused(self):
        task = _task()
        before = task.to_row()

        with pytest.raises(PreconditionFailedError) as exc:
            move_to_stage(task, ADMIN, _stages(), 2, now=NOW)

        assert exc.value.stage_id == 2
        assert task.to_row() == before

    @pytest.mark.parametrize("stage_id", [1, 5, 7])
    def test_admin_only_stage_needs_no_prior_approval(self, stage_id):
        task = _task()
        move_to_stage(task, HEAD, _stages(), stage_id, now=NOW)
        assert task.stage_id == stage_id

    def test_last_stage_completes_task_once(self):
        task = _task()
        move_to_stage(task, ADMIN, _stages(), 7, now=NOW)
        assert task.status == "completed"
        assert task.progress == 100
        assert task.completed_at == NOW

        later = datetime(2026, 6, 1, tzinfo=timezone.utc)
        move_to_stage(task, ADMIN, _stages(), 5, now=later)
        move_to_stage(task, ADMIN, _stages(), 7, now=later)
        assert task.completed_at == NOW

    def test_progress_follows_position_not_approval(self):
        task = _task()
        move_to_stage(task, ADMIN, _stages(), 7, now=NOW)
        assert task.progress == 100
        assert task.approval_status == "pending_admin"

    def test_backward_move_lowers_progress(self):
        task = _task(admin_approved=True)
        move_to_stage(task, LAWYER, _stages(), 6, now=NOW)
        move_to_stage(task, LAWYER, _stages(), 2, now=NOW)
        assert task.progress == 29
        assert task.status == "in_progress"

    def test_forward_walk_is_monotonic(self):
        task = _task(admin_approved=True)
        seen = []
        for stage in _stages():
            move_to_stage(task, MAIN, _stages(), stage.id, now=NOW)
            seen.append(task.progress)
        assert seen == sorted(seen)
        assert seen[-1] == 100

    def test_unknown_stage(self):
        with pytest.raises(NotFoundError):
            move_to_stage(_task(), ADMIN, _stages(), 99, now=NOW)

    def test_outsider_cannot_move(self):
        task = _task(admin_approved=True)
        with pytest.raises(ForbiddenError):
            move_to_stage(task, ASSISTANT, _stages(), 2, now=NOW)
        assert task.stage_id == 1

    def test_order_not_id_defines_position(self):
        stages = [
            Stage(id=1, name="Close", order=3, approval_type="admin_only"),
            Stage(id=2, name="Open", order=1, approval_type="admin_only"),
            Stage(id=3, name="Work", order=2, approval_type="admin_only"),
        ]
        task = _task(stage_id=2)
        move_to_stage(task, ADMIN, stages, 3, now=NOW)
        assert task.progress == 67
        move_to_stage(task, ADMIN, stages, 1, now=NOW)
        assert task.status == "completed"


class TestPhase:

    def test_new_task_has_not_started(self):
        phase = task_phase(_task(), _stages())
        assert phase == ("pending_admin", STAGE_NOT_STARTED)

    def test_phase_after_moves(self):
        task = _task(admin_approved=True)
        move_to_stage(task, ADMIN, _stages(), 3, now=NOW)
        assert task_phase(task, _stages()).stage_phase == STAGE_IN_PROGRESS
        move_to_stage(task, ADMIN, _stages(), 7, now=NOW)
        assert task_phase(task, _stages()) == ("pending_main_lawyer", STAGE_FINAL)

    def test_plan_does_not_mutate(self):
        task = _task(admin_approved=True)
        before = task.to_row()
        move = plan_stage_move(task, _stages(), 4)
        assert move.progress == 57
        assert move.status == "in_progress"
        assert task.to_row() == before
