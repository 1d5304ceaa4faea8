"""
Stage Catalog Service

Administers the ordered stage pipeline:
  - list / get stages in pipeline order
  - add / update stages (administrators and department heads)
  - remove stages (administrators; refused while tasks sit on the stage)
  - seed the default legal pipeline
  - per-stage approval summary

Catalog writes hold ``StageCatalog.lock``; ``WorkflowService.move_to_stage``
takes the same lock, so a stage cannot be removed while a task is being
moved onto it.

Usage:
    from casedesk.services.stage_catalog import StageCatalog

    catalog = StageCatalog(store)
    catalog.seed_default_stages()
    stage = catalog.add_stage({"name": "Mediation", "approval_type": "single"}, actor)
"""

import logging
import threading
from datetime import datetime, timezone

from casedesk.core.exceptions import IllegalStateError, NotFoundError, ValidationError
from casedesk.models.audit import build_activity
from casedesk.models.stage import (
    APPROVAL_SINGLE,
    DEFAULT_STAGE_COLOR,
    DEFAULT_STAGES,
    STAGE_APPROVAL_TYPES,
    Stage,
)
from casedesk.models.task import APPROVED
from casedesk.services.permission import REL_ADMIN, REL_STAGE_EDITOR, authorize

logger = logging.getLogger(__name__)

STAGE_UPDATABLE_FIELDS = (
    "name", "order", "approval_type", "color", "description", "requirements", "is_active",
)


def _validate_approval_type(value):
    if value not in STAGE_APPROVAL_TYPES:
        raise ValidationError(
            f"Invalid approval_type '{value}'. "
            f"Must be one of: {', '.join(sorted(STAGE_APPROVAL_TYPES))}",
            details={"approval_type": "invalid"},
        )


def _validate_order(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("order must be a positive integer", details={"order": "invalid"})


class StageCatalog:
    """Read/write access to the stage pipeline."""

    def __init__(self, store, *, clock=None):
        self.store = store
        self.lock = threading.RLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Read ──────────────────────────────────────────────────────────────

    def list_stages(self) -> list[Stage]:
        return self.store.list_stages()

    def get_stage(self, stage_id: int) -> Stage:
        stage = self.store.get_stage(stage_id)
        if stage is None:
            raise NotFoundError(resource="Stage", resource_id=stage_id)
        return stage

    def first_stage(self) -> Stage:
        """Entry stage for new tasks."""
        stages = self.store.list_stages()
        if not stages:
            raise ValidationError("Stage catalog is empty; seed or add stages first")
        return stages[0]

    def _next_order(self) -> int:
        stages = self.store.list_stages()
        return max((s.order or 0 for s in stages), default=0) + 1

    def _log(self, action, actor_id, details, now):
        self.store.append_activity(build_activity(
            task_id=None, action=action, user_id=actor_id, details=details, timestamp=now,
        ))

    # ── Write ─────────────────────────────────────────────────────────────

    def add_stage(self, data: dict, actor) -> Stage:
        """
        Append a stage to the catalog.

        Args:
            data: {"name" (required), "order", "approval_type", "color",
                   "description", "requirements"}
            actor: Administrator or department head.

        Raises:
            ForbiddenError, ValidationError
        """
        authorize(actor, REL_STAGE_EDITOR)

        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Stage name is required", details={"name": "required"})
        approval_type = data.get("approval_type") or APPROVAL_SINGLE
        _validate_approval_type(approval_type)
        if data.get("order") is not None:
            _validate_order(data["order"])

        with self.lock, self.store.transaction():
            now = self._clock()
            stage = Stage(
                name=name,
                order=data.get("order") or self._next_order(),
                approval_type=approval_type,
                color=data.get("color") or DEFAULT_STAGE_COLOR,
                description=data.get("description") or "",
                requirements=data.get("requirements") or "",
                is_active=True,
                created_by=actor.id,
                created_at=now,
            )
            self.store.add_stage(stage)
            self._log("stage_created", actor.id, {
                "stage_id": stage.id,
                "name": stage.name,
                "order": stage.order,
                "approval_type": stage.approval_type,
            }, now)

        logger.info("Stage created", extra={"stage_id": stage.id, "actor_id": actor.id})
        return stage

    def update_stage(self, stage_id: int, data: dict, actor) -> Stage:
        """
        Update stage metadata or policy.

        Raises:
            ForbiddenError, NotFoundError, ValidationError
        """
        authorize(actor, REL_STAGE_EDITOR)

        unknown = set(data) - set(STAGE_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown stage field(s): {', '.join(sorted(unknown))}",
                details={f: "unknown" for f in unknown},
            )
        if "name" in data and not (data["name"] or "").strip():
            raise ValidationError("Stage name cannot be empty", details={"name": "required"})
        if "approval_type" in data:
            _validate_approval_type(data["approval_type"])
        if "order" in data:
            _validate_order(data["order"])

        with self.lock, self.store.transaction():
            stage = self.get_stage(stage_id)
            now = self._clock()
            diff = {}
            for field, value in data.items():
                if field == "name":
                    value = value.strip()
                old = getattr(stage, field)
                if old != value:
                    diff[field] = {"old": old, "new": value}
                    setattr(stage, field, value)
            stage.updated_by = actor.id
            stage.updated_at = now
            self.store.save_stage(stage)
            self._log("stage_updated", actor.id, {"stage_id": stage.id, "changes": diff}, now)

        return stage

    def remove_stage(self, stage_id: int, actor) -> None:
        """
        Delete a stage.

        Raises:
            ForbiddenError: Actor is not an administrator.
            NotFoundError: No such stage.
            IllegalStateError: Tasks are positioned on the stage.
        """
        authorize(actor, REL_ADMIN)

        with self.lock, self.store.transaction():
            stage = self.get_stage(stage_id)
            on_stage = self.store.count_tasks_on_stage(stage_id)
            if on_stage:
                raise IllegalStateError(
                    "remove_stage", stage.name,
                    f"{on_stage} task(s) are positioned on this stage",
                )
            self.store.delete_stage(stage_id)
            self._log("stage_deleted", actor.id, {"stage_id": stage_id, "name": stage.name}, self._clock())

        logger.info("Stage removed", extra={"stage_id": stage_id, "actor_id": actor.id})

    def seed_default_stages(self, actor_id: int | None = None) -> int:
        """
        Insert every DEFAULT_STAGES entry whose name is not in the catalog yet.

        Idempotent.  Returns the number of stages created.
        """
        with self.lock, self.store.transaction():
            existing = {s.name for s in self.store.list_stages()}
            now = self._clock()
            created = []
            for spec in DEFAULT_STAGES:
                if spec["name"] in existing:
                    continue
                stage = Stage(
                    is_active=True, created_by=actor_id, created_at=now, **spec,
                )
                self.store.add_stage(stage)
                created.append(stage)
            if created:
                self._log("stage_created", actor_id, {
                    "seeded": [{"stage_id": s.id, "name": s.name} for s in created],
                }, now)
        return len(created)

    # ── Analytics ─────────────────────────────────────────────────────────

    def stage_summary(self) -> list[dict]:
        """
        Per-stage task and approval counts, in pipeline order.

        Returns:
            [{"id", "name", "order", "approval_type", "task_count",
              "approved_count", "pending_count", "completion_percentage"}, ...]
        """
        tasks = self.store.list_tasks()
        summary = []
        for stage in self.store.list_stages():
            on_stage = [t for t in tasks if t.stage_id == stage.id]
            approved = sum(1 for t in on_stage if t.approval_status == APPROVED)
            total = len(on_stage)
            summary.append({
                "id": stage.id,
                "name": stage.name,
                "order": stage.order,
                "approval_type": stage.approval_type,
                "task_count": total,
                "approved_count": approved,
                "pending_count": total - approved,
                # half-up, same rounding as task progress
                "completion_percentage": (200 * approved + total) // (2 * total) if total else 0,
            })
        return summary
