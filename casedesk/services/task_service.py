"""
Workflow Service

The only component with side effects.  Every mutating operation runs the same
sequence under the task's lock and inside one store transaction:

    re-read task → validate → authorize → mutate → save → append activity → commit

then, once committed, signals the notification sink.  A failure at any point
before commit leaves no trace: neither the task change nor the activity entry
becomes visible.  A notification failure after commit is logged and dropped.

Operations:
    create_task, update_task, delete_task, get_task, list_tasks
    approve_admin, approve_main_lawyer, approve_assigned_lawyer
    move_to_stage
    list_pending_admin_approvals, record_follow_up, list_follow_ups
    list_activity, escalate_overdue_tasks

Usage:
    service = WorkflowService(store, notifier=LoggingNotificationSink())
    task = service.create_task({...}, actor)
    service.approve_admin(task.id, admin)
"""

import logging
from datetime import datetime, timezone

from casedesk.core.exceptions import IllegalStateError, NotFoundError, ValidationError
from casedesk.models.audit import build_activity
from casedesk.models.auth import ROLE_ADMIN, ROLE_LAWYER
from casedesk.models.task import (
    APPROVED,
    DEFAULT_PRIORITY,
    PENDING_ADMIN,
    STATUS_COMPLETED,
    STATUS_PENDING,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
)
from casedesk.services import approval, sla, stage_engine
from casedesk.services.code_generator import generate_task_code
from casedesk.services.locks import DEFAULT_STRIPES, TaskLocks
from casedesk.services.notification import (
    EVENT_ADMIN_APPROVED,
    EVENT_MAIN_LAWYER_APPROVED,
    EVENT_MAIN_LAWYER_ASSIGNED,
    EVENT_SLA_ESCALATED,
    EVENT_STAGE_ENTERED,
    EVENT_TASK_APPROVED,
    EVENT_TASK_ASSIGNED,
    LoggingNotificationSink,
)
from casedesk.services.permission import (
    REL_ADMIN,
    REL_CREATOR_OR_ADMIN,
    authorize,
    can,
)
from casedesk.services.stage_catalog import StageCatalog

logger = logging.getLogger(__name__)

REQUIRED_CREATE_FIELDS = ("title", "department_id", "client_id", "assigned_to")
TASK_UPDATABLE_FIELDS = (
    "title", "description", "priority", "due_date", "status", "assigned_to", "main_lawyer_id",
)
DEFAULT_FOLLOW_UP_NOTES = "Periodic follow-up"

# Who hears about a committed approval step
_APPROVAL_NOTIFICATIONS = {
    "approve_admin": ("main_lawyer_id", EVENT_ADMIN_APPROVED),
    "approve_main_lawyer": ("assigned_to", EVENT_MAIN_LAWYER_APPROVED),
    "approve_assigned_lawyer": ("created_by", EVENT_TASK_APPROVED),
}


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id", details={field: "invalid"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id", details={field: "invalid"})


def _as_datetime(value, field: str):
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date", details={field: "invalid"})
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a datetime", details={field: "invalid"})
    return sla.as_aware(value)


def _validate_priority(priority):
    if priority not in TASK_PRIORITIES:
        raise ValidationError(
            f"Invalid priority '{priority}'. Must be one of: {', '.join(sorted(TASK_PRIORITIES))}",
            details={"priority": "invalid"},
        )


def _task_payload(task) -> dict:
    return {"task_id": task.id, "task_code": task.task_code, "title": task.title}


class WorkflowService:
    """
    Task lifecycle engine.

    Args:
        store: A ``TaskStore``.
        notifier: A ``NotificationSink``; defaults to logging only.
        locks: A ``TaskLocks`` pool; defaults to 64 stripes.
        default_main_lawyer_id: Main lawyer used when creation names none.
        root_admin_id: Administrator who sees every pending admin approval;
            defaults to the lowest administrator id in the directory.
        clock: Zero-argument callable returning an aware UTC datetime.
    """

    def __init__(
        self,
        store,
        *,
        notifier=None,
        locks=None,
        default_main_lawyer_id=None,
        root_admin_id=None,
        clock=None,
    ):
        self.store = store
        self.notifier = notifier or LoggingNotificationSink()
        self.locks = locks or TaskLocks(DEFAULT_STRIPES)
        self.default_main_lawyer_id = default_main_lawyer_id
        self.root_admin_id = root_admin_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.stages = StageCatalog(store, clock=self._clock)

    @classmethod
    def from_config(cls, store, config, *, notifier=None):
        """Build a service from a Flask ``app.config`` mapping."""
        return cls(
            store,
            notifier=notifier,
            locks=TaskLocks(config.get("TASK_LOCK_STRIPES") or DEFAULT_STRIPES),
            default_main_lawyer_id=config.get("DEFAULT_MAIN_LAWYER_ID"),
            root_admin_id=config.get("ROOT_ADMIN_ID"),
        )

    # ── Internals ─────────────────────────────────────────────────────────

    def _load(self, task_id, *, for_update=False) -> Task:
        task = self.store.get_task(task_id, for_update=for_update)
        if task is None:
            raise NotFoundError(resource="Task", resource_id=task_id)
        return task

    def _require_user(self, user_id, field):
        user = self.store.get_user(user_id)
        if user is None:
            raise ValidationError(
                f"{field} references unknown user {user_id}", details={field: "unknown user"},
            )
        return user

    def _log(self, task_id, action, actor_id, details, now):
        self.store.append_activity(build_activity(
            task_id=task_id, action=action, user_id=actor_id, details=details, timestamp=now,
        ))

    def _notify(self, user_id, event, payload):
        if user_id is None:
            return
        try:
            self.notifier.notify(user_id, event, payload)
        except Exception:
            logger.warning(
                "Notification %s to user %s failed; the transition stays committed",
                event, user_id,
                exc_info=True,
                extra={"event_type": event, "user_id": user_id,
                       "task_id": (payload or {}).get("task_id")},
            )

    def resolve_main_lawyer_id(self, requested=None) -> int:
        """
        Pick the main lawyer for a new task.

        Order: explicit id → configured default → first active lawyer flagged
        ``is_main_lawyer`` → first active lawyer.

        Raises:
            ValidationError: No candidate exists, or a named id is unknown.
        """
        if requested is not None and requested != "":
            main_lawyer_id = _as_int(requested, "main_lawyer_id")
            self._require_user(main_lawyer_id, "main_lawyer_id")
            return main_lawyer_id

        if self.default_main_lawyer_id is not None:
            self._require_user(self.default_main_lawyer_id, "main_lawyer_id")
            return self.default_main_lawyer_id

        lawyers = [u for u in self.store.list_users(role=ROLE_LAWYER) if u.is_active is not False]
        flagged = [u for u in lawyers if u.is_main_lawyer]
        candidates = flagged or lawyers
        if not candidates:
            raise ValidationError(
                "main_lawyer_id is required: no default main lawyer is available",
                details={"main_lawyer_id": "required"},
            )
        return candidates[0].id

    def resolve_root_admin_id(self) -> int | None:
        if self.root_admin_id is not None:
            return self.root_admin_id
        admins = self.store.list_users(role=ROLE_ADMIN)
        return admins[0].id if admins else None

    # ── Create / read ─────────────────────────────────────────────────────

    def create_task(self, data: dict, actor) -> Task:
        """
        Create a task at the first stage with a fresh approval chain.

        Args:
            data: {"title", "department_id", "client_id", "assigned_to"
                   (all required), "description", "priority",
                   "main_lawyer_id", "due_date"}
            actor: Holder of ``tasks:create``.

        Returns:
            The stored Task, with ``task_code`` assigned.

        Raises:
            ForbiddenError, ValidationError
        """
        authorize(actor, "tasks:create")

        missing = [f for f in REQUIRED_CREATE_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                details={f: "required" for f in missing},
            )
        title = str(data["title"]).strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        priority = data.get("priority") or DEFAULT_PRIORITY
        _validate_priority(priority)
        department_id = _as_int(data["department_id"], "department_id")
        client_id = _as_int(data["client_id"], "client_id")
        assigned_to = _as_int(data["assigned_to"], "assigned_to")
        due_date = _as_datetime(data.get("due_date"), "due_date")

        # Catalog lock held through commit: the entry stage cannot be removed
        # before the new task is visible on it
        with self.stages.lock, self.store.transaction():
            self._require_user(actor.id, "created_by")
            self._require_user(assigned_to, "assigned_to")
            main_lawyer_id = self.resolve_main_lawyer_id(data.get("main_lawyer_id"))
            first_stage = self.stages.first_stage()
            now = self._clock()

            task = Task(
                title=title,
                description=data.get("description") or "",
                priority=priority,
                client_id=client_id,
                department_id=department_id,
                assigned_to=assigned_to,
                main_lawyer_id=main_lawyer_id,
                created_by=actor.id,
                main_lawyer_assigned_by=actor.id,
                status=STATUS_PENDING,
                stage_id=first_stage.id,
                progress=0,
                created_at=now,
                updated_at=now,
                due_date=due_date,
                **approval.initial_approval_fields(),
            )
            self.store.add_task(task)
            task.task_code = generate_task_code(task.id, now.year)
            self.store.save_task(task)
            self._log(task.id, "created", actor.id, {
                "task_code": task.task_code,
                "title": task.title,
                "assigned_to": assigned_to,
                "main_lawyer_id": main_lawyer_id,
                "stage_id": first_stage.id,
            }, now)

        logger.info(
            "Task created: %s", task.task_code,
            extra={"task_id": task.id, "task_code": task.task_code,
                   "actor_id": actor.id, "action": "created"},
        )
        self._notify(assigned_to, EVENT_TASK_ASSIGNED, _task_payload(task))
        return task

    def get_task(self, task_id: int) -> Task:
        return self._load(task_id)

    def list_tasks(self, *, status=None, department_id=None, assigned_to=None) -> list[Task]:
        return self.store.list_tasks(
            status=status, department_id=department_id, assigned_to=assigned_to,
        )

    # ── Update / delete ───────────────────────────────────────────────────

    def update_task(self, task_id: int, patch: dict, actor) -> Task:
        """
        Apply a field patch.

        A change of ``main_lawyer_id`` (administrators only) or
        ``assigned_to`` resets the affected approval tiers.  ``status`` may
        only be written while the chain is fully approved once those resets
        are applied, except back to ``pending``.  An empty diff writes nothing.

        Raises:
            ForbiddenError, NotFoundError, ValidationError, IllegalStateError
        """
        unknown = set(patch) - set(TASK_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Field(s) not updatable: {', '.join(sorted(unknown))}",
                details={f: "not updatable" for f in unknown},
            )
        if "title" in patch and not str(patch["title"] or "").strip():
            raise ValidationError("title cannot be empty", details={"title": "required"})
        if "priority" in patch:
            _validate_priority(patch["priority"])
        new_status = patch.get("status")
        if "status" in patch and new_status not in TASK_STATUSES:
            raise ValidationError(
                f"Invalid status '{new_status}'. Must be one of: {', '.join(sorted(TASK_STATUSES))}",
                details={"status": "invalid"},
            )
        new_main = _as_int(patch["main_lawyer_id"], "main_lawyer_id") if patch.get("main_lawyer_id") is not None else None
        new_assignee = _as_int(patch["assigned_to"], "assigned_to") if patch.get("assigned_to") is not None else None

        notifications = []
        with self.locks.hold(task_id), self.store.transaction():
            task = self._load(task_id, for_update=True)
            authorize(actor, REL_CREATOR_OR_ADMIN, task)

            now = self._clock()
            previous_approval = task.approval_status
            diff = {}

            # Main lawyer first: its reset may reopen the admin tier
            if new_main is not None and new_main != task.main_lawyer_id:
                self._require_user(new_main, "main_lawyer_id")
                result = approval.reassign_main_lawyer(task, actor, new_main)
                diff["main_lawyer_id"] = result["main_lawyer_id"]
                notifications.append((new_main, EVENT_MAIN_LAWYER_ASSIGNED))

            if new_assignee is not None and new_assignee != task.assigned_to:
                self._require_user(new_assignee, "assigned_to")
                result = approval.reassign_executing_lawyer(task, actor, new_assignee)
                diff["assigned_to"] = result["assigned_to"]
                notifications.append((new_assignee, EVENT_TASK_ASSIGNED))

            # Checked after the reassignments: they may reopen the chain
            if (
                new_status is not None
                and new_status != task.status
                and new_status != STATUS_PENDING
                and task.approval_status != APPROVED
            ):
                raise IllegalStateError(
                    "update_status", task.approval_status,
                    "status can only change once every approval is recorded",
                )

            for field in ("title", "description", "priority"):
                if field in patch:
                    value = patch[field]
                    if field == "title":
                        value = str(value).strip()
                    if value != getattr(task, field):
                        diff[field] = {"old": getattr(task, field), "new": value}
                        setattr(task, field, value)

            if "due_date" in patch:
                due_date = _as_datetime(patch["due_date"], "due_date")
                if due_date != sla.as_aware(task.due_date):
                    diff["due_date"] = {"old": task.due_date, "new": due_date}
                    task.due_date = due_date

            if new_status is not None and new_status != task.status:
                diff["status"] = {"old": task.status, "new": new_status}
                task.status = new_status
                if new_status == STATUS_COMPLETED and task.completed_at is None:
                    task.completed_at = now

            if task.approval_status != previous_approval:
                diff["approval_status"] = {"old": previous_approval, "new": task.approval_status}

            if not diff:
                return task

            task.updated_at = now
            self.store.save_task(task)
            self._log(task.id, "updated", actor.id, diff, now)

        logger.info(
            "Task updated: %s", task.task_code,
            extra={"task_id": task.id, "actor_id": actor.id, "action": "updated"},
        )
        for user_id, event in notifications:
            self._notify(user_id, event, _task_payload(task))
        return task

    def delete_task(self, task_id: int, actor) -> None:
        """
        Remove a task.  Its activity history stays; a ``deleted`` entry is
        appended under the removed id.

        Raises:
            ForbiddenError, NotFoundError
        """
        with self.locks.hold(task_id), self.store.transaction():
            task = self._load(task_id, for_update=True)
            authorize(actor, REL_ADMIN, task)
            self.store.delete_task(task_id)
            self._log(task_id, "deleted", actor.id, {
                "task_code": task.task_code,
                "title": task.title,
            }, self._clock())

        logger.info(
            "Task deleted: %s", task_id,
            extra={"task_id": task_id, "actor_id": actor.id, "action": "deleted"},
        )

    # ── Approval chain ────────────────────────────────────────────────────

    def _approve(self, task_id: int, actor, action: str) -> Task:
        with self.locks.hold(task_id), self.store.transaction():
            task = self._load(task_id, for_update=True)
            now = self._clock()
            result = approval.approve(task, actor, action, now=now)
            task.updated_at = now
            self.store.save_task(task)
            self._log(task.id, result["activity"], actor.id, {
                "previous_status": result["previous_status"],
                "approval_status": result["new_status"],
                "approved_by_name": actor.full_name,
            }, now)

        logger.info(
            "Task %s: %s → %s", task.task_code, result["previous_status"], result["new_status"],
            extra={"task_id": task.id, "actor_id": actor.id, "action": action,
                   "approval_status": result["new_status"]},
        )
        recipient_field, event = _APPROVAL_NOTIFICATIONS[action]
        self._notify(getattr(task, recipient_field), event, _task_payload(task))
        return task

    def approve_admin(self, task_id: int, actor) -> Task:
        """pending_admin → pending_main_lawyer (creator or administrator)."""
        return self._approve(task_id, actor, "approve_admin")

    def approve_main_lawyer(self, task_id: int, actor) -> Task:
        """pending_main_lawyer → pending_assigned_lawyer (the main lawyer)."""
        return self._approve(task_id, actor, "approve_main_lawyer")

    def approve_assigned_lawyer(self, task_id: int, actor) -> Task:
        """pending_assigned_lawyer → approved (the executing lawyer)."""
        return self._approve(task_id, actor, "approve_assigned_lawyer")

    def list_pending_admin_approvals(self, actor) -> list[dict]:
        """
        Tasks awaiting admin approval.  The root administrator sees all of
        them; other administrators see those they created.

        Returns:
            Task dicts with an added ``can_approve`` flag.
        """
        authorize(actor, REL_ADMIN)
        is_root = actor.id == self.resolve_root_admin_id()
        rows = []
        for task in self.store.list_tasks(approval_status=PENDING_ADMIN):
            if not is_root and task.created_by != actor.id:
                continue
            row = task.to_dict()
            row["can_approve"] = can(actor, REL_CREATOR_OR_ADMIN, task)
            rows.append(row)
        return rows

    # ── Stage pipeline ────────────────────────────────────────────────────

    def move_to_stage(self, task_id: int, actor, stage_id: int) -> Task:
        """
        Move a task to *stage_id*; recompute progress and status.

        Raises:
            ForbiddenError, NotFoundError, PreconditionFailedError
        """
        with self.locks.hold(task_id), self.stages.lock, self.store.transaction():
            task = self._load(task_id, for_update=True)
            now = self._clock()
            result = stage_engine.move_to_stage(
                task, actor, self.store.list_stages(), stage_id, now=now,
            )
            task.updated_at = now
            self.store.save_task(task)
            self._log(task.id, "stage_changed", actor.id, {
                "from_stage_id": result["previous_stage_id"],
                "from_stage": result["previous_stage_name"],
                "to_stage_id": result["stage_id"],
                "to_stage": result["stage_name"],
                "progress": {"old": result["previous_progress"], "new": result["progress"]},
                "status": {"old": result["previous_status"], "new": result["status"]},
            }, now)

        logger.info(
            "Task %s moved to stage %s (%s%%)", task.task_code, result["stage_name"], result["progress"],
            extra={"task_id": task.id, "stage_id": stage_id, "actor_id": actor.id,
                   "action": "stage_changed"},
        )
        payload = _task_payload(task)
        payload.update(stage_id=result["stage_id"], stage_name=result["stage_name"])
        self._notify(task.assigned_to, EVENT_STAGE_ENTERED, payload)
        return task

    # ── Follow-up ─────────────────────────────────────────────────────────

    def record_follow_up(self, task_id: int, actor, notes: str | None = None) -> Task:
        """Stamp a follow-up on the task.  Approval and stage are untouched."""
        notes = (notes or "").strip() or DEFAULT_FOLLOW_UP_NOTES
        with self.locks.hold(task_id), self.store.transaction():
            task = self._load(task_id, for_update=True)
            authorize(actor, REL_CREATOR_OR_ADMIN, task)
            now = self._clock()
            task.last_follow_up_by = actor.id
            task.last_follow_up_at = now
            task.last_follow_up_notes = notes
            task.updated_at = now
            self.store.save_task(task)
            self._log(task.id, "follow_up", actor.id, {
                "notes": notes,
                "approval_status": task.approval_status,
                "status": task.status,
            }, now)
        return task

    def list_follow_ups(self, actor) -> list[Task]:
        """Tasks the actor created; every task for administrators."""
        if can(actor, REL_ADMIN):
            return self.store.list_tasks()
        return self.store.list_tasks(created_by=actor.id)

    # ── Activity ──────────────────────────────────────────────────────────

    def list_activity(self, task_id: int | None = None) -> list:
        """Activity entries, newest first."""
        return list(reversed(self.store.list_activities(task_id)))

    # ── SLA ───────────────────────────────────────────────────────────────

    def escalate_overdue_tasks(self, now: datetime | None = None) -> list[Task]:
        """
        Stamp ``escalated_at`` on every overdue task and notify its owner.

        Each task is re-checked under its own lock, so a concurrent completion
        or a second scan cannot escalate it twice.
        """
        now = sla.as_aware(now) or self._clock()
        escalated = []
        for candidate in sla.find_overdue(self.store.list_tasks(), now):
            with self.locks.hold(candidate.id), self.store.transaction():
                task = self.store.get_task(candidate.id, for_update=True)
                if task is None or not sla.is_overdue(task, now):
                    continue
                task.escalated_at = now
                self.store.save_task(task)
                self._log(task.id, "escalated", None, {
                    "due_date": task.due_date,
                    "status": task.status,
                }, now)
            escalated.append(task)

        for task in escalated:
            payload = _task_payload(task)
            payload.update(priority="high", due_date=task.due_date)
            self._notify(sla.escalation_target(task), EVENT_SLA_ESCALATED, payload)

        if escalated:
            logger.warning(
                "SLA: escalated %d overdue task(s)", len(escalated),
                extra={"action": "escalated"},
            )
        return escalated
