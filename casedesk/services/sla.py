"""
SLA rules for overdue tasks.

A task is overdue when it has a due date in the past, is not completed and
has not been escalated yet.  Escalation happens once per task: the scan in
``WorkflowService.escalate_overdue_tasks`` stamps ``escalated_at`` and the
task drops out of every later scan.
"""

from datetime import datetime, timezone

from casedesk.models.task import STATUS_COMPLETED


def as_aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything here is stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_overdue(task, now: datetime) -> bool:
    if task.due_date is None or task.escalated_at is not None:
        return False
    if task.status == STATUS_COMPLETED:
        return False
    return as_aware(task.due_date) < as_aware(now)


def find_overdue(tasks, now: datetime) -> list:
    return [t for t in tasks if is_overdue(t, now)]


def escalation_target(task) -> int | None:
    """Creator first, then the main lawyer, then the executing lawyer."""
    return task.created_by or task.main_lawyer_id or task.assigned_to
