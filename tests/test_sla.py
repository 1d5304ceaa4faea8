"""
SLA escalation tests: overdue detection rules and the service-level scan.
"""

from datetime import datetime, timedelta, timezone

from casedesk.models.task import Task
from casedesk.services import sla

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)
PAST = "2026-03-01T09:00:00+00:00"
FUTURE = "2026-05-01T09:00:00+00:00"


class TestOverdueRules:

    def test_past_due_open_task_is_overdue(self):
        task = Task(status="in_progress", due_date=NOW - timedelta(days=1))
        assert sla.is_overdue(task, NOW)

    def test_naive_due_date_is_treated_as_utc(self):
        task = Task(status="pending", due_date=datetime(2026, 3, 31, 12, 0))
        assert sla.is_overdue(task, NOW)

    def test_not_overdue_cases(self):
        assert not sla.is_overdue(Task(status="pending", due_date=None), NOW)
        assert not sla.is_overdue(Task(status="pending", due_date=NOW + timedelta(hours=1)), NOW)
        assert not sla.is_overdue(Task(status="completed", due_date=NOW - timedelta(days=3)), NOW)
        assert not sla.is_overdue(
            Task(status="pending", due_date=NOW - timedelta(days=3), escalated_at=NOW), NOW,
        )

    def test_escalation_target_fallback(self):
        assert sla.escalation_target(Task(created_by=1, main_lawyer_id=2, assigned_to=3)) == 1
        assert sla.escalation_target(Task(created_by=None, main_lawyer_id=2, assigned_to=3)) == 2
        assert sla.escalation_target(Task(created_by=None, main_lawyer_id=None, assigned_to=3)) == 3


class TestEscalationScan:

    def test_overdue_task_is_escalated_once(self, workflow, people, make_task, notifier):
        overdue = make_task(due_date=PAST, creator=people.head)
        make_task(due_date=FUTURE)
        make_task()

        escalated = workflow.escalate_overdue_tasks(now=NOW)

        assert [t.id for t in escalated] == [overdue.id]
        assert workflow.get_task(overdue.id).escalated_at is not None
        entry = workflow.list_activity(overdue.id)[0]
        assert entry.action == "escalated"
        assert entry.user_id is None

        sla_events = [(uid, p) for uid, event, p in notifier.sent if event == "sla"]
        assert len(sla_events) == 1
        assert sla_events[0][0] == people.head.id
        assert sla_events[0][1]["priority"] == "high"

        assert workflow.escalate_overdue_tasks(now=NOW + timedelta(days=1)) == []

    def test_completed_task_is_not_escalated(self, workflow, people, make_task):
        task = make_task(due_date=PAST)
        last = workflow.stages.list_stages()[-1]
        workflow.move_to_stage(task.id, people.admin, last.id)

        assert workflow.escalate_overdue_tasks(now=NOW) == []

    def test_naive_now_is_accepted(self, workflow, make_task):
        task = make_task(due_date=PAST)
        escalated = workflow.escalate_overdue_tasks(now=datetime(2026, 4, 1, 12, 0))
        assert [t.id for t in escalated] == [task.id]
