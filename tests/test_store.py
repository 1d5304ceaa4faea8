"""
TaskStore contract tests: transactions, id allocation, filtering, and the
all-or-nothing pairing of a task mutation with its activity entry.
"""

import threading

import pytest

from casedesk.models.auth import User
from casedesk.models.task import Task
from casedesk.store import InMemoryTaskStore


def _user(name, role="lawyer"):
    return User(username=name, full_name=name.title(), role=role)


class TestTransactions:

    def test_exception_discards_every_write(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.add_user(_user("ghost"))
                raise RuntimeError("boom")
        assert store.list_users() == []

    def test_nested_block_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.add_user(_user("outer"))
                with store.transaction():
                    store.add_user(_user("inner"))
                raise RuntimeError("late failure")
        assert store.list_users() == []

    def test_commit_makes_writes_visible(self, store):
        with store.transaction():
            store.add_user(_user("kept"))
        assert [u.username for u in store.list_users()] == ["kept"]

    def test_ids_are_allocated_monotonically(self, store):
        with store.transaction():
            ids = [store.add_user(_user(f"u{i}")).id for i in range(4)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 4

    def test_unknown_filter_is_rejected(self, store):
        with pytest.raises(ValueError):
            store.list_tasks(colour="red")


class TestAuditAtomicity:

    def test_failed_activity_append_rolls_back_approval(self, workflow, people, make_task, monkeypatch):
        task = make_task()
        task_id = task.id

        def _broken_append(entry):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(workflow.store, "append_activity", _broken_append)
        with pytest.raises(RuntimeError):
            workflow.approve_admin(task_id, people.admin)
        monkeypatch.undo()

        reloaded = workflow.get_task(task_id)
        assert reloaded.approval_status == "pending_admin"
        assert reloaded.approved_by_admin is None
        assert [e.action for e in workflow.list_activity(task_id)] == ["created"]

    def test_failed_activity_append_rolls_back_creation(self, workflow, people, monkeypatch):
        def _broken_append(entry):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(workflow.store, "append_activity", _broken_append)
        with pytest.raises(RuntimeError):
            workflow.create_task({
                "title": "Never stored", "department_id": 1, "client_id": 1,
                "assigned_to": people.lawyer.id,
            }, people.admin)
        monkeypatch.undo()

        assert workflow.list_tasks() == []


class TestInMemoryIsolation:

    def test_staged_writes_are_invisible_to_other_threads(self):
        store = InMemoryTaskStore()
        seen = []
        staged = threading.Event()
        checked = threading.Event()

        def _reader():
            staged.wait()
            seen.append(len(store.list_users()))
            checked.set()

        reader = threading.Thread(target=_reader)
        reader.start()
        with store.transaction():
            store.add_user(_user("pending"))
            assert len(store.list_users()) == 1
            staged.set()
            checked.wait(timeout=5)
        reader.join(timeout=5)

        assert seen == [0]
        assert len(store.list_users()) == 1

    def test_reads_are_independent_copies(self):
        store = InMemoryTaskStore()
        with store.transaction():
            task = store.add_task(Task(
                title="Copy me", client_id=1, department_id=1, assigned_to=1,
                main_lawyer_id=1, created_by=1, status="pending",
                approval_status="pending_admin", progress=0,
            ))

        fetched = store.get_task(task.id)
        fetched.title = "Mutated without save"

        assert store.get_task(task.id).title == "Copy me"


class TestActivityLog:

    def test_activity_filter_by_task(self, workflow, make_task):
        first = make_task()
        make_task()
        entries = workflow.store.list_activities(first.id)
        assert [e.task_id for e in entries] == [first.id]
