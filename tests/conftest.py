"""
Shared pytest fixtures for the CaseDesk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table recreation (autouse)
    - store: TaskStore, parametrized over the SQL and in-memory backends
    - notifier: RecordingNotifier capturing every signalled notification
    - workflow: WorkflowService over ``store`` with the default pipeline seeded
    - add_user: Factory inserting a directory user, returning its Actor
    - people: A small practice (admins, department head, lawyers, assistant)
    - make_task: Factory creating a task through the service
    - approve_fully: Walks a task through all three approval tiers
"""

from types import SimpleNamespace

import pytest

from casedesk import create_app
from casedesk.models import db as _db
from casedesk.models.auth import (
    ROLE_ADMIN,
    ROLE_ASSISTANT,
    ROLE_DEPARTMENT_HEAD,
    ROLE_LAWYER,
    User,
)
from casedesk.services.notification import NotificationSink
from casedesk.services.permission import Actor
from casedesk.services.task_service import WorkflowService
from casedesk.store import InMemoryTaskStore, SqlTaskStore


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Engine fixtures ──────────────────────────────────────────────────────


class RecordingNotifier(NotificationSink):
    """Collects (user_id, event, payload) tuples instead of delivering."""

    def __init__(self):
        self.sent = []

    def notify(self, user_id, event, payload=None):
        self.sent.append((user_id, event, payload or {}))

    def events_for(self, user_id):
        return [event for uid, event, _ in self.sent if uid == user_id]


@pytest.fixture(params=["sql", "memory"])
def store(request):
    """Every engine test runs once per persistence backend."""
    if request.param == "sql":
        return SqlTaskStore()
    return InMemoryTaskStore()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def workflow(store, notifier):
    service = WorkflowService(store, notifier=notifier)
    service.stages.seed_default_stages()
    return service


def _add_user(store, username, role, *, full_name=None, is_main_lawyer=False, is_active=True):
    """Insert a directory user and return the matching Actor."""
    with store.transaction():
        user = store.add_user(User(
            username=username,
            full_name=full_name or username.title(),
            email=f"{username}@casedesk.test",
            role=role,
            is_main_lawyer=is_main_lawyer,
            is_active=is_active,
        ))
        return Actor(id=user.id, role=user.role, full_name=user.full_name)


@pytest.fixture()
def add_user(store):
    """Factory: add_user(username, role, **flags) -> Actor."""

    def _add(username, role, **flags):
        return _add_user(store, username, role, **flags)

    return _add


@pytest.fixture()
def people(store):
    """
    admin          root administrator (lowest admin id)
    admin2         second administrator
    head           department head
    main           lawyer flagged is_main_lawyer
    lawyer         executing lawyer
    lawyer2        another lawyer
    assistant      read-only role
    """
    return SimpleNamespace(
        admin=_add_user(store, "admin", ROLE_ADMIN),
        admin2=_add_user(store, "admin2", ROLE_ADMIN),
        head=_add_user(store, "head", ROLE_DEPARTMENT_HEAD),
        main=_add_user(store, "main", ROLE_LAWYER, is_main_lawyer=True),
        lawyer=_add_user(store, "lawyer", ROLE_LAWYER),
        lawyer2=_add_user(store, "lawyer2", ROLE_LAWYER),
        assistant=_add_user(store, "assistant", ROLE_ASSISTANT),
    )


@pytest.fixture()
def make_task(workflow, people):
    """Create a task through the service; keyword overrides go into the payload."""

    def _make(creator=None, **overrides):
        data = {
            "title": "Draft statement of claim",
            "department_id": 1,
            "client_id": 10,
            "assigned_to": people.lawyer.id,
        }
        data.update(overrides)
        return workflow.create_task(data, creator or people.admin)

    return _make


@pytest.fixture()
def approve_fully(workflow, people):
    """Walk a default task through all three approval tiers."""

    def _approve(task_id):
        workflow.approve_admin(task_id, people.admin)
        workflow.approve_main_lawyer(task_id, people.main)
        return workflow.approve_assigned_lawyer(task_id, people.lawyer)

    return _approve
