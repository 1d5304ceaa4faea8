"""
Application factory, configuration, CLI and logging tests.
"""

import json
import logging
from types import SimpleNamespace

import pytest

from casedesk import build_store, create_app
from casedesk.config import ProductionConfig, TestingConfig
from casedesk.core.logging_config import JSONFormatter, ReadableFormatter, configure_logging
from casedesk.services.task_service import WorkflowService
from casedesk.store import InMemoryTaskStore, SqlTaskStore


class TestFactory:

    def test_workflow_extension_is_attached(self, app):
        workflow = app.extensions["workflow"]
        assert isinstance(workflow, WorkflowService)
        assert isinstance(workflow.store, SqlTaskStore)

    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SQLALCHEMY_DATABASE_URI"] == TestingConfig.SQLALCHEMY_DATABASE_URI
        assert app.config["SEED_DEFAULT_STAGES"] is False

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_app("production")

    def test_store_backend_selection(self):
        assert isinstance(build_store(SimpleNamespace(config={"TASK_STORE_BACKEND": "memory"})), InMemoryTaskStore)
        assert isinstance(build_store(SimpleNamespace(config={"TASK_STORE_BACKEND": "sql"})), SqlTaskStore)
        with pytest.raises(RuntimeError):
            build_store(SimpleNamespace(config={"TASK_STORE_BACKEND": "redis"}))


class TestCli:

    def test_seed_stages_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-stages"])

        assert result.exit_code == 0
        assert len(app.extensions["workflow"].stages.list_stages()) == 7

        runner.invoke(args=["seed-stages"])
        assert len(app.extensions["workflow"].stages.list_stages()) == 7

    def test_sla_check_command(self, app):
        result = app.test_cli_runner().invoke(args=["sla-check"])
        assert result.exit_code == 0


class TestJsonLogging:

    def test_workflow_context_fields_are_emitted(self):
        record = logging.LogRecord(
            name="casedesk.services.task_service", level=logging.INFO, pathname=__file__,
            lineno=1, msg="Task %s approved", args=("TSK-2026-001",), exc_info=None,
        )
        record.task_id = 1
        record.actor_id = 9
        record.action = "approve_admin"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Task TSK-2026-001 approved"
        assert entry["level"] == "INFO"
        assert entry["task_id"] == 1
        assert entry["actor_id"] == 9
        assert entry["action"] == "approve_admin"
        assert "user_id" not in entry

    def test_record_time_is_used(self):
        record = logging.LogRecord(
            name="casedesk", level=logging.WARNING, pathname=__file__,
            lineno=1, msg="late", args=(), exc_info=None,
        )
        record.created = 0.0

        entry = json.loads(JSONFormatter().format(record))

        assert entry["timestamp"] == "1970-01-01T00:00:00+00:00"


class TestReadableLogging:

    def test_context_trails_the_message(self):
        record = logging.LogRecord(
            name="casedesk.services.task_service", level=logging.INFO, pathname=__file__,
            lineno=1, msg="Task created: %s", args=("TSK-2026-004",), exc_info=None,
        )
        record.task_id = 4
        record.action = "created"

        line = ReadableFormatter().format(record)

        assert line.endswith("Task created: TSK-2026-004 [task_id=4 action=created]")
        assert "INFO" in line

    def test_no_context_no_suffix(self):
        record = logging.LogRecord(
            name="casedesk", level=logging.INFO, pathname=__file__,
            lineno=1, msg="Seeded 7 stages.", args=(), exc_info=None,
        )
        assert ReadableFormatter().format(record).endswith("casedesk: Seeded 7 stages.")


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:

    def _app(self, **config):
        return SimpleNamespace(config={"TESTING": True, **config})

    def test_testing_defaults_to_readable_debug(self, restore_root_logging):
        configure_logging(self._app())
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ReadableFormatter)

    def test_explicit_format_and_level(self, restore_root_logging):
        configure_logging(self._app(LOG_FORMAT="JSON", LOG_LEVEL="warning"))
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_unknown_format_is_refused(self, restore_root_logging):
        with pytest.raises(RuntimeError, match="LOG_FORMAT"):
            configure_logging(self._app(LOG_FORMAT="xml"))
