"""
CaseDesk
Flask Application Factory.

Usage:
    from casedesk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config

    with app.app_context():
        workflow = app.extensions["workflow"]
        workflow.approve_admin(task_id, actor)
"""

import logging
import os

from flask import Flask

from casedesk.config import config
from casedesk.core.logging_config import configure_logging
from casedesk.models import db
from casedesk.services.notification import LoggingNotificationSink
from casedesk.services.task_service import WorkflowService
from casedesk.store import STORE_BACKENDS

logger = logging.getLogger(__name__)


def build_store(app):
    """Instantiate the TaskStore named by TASK_STORE_BACKEND."""
    backend = app.config.get("TASK_STORE_BACKEND", "sql")
    try:
        store_cls = STORE_BACKENDS[backend]
    except KeyError:
        raise RuntimeError(
            f"Unknown TASK_STORE_BACKEND '{backend}'. "
            f"Must be one of: {', '.join(sorted(STORE_BACKENDS))}"
        )
    return store_cls()


def create_app(config_name=None, notifier=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        notifier: Optional NotificationSink; defaults to logging only.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Workflow engine ──────────────────────────────────────────────────
    workflow = WorkflowService.from_config(
        build_store(app), app.config, notifier=notifier or LoggingNotificationSink(),
    )
    app.extensions["workflow"] = workflow

    with app.app_context():
        db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
        if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
            os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()
        if app.config.get("SEED_DEFAULT_STAGES"):
            created = workflow.stages.seed_default_stages()
            if created:
                logger.info("Seeded %s default stages.", created)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-stages")
    def seed_stages_cmd():
        """Seed the default legal stage pipeline (idempotent)."""
        count = app.extensions["workflow"].stages.seed_default_stages()
        logger.info("Seeded %s new stages.", count)

    @app.cli.command("sla-check")
    def sla_check_cmd():
        """Escalate overdue tasks; schedule every SLA_CHECK_INTERVAL_MINUTES."""
        escalated = app.extensions["workflow"].escalate_overdue_tasks()
        logger.info("SLA check complete: %s task(s) escalated.", len(escalated))

    return app
