"""
Structured logging for the workflow engine.

Engine modules log through ``logging.getLogger(__name__)`` and attach the
task they acted on via ``extra={...}`` (see CONTEXT_FIELDS).  Both formatters
surface that context:

- JSON (production): one object per line, context fields as top-level keys
- Readable (development, tests): ``message [task=12 action=approve_admin]``

LOG_LEVEL and LOG_FORMAT come from app config, falling back to DEBUG and
readable output outside production.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Workflow context attached through ``extra={...}``
CONTEXT_FIELDS = (
    "task_id",
    "task_code",
    "stage_id",
    "actor_id",
    "user_id",
    "action",
    "event_type",
    "approval_status",
)

LOG_FORMATS = ("json", "readable")

# Library loggers held at WARNING so SQL echo never drowns workflow entries
_QUIET_LOGGERS = ("sqlalchemy.engine",)


def workflow_context(record: logging.LogRecord) -> dict:
    """Context fields present on *record*, in CONTEXT_FIELDS order."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(workflow_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line text; workflow context trails the message."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = workflow_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


def configure_logging(app):
    """
    Install one root stderr handler for the Flask app.

    Production (neither DEBUG nor TESTING) defaults to INFO + JSON; every
    other environment to DEBUG + readable.  The root handlers are replaced,
    so creating several apps in one process never stacks them.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    log_format = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    if log_format not in LOG_FORMATS:
        raise RuntimeError(
            f"Unknown LOG_FORMAT '{log_format}'. Must be one of: {', '.join(LOG_FORMATS)}"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
