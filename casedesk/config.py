"""
CaseDesk
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when no DATABASE_URL is set
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'casedesk_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _int_env(name, default=None):
    raw = os.getenv(name, "")
    return int(raw) if raw.strip() else default


def _database_url(default):
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # Logging: LOG_FORMAT is json | readable; both default per environment
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")

    # Workflow engine
    TASK_STORE_BACKEND = os.getenv("TASK_STORE_BACKEND", "sql")    # sql | memory
    DEFAULT_MAIN_LAWYER_ID = _int_env("DEFAULT_MAIN_LAWYER_ID")
    ROOT_ADMIN_ID = _int_env("ROOT_ADMIN_ID")
    TASK_LOCK_STRIPES = _int_env("TASK_LOCK_STRIPES", 64)
    SEED_DEFAULT_STAGES = os.getenv("SEED_DEFAULT_STAGES", "true").lower() == "true"

    # SLA scanner (run by an external scheduler via `flask sla-check`)
    SLA_CHECK_INTERVAL_MINUTES = _int_env("SLA_CHECK_INTERVAL_MINUTES", 60)


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    TASK_STORE_BACKEND = "sql"
    DEFAULT_MAIN_LAWYER_ID = None
    ROOT_ADMIN_ID = None
    SEED_DEFAULT_STAGES = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url(None)

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
