"""
HIRA Lifecycle Engine
Configuration classes for the app factory.

Every tunable is read from the environment once, at import time. Tests use
``TestingConfig``, which pins the LLM to the local stub and removes all
retry delays.

Usage:
    app.config.from_object(config[os.getenv("APP_ENV", "development")]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'hira_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(default=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Request logging: requests slower than this are logged as warnings
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))

    # Flask-Limiter. Only write endpoints and AI suggestions are limited.
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED")
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    HIRA_WRITE_RATE_LIMIT = os.getenv("HIRA_WRITE_RATE_LIMIT", "120 per minute")
    AI_SUGGESTION_RATE_LIMIT = os.getenv("AI_SUGGESTION_RATE_LIMIT", "20 per minute")

    # LLM gateway (falls back to the local stub without an API key)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    LLM_DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gemini-2.5-flash")
    LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))

    # Worksheet auto-save worker pool
    AUTOSAVE_WORKERS = int(os.getenv("AUTOSAVE_WORKERS", "2"))
    AUTOSAVE_MAX_RETRIES = int(os.getenv("AUTOSAVE_MAX_RETRIES", "3"))
    AUTOSAVE_RETRY_DELAY = float(os.getenv("AUTOSAVE_RETRY_DELAY", "2.0"))

    ASSESSMENT_NUMBER_PREFIX = os.getenv("ASSESSMENT_NUMBER_PREFIX", "HIRA")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """In-memory SQLite, no rate limits, local LLM stub, no retry delays."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    GEMINI_API_KEY = None
    LLM_DEFAULT_CHAT_MODEL = "local-stub"
    LLM_MAX_RETRIES = 1
    AUTOSAVE_RETRY_DELAY = 0.0


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
        "pool_timeout": 20,
    }

    def __init__(self):
        missing = [name for name, ok in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
        ) if not ok]
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
