"""
HIRA Lifecycle Engine
Flask application factory.

    from hira import create_app
    app = create_app("testing")

``APP_ENV`` picks the configuration when no name is passed.
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from hira.config import config
from hira.middleware.logging_config import configure_logging, init_request_logging
from hira.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
# Blueprints decorate endpoints with ``limiter.limit``; nothing is limited globally
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY constraints unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Empty CORS_ORIGINS (the production default) means no cross-origin access
    origins = [o.strip() for o in (app.config.get("CORS_ORIGINS") or "").split(",") if o.strip()]
    if origins:
        CORS(app, resources={r"/api/*": {"origins": "*" if origins == ["*"] else origins}})


def _init_database(app: Flask) -> None:
    # Register every table on db.metadata before create_all
    from hira.models import audit, auth, hira  # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()


def create_app(config_name=None):
    """Build the HIRA app: logging, extensions, tables, auto-save pool, routes."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)
    _init_database(app)

    from hira.services.autosave import init_autosave
    init_autosave(app)

    init_request_logging(app)
    from hira.blueprints import register_blueprints
    register_blueprints(app)

    logger.info("HIRA app created (config=%s)", config_name)
    return app
