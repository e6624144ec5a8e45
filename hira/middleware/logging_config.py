"""
Structured logging and request logging.

- Production: one JSON object per line (log aggregator compatible)
- Development / tests: short colored lines
- LOG_LEVEL env variable overrides the level

Inside a request every record is stamped with the request id and, where the
URL carries them, the company and assessment ids plus the calling user, so
lifecycle log lines can be correlated without passing ``extra`` everywhere.
"""

import json
import logging
import os
import sys
import time
import uuid
from datetime import datetime, timezone

from flask import Flask, g, has_request_context, request

logger = logging.getLogger(__name__)

# Attributes copied from the record into the JSON payload when present
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "company_id",
    "assessment_id",
    "actor_id",
    "action",
    "attempt",
)

_SKIP_PATHS = ("/api/v1/health",)


class RequestContextFilter(logging.Filter):
    """Fill request-derived context on records that don't carry it already."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        view_args = request.view_args or {}
        context = {
            "request_id": getattr(g, "request_id", None),
            "company_id": view_args.get("company_id"),
            "assessment_id": view_args.get("assessment_id"),
            "actor_id": request.headers.get("X-User-Id") or None,
        }
        for key, value in context.items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({key: getattr(record, key) for key in CONTEXT_FIELDS
                      if getattr(record, key, None) is not None})
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [hira 1/42 user=7]`` with level colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        tags = []
        company_id = getattr(record, "company_id", None)
        assessment_id = getattr(record, "assessment_id", None)
        if company_id is not None:
            tags.append(f"hira {company_id}/{assessment_id}" if assessment_id else f"company {company_id}")
        actor_id = getattr(record, "actor_id", None)
        if actor_id is not None:
            tags.append(f"user={actor_id}")
        if tags:
            line += f" [{' '.join(tags)}]"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app: Flask):
    """
    Install a single stderr handler on the root logger.

    JSON in production, readable elsewhere. LOG_LEVEL defaults to INFO in
    production and DEBUG otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Tests build several apps; replace rather than stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "urllib3", "httpx", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        logger.info("Logging configured: level=%s format=%s",
                    level_name, "json" if is_prod else "readable")


def init_request_logging(app: Flask):
    """Assign request ids and log every API request with its duration."""
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _start_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response

        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers["X-Request-ID"] = g.request_id
        if request.path.startswith(_SKIP_PATHS):
            return response

        extra = {"method": request.method, "path": request.path,
                 "status": response.status_code, "duration_ms": duration_ms}
        if response.status_code >= 500:
            log = logger.error
        elif duration_ms > slow_ms:
            log = logger.warning
        else:
            log = logger.debug
        log("%s %s -> %d (%.0fms)", request.method, request.path,
            response.status_code, duration_ms, extra=extra)
        return response
