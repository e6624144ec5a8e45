"""JSON error envelope for the HIRA API.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "kind": "<error kind>", "details": {...}}

``kind`` and ``details`` are only present when known. Service exceptions are
converted with ``error_from_exception``; views that fail before reaching a
service call ``api_error`` directly.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    INVALID_INPUT = "ERR_INVALID_INPUT"
    EMPTY_SELECTION = "ERR_EMPTY_SELECTION"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    INCOMPLETE_DATA = "ERR_INCOMPLETE_DATA"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    INTERNAL = "ERR_INTERNAL"


_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.INVALID_INPUT: 400,
    E.EMPTY_SELECTION: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.INVALID_TRANSITION: 409,
    E.INCOMPLETE_DATA: 422,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}

# Exception ``kind`` -> error code
KIND_TO_CODE: dict[str, str] = {
    "InvalidInput": E.INVALID_INPUT,
    "EmptySelection": E.EMPTY_SELECTION,
    "Forbidden": E.FORBIDDEN,
    "NotFound": E.NOT_FOUND,
    "InvalidTransition": E.INVALID_TRANSITION,
    "IncompleteData": E.INCOMPLETE_DATA,
}

# werkzeug HTTPException status -> error code
_HTTP_TO_CODE: dict[int, str] = {
    400: E.INVALID_INPUT,
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    429: E.RATE_LIMITED,
}


def status_for(code: str) -> int:
    return _STATUS.get(code, 400)


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None, kind: str | None = None):
    """Build ``(response, status)`` for a Flask view.

    ``status`` overrides the code's default HTTP status.
    """
    body: dict = {"error": message, "code": code}
    if kind:
        body["kind"] = kind
    if details:
        body["details"] = details
    return jsonify(body), status or status_for(code)


def error_from_exception(exc: Exception):
    """Map a service exception carrying ``kind`` (and maybe ``details``) to a response."""
    kind = getattr(exc, "kind", None)
    code = KIND_TO_CODE.get(kind, E.INVALID_INPUT)
    return api_error(code, str(exc), details=getattr(exc, "details", None), kind=kind)


def error_from_http(exc) -> tuple:
    """Wrap a werkzeug ``HTTPException`` (404 route, 405, 429 from the limiter)."""
    code = _HTTP_TO_CODE.get(exc.code, E.INTERNAL if exc.code >= 500 else E.INVALID_INPUT)
    return api_error(code, exc.description or exc.name, status=exc.code)
