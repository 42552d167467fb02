"""Standardised API error responses.

Usage
-----
    from inspection_platform.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Inspection not found")
    return api_error(E.VALIDATION_REQUIRED, "template_id is required")
"""

from __future__ import annotations

import logging

from flask import jsonify

from inspection_platform.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    InvalidAssignmentError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_ASSIGNMENT = "ERR_INVALID_ASSIGNMENT"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_ASSIGNMENT: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.PRECONDITION_FAILED: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, sweep summary, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Domain exception → HTTP mapping ───────────────────────────────────
def register_error_handlers(app):
    """Answer service-layer exceptions with ``api_error`` bodies, app-wide.

    NotFoundError messages are generic: the looked-up id stays in the logs.
    """

    @app.errorhandler(NotFoundError)
    def _not_found(error: NotFoundError):
        logger.debug("not_found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(AccessDeniedError)
    def _access_denied(error: AccessDeniedError):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(InvalidAssignmentError)
    def _invalid_assignment(error: InvalidAssignmentError):
        return api_error(E.INVALID_ASSIGNMENT, str(error))

    @app.errorhandler(PreconditionFailedError)
    def _precondition_failed(error: PreconditionFailedError):
        return api_error(E.PRECONDITION_FAILED, str(error))

    @app.errorhandler(ConflictError)
    def _conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, f"{error.resource} already exists")

    @app.errorhandler(ValidationError)
    def _validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), status=422, details=error.details)
