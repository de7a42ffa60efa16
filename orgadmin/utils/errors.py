"""Standardised API error responses.

Usage
-----
    from orgadmin.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "ApprovalTemplate id=3 not found")
    return api_error(E.VALIDATION_REQUIRED, "requester_id is required")
    return api_error(E.VALIDATION_INVALID, "Template is invalid", status=422,
                     details={"errors": [...]})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • the ``code`` of each entry in details.errors is the engine error code
       (e.g. DANGLING_DEPENDENCY), not one of these
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"

    # Approver resolution – HTTP 422
    RESOLUTION = "ERR_RESOLUTION"

    # Rate limit – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
    E.RESOLUTION: 422,
    E.RATE_LIMITED: 429,
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
        Extra structured payload (e.g. ``{"errors": [...]}``).

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
