"""
Rate limiting configuration.

The Limiter instance is created in orgadmin/__init__.py with no default
limits; this module applies limits per blueprint once they are registered.

Usage:
    from orgadmin.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request

logger = logging.getLogger(__name__)

_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _is_read_request() -> bool:
    return request.method not in _WRITE_METHODS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Approval template writes:  APPROVAL_WRITE_RATE_LIMIT (60/minute)
        - Reads:                     unlimited

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("APPROVAL_WRITE_RATE_LIMIT", "60/minute")
    bp = app.blueprints.get("approval_templates")
    if bp:
        limiter.limit(write_limit, exempt_when=_is_read_request)(bp)

    app.logger.info("Rate limiter configured — approval template writes: %s", write_limit)
