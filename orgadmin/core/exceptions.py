"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.  Domain families (e.g. the
approval-template errors) subclass them so a single handler still applies.

Usage:
    from orgadmin.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ApprovalTemplate", resource_id=42)
    raise ValidationError("display_name is required", details={"display_name": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "ApprovalTemplate").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. forward field dependency, gap in level numbers).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown for API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with existing state.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field (or state) that conflicts.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | int | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
