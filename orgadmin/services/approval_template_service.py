"""
Approval template service layer.

Loads ``TemplateDefinition`` aggregates from ``SqlTemplateStore``, applies an
authoring operation and saves the whole aggregate back, so that blueprints
remain HTTP-only.  Every db.session.commit() in this module is intentional and
constitutes the single source of truth for transaction ownership; a failed
commit rolls the session back before the error propagates.

Runtime lookup (``resolve_approvers``) is read-only and never commits.
"""

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from orgadmin.core.exceptions import ValidationError
from orgadmin.models import db
from orgadmin.services.approver_resolver import ApproverResolver
from orgadmin.services.directory import SqlOrgDirectory, SqlRoleDirectory
from orgadmin.services.template_definition import (
    DEFAULT_COLOR,
    DEFAULT_ICON,
    DEFAULT_SLA_HOURS,
    LevelScope,
    TemplateDefinition,
)
from orgadmin.services.template_errors import (
    DuplicateInternalNameError,
    TemplateInUseError,
)
from orgadmin.services.template_store import SqlTemplateStore, TemplateStore

logger = logging.getLogger(__name__)

_store: TemplateStore = SqlTemplateStore()


def _defaults() -> dict:
    """Creation defaults, overridable through app config."""
    return {
        "icon": DEFAULT_ICON,
        "color": current_app.config.get("APPROVAL_DEFAULT_COLOR", DEFAULT_COLOR),
        "default_sla_hours": current_app.config.get("APPROVAL_DEFAULT_SLA_HOURS", DEFAULT_SLA_HOURS),
    }


def _commit(definition: TemplateDefinition) -> TemplateDefinition:
    """Save + commit the aggregate; roll back and re-raise on failure.

    Raises:
        DuplicateInternalNameError: a concurrent create took the name first.
        ValidationError: the chain references users / roles that do not exist.
    """
    is_new = definition.id is None
    try:
        _store.save(definition)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_new:
            definition.id = None
            if _store.exists_by_internal_name(definition.internal_name):
                raise DuplicateInternalNameError(
                    f"An approval template named {definition.internal_name!r} already exists",
                    subject="name",
                ) from exc
        logger.warning("Template save rejected by the database: %s", exc.orig,
                       extra={"template_id": definition.id})
        raise ValidationError(
            "Template references a user or role that does not exist",
            details={"errors": [{"code": "UNKNOWN_REFERENCE", "message": str(exc.orig), "subject": None}]},
        ) from exc
    except Exception:
        db.session.rollback()
        raise
    return definition


def _guard_in_flight(template_id: int, operation: str) -> None:
    if _store.has_in_flight_requests(template_id):
        logger.warning(
            "Rejected %s: template has in-flight requests",
            operation,
            extra={"template_id": template_id},
        )
        raise TemplateInUseError(template_id, operation)


# ──────────────────────────────────────────────────────────────────────────────
# Templates
# ──────────────────────────────────────────────────────────────────────────────

def list_templates(
    active_only: bool = False,
    include_fields: bool = False,
    include_levels: bool = False,
) -> list[dict]:
    """Return all templates ordered by internal name."""
    return [
        t.to_dict(include_fields=include_fields, include_levels=include_levels)
        for t in _store.list(active_only=active_only)
    ]


def get_template(template_id: int) -> dict:
    """Fetch one template with its fields and chains.

    Raises:
        NotFoundError: unknown template_id.
    """
    return _store.load(template_id).to_dict()


def create_template(data: dict, created_by: str | None = None) -> dict:
    """Create a template from metadata plus optional ``fields`` / ``levels``.

    The template starts inactive unless ``is_active`` is passed and the
    activation gate succeeds.

    Raises:
        TemplateValidationError: any metadata / field / level violation.
        DuplicateInternalNameError: internal name already taken.
    """
    metadata = dict(data)
    if created_by and not metadata.get("created_by"):
        metadata["created_by"] = created_by
    definition = TemplateDefinition.create(
        metadata,
        name_exists=_store.exists_by_internal_name,
        fields=data.get("fields"),
        levels=data.get("levels"),
        defaults=_defaults(),
    )
    _commit(definition)
    logger.info(
        "ApprovalTemplate created name=%s active=%s",
        definition.internal_name, definition.is_active,
        extra={"template_id": definition.id},
    )
    return definition.to_dict()


def update_template(template_id: int, data: dict) -> dict:
    """Apply a partial metadata update (all-or-nothing).

    Raises:
        NotFoundError, ImmutableInternalNameError, TemplateValidationError.
    """
    definition = _store.load(template_id)
    definition.update_metadata(data)
    _commit(definition)
    logger.info(
        "ApprovalTemplate updated keys=%s",
        sorted(data.keys()),
        extra={"template_id": template_id},
    )
    return definition.to_dict()


def set_template_active(template_id: int, active: bool) -> dict:
    """Activate (through the activation gate) or deactivate a template."""
    definition = _store.load(template_id)
    definition.set_active(active)
    _commit(definition)
    logger.info(
        "ApprovalTemplate %s",
        "activated" if active else "deactivated",
        extra={"template_id": template_id},
    )
    return definition.to_dict()


def delete_template(template_id: int) -> dict:
    """Delete a template, or only deactivate it when requests reference it.

    Returns:
        {"deleted": bool, "deactivated": bool}
    """
    definition = _store.load(template_id)
    if _store.count_requests(template_id) > 0:
        definition.set_active(False)
        _commit(definition)
        logger.info(
            "ApprovalTemplate has requests; deactivated instead of deleted",
            extra={"template_id": template_id},
        )
        return {"deleted": False, "deactivated": True}

    try:
        _store.delete(template_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("ApprovalTemplate deleted name=%s", definition.internal_name, extra={"template_id": template_id})
    return {"deleted": True, "deactivated": False}


# ──────────────────────────────────────────────────────────────────────────────
# Form fields
# ──────────────────────────────────────────────────────────────────────────────

def get_fields(template_id: int) -> list[dict]:
    return [f.to_dict() for f in _store.load(template_id).fields]


def replace_fields(template_id: int, fields: list) -> list[dict]:
    """Replace the whole field schema.

    Raises:
        TemplateInUseError: requests are in flight.
        TemplateValidationError: every field violation found.
    """
    definition = _store.load(template_id)
    _guard_in_flight(template_id, "replace fields")
    definition.replace_fields(fields)
    _commit(definition)
    logger.info("ApprovalTemplate fields replaced count=%d", len(definition.fields), extra={"template_id": template_id})
    return [f.to_dict() for f in definition.fields]


# ──────────────────────────────────────────────────────────────────────────────
# Approval levels
# ──────────────────────────────────────────────────────────────────────────────

def get_levels(template_id: int, scope: LevelScope | None = None) -> dict:
    """Chain used in ``scope`` (global fallback) and whether it is the scope's own."""
    definition = _store.load(template_id)
    chain = definition.chain_for(scope)
    return {
        "scope": scope.to_dict() if scope else None,
        "inherited": scope is not None and chain is definition.levels,
        "levels": definition.chain_to_dict(chain),
    }


def replace_levels(template_id: int, levels: list, scope: LevelScope | None = None) -> list[dict]:
    """Replace the global chain, or the chain of ``scope`` (empty list removes it).

    Raises:
        TemplateInUseError: requests are in flight.
        TemplateValidationError: numbering / approver / SLA violations, or the
            activation checks on an active template.
    """
    definition = _store.load(template_id)
    _guard_in_flight(template_id, "replace levels")
    chain = definition.replace_levels(levels, scope=scope)
    _commit(definition)
    logger.info(
        "ApprovalTemplate levels replaced count=%d scope=%s",
        len(chain), scope.to_dict() if scope else "global",
        extra={"template_id": template_id},
    )
    return definition.chain_to_dict(chain)


# ──────────────────────────────────────────────────────────────────────────────
# Runtime lookup
# ──────────────────────────────────────────────────────────────────────────────

def resolve_approvers(
    template_id: int,
    level_number: int,
    requester_id: int,
    scope: LevelScope | None = None,
) -> dict:
    """Concrete approver user ids for one level of a request.

    Inactive templates still resolve so requests already in flight can move on.

    Raises:
        NotFoundError: unknown template or level.
        NoSupervisorAvailableError, RoleHasNoMembersError.
    """
    definition = _store.load(template_id)
    level = definition.level(level_number, scope)
    resolver = ApproverResolver(roles=SqlRoleDirectory(), organization=SqlOrgDirectory())
    result = resolver.resolve(level, requester_id)
    payload = result.to_dict()
    payload["level_name"] = level.level_name
    payload["sla_hours"] = definition.effective_sla_hours(level)
    return payload


# ──────────────────────────────────────────────────────────────────────────────
# Seed data
# ──────────────────────────────────────────────────────────────────────────────

DEFAULT_TEMPLATES: list[dict] = [
    {
        "name": "leave_request",
        "display_name": "Leave Request",
        "description": "Time off approved by the requester's supervisor.",
        "icon": "Calendar",
        "fields": [
            {"name": "leave_type", "label": "Leave Type", "type": "select",
             "options": ["Annual", "Sick", "Other"], "is_required": True},
            {"name": "reason", "label": "Reason", "type": "textarea",
             "depends_on_field": "leave_type", "depends_on_value": "Other"},
            {"name": "start_date", "label": "Start Date", "type": "date", "is_required": True},
            {"name": "end_date", "label": "End Date", "type": "date", "is_required": True},
        ],
        "levels": [
            {"level_number": 1, "level_name": "Supervisor",
             "approvers": [{"type": "requester_supervisor"}]},
        ],
    },
]


def seed_default_templates() -> int:
    """Create DEFAULT_TEMPLATES that do not exist yet; returns how many were created."""
    created = 0
    for data in DEFAULT_TEMPLATES:
        if _store.exists_by_internal_name(data["name"]):
            continue
        create_template(data, created_by="seed")
        created += 1
    logger.info("Seeded %d approval template(s)", created)
    return created
