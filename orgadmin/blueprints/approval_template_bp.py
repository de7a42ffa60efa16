"""Approval template blueprint.

REST API for authoring approval templates (application types) and for the
runtime lookup of who approves a given level.

Endpoint groups:
  Templates         GET/POST        /api/v1/approval-templates
                    GET/PUT/DELETE  /api/v1/approval-templates/<tid>
  Activation        POST            /api/v1/approval-templates/<tid>/activate
                    POST            /api/v1/approval-templates/<tid>/deactivate
  Form fields       GET/POST        /api/v1/approval-templates/<tid>/fields
  Approval levels   GET/POST        /api/v1/approval-templates/<tid>/levels
  Approvers         GET             /api/v1/approval-templates/<tid>/levels/<n>/approvers

project_id / cohort_id query params select a scoped chain; without them the
global chain is used.  Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import orgadmin.services.approval_template_service as svc
from orgadmin.blueprints import paginate_items
from orgadmin.core.exceptions import ConflictError, NotFoundError, ValidationError
from orgadmin.services.template_definition import LevelScope
from orgadmin.services.template_errors import (
    DuplicateInternalNameError,
    ResolutionError,
    TemplateError,
    TemplateInUseError,
    TemplateValidationError,
)
from orgadmin.utils.errors import E, api_error

logger = logging.getLogger(__name__)

approval_template_bp = Blueprint("approval_templates", __name__, url_prefix="/api/v1")


class BadRequest(Exception):
    """Malformed request (missing body, non-integer query param) → 400."""


# ── Request helpers ───────────────────────────────────────────────────────────


def _json_object() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _json_list(key: str) -> list:
    """Accept either a bare JSON list or ``{key: [...]}``."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        raise BadRequest(f"Request body must be a JSON list or an object with a '{key}' list")
    return data


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def _scope() -> LevelScope | None:
    try:
        return LevelScope.of(request.args.get("project_id"), request.args.get("cohort_id"))
    except ValueError:
        raise BadRequest("project_id and cohort_id must be integers") from None


# ── Error handlers ────────────────────────────────────────────────────────────


@approval_template_bp.errorhandler(BadRequest)
def _handle_bad_request(error: BadRequest):
    return api_error(E.VALIDATION_REQUIRED, str(error))


@approval_template_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@approval_template_bp.errorhandler(DuplicateInternalNameError)
def _handle_duplicate_name(error: DuplicateInternalNameError):
    return api_error(E.CONFLICT_DUPLICATE, str(error), details={"errors": [error.to_dict()]})


@approval_template_bp.errorhandler(TemplateInUseError)
def _handle_in_use(error: TemplateInUseError):
    return api_error(E.CONFLICT_STATE, str(error), details={"operation": error.operation})


@approval_template_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@approval_template_bp.errorhandler(ResolutionError)
def _handle_resolution(error: ResolutionError):
    return api_error(E.RESOLUTION, str(error), details={"errors": [error.to_dict()]})


@approval_template_bp.errorhandler(TemplateValidationError)
def _handle_template_validation(error: TemplateValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), status=422, details=error.details)


@approval_template_bp.errorhandler(TemplateError)
def _handle_template_error(error: TemplateError):
    return api_error(E.VALIDATION_INVALID, str(error), status=422, details={"errors": [error.to_dict()]})


@approval_template_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), status=422, details=error.details)


@approval_template_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in approval_template_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@approval_template_bp.route("/approval-templates", methods=["GET"])
def list_templates():
    """List approval templates.

    Query params: active, include_fields, include_levels (booleans), limit, offset
    """
    items, total = paginate_items(svc.list_templates(
        active_only=_flag("active"),
        include_fields=_flag("include_fields"),
        include_levels=_flag("include_levels"),
    ))
    return jsonify({"items": items, "total": total}), 200


@approval_template_bp.route("/approval-templates", methods=["POST"])
def create_template():
    """Create a template.

    Body: {
        name, display_name, description?, icon?, color?, default_sla_hours?,
        is_active?, fields?: [...], levels?: [...]
    }
    Returns: template dict (201).
    """
    data = _json_object()
    created_by = request.headers.get("X-User") or data.get("created_by")
    return jsonify(svc.create_template(data, created_by=created_by)), 201


@approval_template_bp.route("/approval-templates/<int:tid>", methods=["GET"])
def get_template(tid):
    return jsonify(svc.get_template(tid)), 200


@approval_template_bp.route("/approval-templates/<int:tid>", methods=["PUT"])
def update_template(tid):
    """Partial metadata update; ``name`` can only be repeated unchanged."""
    return jsonify(svc.update_template(tid, _json_object())), 200


@approval_template_bp.route("/approval-templates/<int:tid>", methods=["DELETE"])
def delete_template(tid):
    """Delete, or deactivate when requests reference the template.

    Returns: {"deleted": bool, "deactivated": bool}
    """
    return jsonify(svc.delete_template(tid)), 200


@approval_template_bp.route("/approval-templates/<int:tid>/activate", methods=["POST"])
def activate_template(tid):
    return jsonify(svc.set_template_active(tid, True)), 200


@approval_template_bp.route("/approval-templates/<int:tid>/deactivate", methods=["POST"])
def deactivate_template(tid):
    return jsonify(svc.set_template_active(tid, False)), 200


# ═════════════════════════════════════════════════════════════════════════
# Form fields
# ═════════════════════════════════════════════════════════════════════════


@approval_template_bp.route("/approval-templates/<int:tid>/fields", methods=["GET"])
def get_fields(tid):
    return jsonify({"fields": svc.get_fields(tid)}), 200


@approval_template_bp.route("/approval-templates/<int:tid>/fields", methods=["POST"])
def replace_fields(tid):
    """Replace the whole field list.

    Body: [ {name, label, type, ...}, ... ]  or  {"fields": [...]}
    """
    fields = svc.replace_fields(tid, _json_list("fields"))
    return jsonify({"fields": fields}), 200


# ═════════════════════════════════════════════════════════════════════════
# Approval levels
# ═════════════════════════════════════════════════════════════════════════


@approval_template_bp.route("/approval-templates/<int:tid>/levels", methods=["GET"])
def get_levels(tid):
    """Chain for the given scope (falls back to the global chain).

    Query params: project_id?, cohort_id?
    """
    return jsonify(svc.get_levels(tid, scope=_scope())), 200


@approval_template_bp.route("/approval-templates/<int:tid>/levels", methods=["POST"])
def replace_levels(tid):
    """Replace the chain of the given scope; an empty scoped list removes it.

    Body: [ {level_number?, level_name, sla_hours?, approvers: [...]}, ... ]
          or {"levels": [...]}
    Query params: project_id?, cohort_id?
    """
    scope = _scope()
    levels = svc.replace_levels(tid, _json_list("levels"), scope=scope)
    return jsonify({"scope": scope.to_dict() if scope else None, "levels": levels}), 200


@approval_template_bp.route(
    "/approval-templates/<int:tid>/levels/<int:level_number>/approvers", methods=["GET"]
)
def resolve_approvers(tid, level_number):
    """Concrete approver user ids for one level of a request.

    Query params: requester_id (required), project_id?, cohort_id?
    """
    raw = request.args.get("requester_id")
    if not raw:
        raise BadRequest("requester_id is required")
    try:
        requester_id = int(raw)
    except ValueError:
        raise BadRequest("requester_id must be an integer") from None
    result = svc.resolve_approvers(tid, level_number, requester_id, scope=_scope())
    return jsonify(result), 200
