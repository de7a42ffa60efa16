"""
SQLAlchemy storage for TemplateDefinition aggregates.

Maps the in-memory aggregate to approval_templates + child tables and back.
``save`` rewrites all child rows of the template (fields, every chain and
their approvers) — the aggregate is always persisted as a whole.

The store only flushes; committing is the service layer's job.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import func, select

from orgadmin.core.exceptions import NotFoundError
from orgadmin.models import db
from orgadmin.models.approval import (
    IN_FLIGHT_REQUEST_STATUSES,
    ApprovalFormField,
    ApprovalLevel,
    ApprovalLevelApprover,
    ApprovalRequest,
    ApprovalTemplate,
)
from orgadmin.services.approver_set import (
    ApproverSet,
    RequesterSupervisor,
    RoleApprover,
    UserApprover,
)
from orgadmin.services.field_schema import FieldDefinition, FieldType
from orgadmin.services.level_chain import ApprovalLevelDefinition
from orgadmin.services.template_definition import LevelScope, TemplateDefinition

logger = logging.getLogger(__name__)


class TemplateStore(Protocol):
    """Persistence the template service needs; SqlTemplateStore implements it."""

    def load(self, template_id: int) -> TemplateDefinition:
        ...

    def save(self, definition: TemplateDefinition) -> TemplateDefinition:
        ...

    def exists_by_internal_name(self, name: str) -> bool:
        ...

    def list(self, active_only: bool = False) -> list[TemplateDefinition]:
        ...

    def count_requests(self, template_id: int, in_flight_only: bool = False) -> int:
        ...

    def has_in_flight_requests(self, template_id: int) -> bool:
        ...

    def delete(self, template_id: int) -> None:
        ...


# ── Row → aggregate ──────────────────────────────────────────────────────────

def _field_from_row(row: ApprovalFormField) -> FieldDefinition:
    return FieldDefinition(
        name=row.field_name,
        label=row.field_label,
        type=FieldType(row.field_type),
        placeholder=row.placeholder,
        help_text=row.help_text,
        default_value=row.default_value,
        validation_rule=row.validation,
        is_required=bool(row.is_required),
        options=tuple(row.options or ()),
        sort_order=row.sort_order,
        depends_on_field=row.depends_on_field,
        depends_on_value=row.depends_on_value,
        is_active=row.is_active is not False,
    )


def _approver_from_row(row: ApprovalLevelApprover):
    if row.is_requester_supervisor:
        return RequesterSupervisor()
    if row.role_id is not None:
        return RoleApprover(row.role_id)
    return UserApprover(row.user_id)


def _level_from_row(row: ApprovalLevel) -> ApprovalLevelDefinition:
    return ApprovalLevelDefinition(
        level_number=row.level_number,
        level_name=row.level_name,
        approvers=ApproverSet(tuple(_approver_from_row(a) for a in row.approvers)),
        sla_hours=row.sla_hours,
        escalate_after_hours=row.escalate_after_hours,
        escalate_to_user_id=row.escalate_to_user_id,
    )


def definition_from_row(row: ApprovalTemplate) -> TemplateDefinition:
    levels: list[ApprovalLevelDefinition] = []
    scoped: dict[LevelScope, list[ApprovalLevelDefinition]] = {}
    for level_row in sorted(row.levels, key=lambda lv: lv.level_number):
        if level_row.is_active is False:
            continue
        scope = LevelScope.of(level_row.project_id, level_row.cohort_id)
        if scope is None:
            levels.append(_level_from_row(level_row))
        else:
            scoped.setdefault(scope, []).append(_level_from_row(level_row))

    return TemplateDefinition(
        id=row.id,
        internal_name=row.name,
        display_name=row.display_name,
        description=row.description,
        icon=row.icon,
        color=row.color,
        default_sla_hours=row.default_sla_hours,
        is_active=bool(row.is_active),
        fields=[_field_from_row(f) for f in sorted(row.form_fields, key=lambda f: f.sort_order)],
        levels=levels,
        scoped_levels=scoped,
        created_by=row.created_by,
    )


# ── Aggregate → rows ─────────────────────────────────────────────────────────

def _field_row(f: FieldDefinition) -> ApprovalFormField:
    return ApprovalFormField(
        field_name=f.name,
        field_label=f.label,
        field_type=f.type.value,
        placeholder=f.placeholder,
        help_text=f.help_text,
        is_required=f.is_required,
        options=list(f.options),
        validation=f.validation_rule,
        default_value=f.default_value,
        sort_order=f.sort_order,
        depends_on_field=f.depends_on_field,
        depends_on_value=f.depends_on_value,
        is_active=f.is_active,
    )


def _approver_row(approver, sort_order: int) -> ApprovalLevelApprover:
    return ApprovalLevelApprover(
        user_id=approver.user_id if isinstance(approver, UserApprover) else None,
        role_id=approver.role_id if isinstance(approver, RoleApprover) else None,
        is_requester_supervisor=isinstance(approver, RequesterSupervisor),
        sort_order=sort_order,
    )


def _level_rows(chain: list[ApprovalLevelDefinition], scope: LevelScope | None) -> list[ApprovalLevel]:
    rows = []
    for lvl in chain:
        rows.append(ApprovalLevel(
            level_number=lvl.level_number,
            level_name=lvl.level_name,
            project_id=scope.project_id if scope else None,
            cohort_id=scope.cohort_id if scope else None,
            sla_hours=lvl.sla_hours,
            escalate_after_hours=lvl.escalate_after_hours,
            escalate_to_user_id=lvl.escalate_to_user_id,
            approvers=[_approver_row(a, i) for i, a in enumerate(lvl.approvers)],
        ))
    return rows


class SqlTemplateStore:
    """Storage collaborator over the current ``db.session``."""

    def _row(self, template_id: int) -> ApprovalTemplate:
        row = db.session.get(ApprovalTemplate, template_id)
        if row is None:
            raise NotFoundError(resource="ApprovalTemplate", resource_id=template_id)
        return row

    def load(self, template_id: int) -> TemplateDefinition:
        return definition_from_row(self._row(template_id))

    def list(self, active_only: bool = False) -> list[TemplateDefinition]:
        q = ApprovalTemplate.query
        if active_only:
            q = q.filter_by(is_active=True)
        return [definition_from_row(row) for row in q.order_by(ApprovalTemplate.name).all()]

    def exists_by_internal_name(self, name: str) -> bool:
        stmt = select(ApprovalTemplate.id).where(ApprovalTemplate.name == name)
        return db.session.execute(stmt).first() is not None

    def count_requests(self, template_id: int, in_flight_only: bool = False) -> int:
        stmt = select(func.count(ApprovalRequest.id)).where(ApprovalRequest.template_id == template_id)
        if in_flight_only:
            stmt = stmt.where(ApprovalRequest.status.in_(sorted(IN_FLIGHT_REQUEST_STATUSES)))
        return db.session.execute(stmt).scalar_one()

    def has_in_flight_requests(self, template_id: int) -> bool:
        return self.count_requests(template_id, in_flight_only=True) > 0

    def save(self, definition: TemplateDefinition) -> TemplateDefinition:
        """Persist the whole aggregate; assigns ``definition.id`` on first save."""
        if definition.id is None:
            row = ApprovalTemplate(name=definition.internal_name, created_by=definition.created_by or "system")
            db.session.add(row)
        else:
            row = self._row(definition.id)
            if row.name != definition.internal_name:
                # internal names are immutable; the aggregate guards this too
                raise ValueError(
                    f"Template id={definition.id} is {row.name!r}, not {definition.internal_name!r}"
                )

        row.display_name = definition.display_name
        row.description = definition.description
        row.icon = definition.icon
        row.color = definition.color
        row.default_sla_hours = definition.default_sla_hours
        row.is_active = definition.is_active

        # Old children must be gone before new ones hit the unique constraints.
        row.form_fields.clear()
        row.levels.clear()
        db.session.flush()

        row.form_fields = [_field_row(f) for f in definition.fields]
        level_rows = _level_rows(definition.levels, None)
        for scope, chain in definition.scoped_levels.items():
            level_rows.extend(_level_rows(chain, scope))
        row.levels = level_rows
        db.session.flush()

        definition.id = row.id
        logger.debug(
            "Saved template id=%s fields=%d levels=%d scoped_chains=%d",
            row.id, len(definition.fields), len(definition.levels), len(definition.scoped_levels),
        )
        return definition

    def delete(self, template_id: int) -> None:
        db.session.delete(self._row(template_id))
        db.session.flush()
