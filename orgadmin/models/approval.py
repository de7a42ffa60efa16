"""Approval template models — templates, form fields, levels, level approvers.

A template row is the persisted form of a ``TemplateDefinition`` aggregate
(see ``orgadmin.services.template_definition``).  Child rows are always
rewritten as a whole by ``SqlTemplateStore.save``; nothing edits them in place.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from orgadmin.models import db


REQUEST_STATUSES = {"pending", "in_progress", "approved", "rejected", "cancelled"}
IN_FLIGHT_REQUEST_STATUSES = {"pending", "in_progress"}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Template ─────────────────────────────────────────────────────

class ApprovalTemplate(db.Model):
    """An application type: form schema + approval chain(s)."""

    __tablename__ = "approval_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)  # internal_name, immutable
    display_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(50), nullable=True)
    color = Column(String(20), nullable=True)
    default_sla_hours = Column(Integer, nullable=False, default=24)
    is_active = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(200), default="system")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    form_fields = relationship(
        "ApprovalFormField",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ApprovalFormField.sort_order",
    )
    levels = relationship(
        "ApprovalLevel",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ApprovalLevel.level_number",
    )
    requests = relationship("ApprovalRequest", back_populates="template", lazy="dynamic")

    __table_args__ = (
        CheckConstraint("default_sla_hours > 0", name="ck_approval_templates_sla_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "default_sla_hours": self.default_sla_hours,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ── Form field ───────────────────────────────────────────────────

class ApprovalFormField(db.Model):
    """One input on the request form of a template."""

    __tablename__ = "approval_form_fields"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer, ForeignKey("approval_templates.id", ondelete="CASCADE"), nullable=False
    )
    field_name = Column(String(100), nullable=False)
    field_label = Column(String(200), nullable=False)
    field_type = Column(String(20), nullable=False, default="text")
    placeholder = Column(String(500), nullable=True)
    help_text = Column(Text, nullable=True)
    is_required = Column(Boolean, default=False)
    options = Column(JSON, default=list)
    validation = Column(String(500), nullable=True)
    default_value = Column(String(500), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    depends_on_field = Column(String(100), nullable=True)
    depends_on_value = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)

    template = relationship("ApprovalTemplate", back_populates="form_fields")

    __table_args__ = (
        UniqueConstraint("template_id", "field_name", name="uq_approval_form_field_name"),
        Index("ix_approval_form_fields_template_sort", "template_id", "sort_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.field_name,
            "label": self.field_label,
            "type": self.field_type,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
            "is_required": self.is_required,
            "options": self.options or [],
            "validation_rule": self.validation,
            "default_value": self.default_value,
            "sort_order": self.sort_order,
            "depends_on_field": self.depends_on_field,
            "depends_on_value": self.depends_on_value,
            "is_active": self.is_active,
        }


# ── Level ────────────────────────────────────────────────────────

class ApprovalLevel(db.Model):
    """One stage of a template's approval chain.

    ``project_id`` / ``cohort_id`` both NULL → global chain; otherwise the
    level belongs to the chain that overrides the global one for that scope.
    """

    __tablename__ = "approval_levels"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer, ForeignKey("approval_templates.id", ondelete="CASCADE"), nullable=False
    )
    level_number = Column(Integer, nullable=False)
    level_name = Column(String(200), nullable=False)
    project_id = Column(Integer, nullable=True)
    cohort_id = Column(Integer, nullable=True)
    sla_hours = Column(Integer, nullable=True)
    escalate_after_hours = Column(Integer, nullable=True)
    escalate_to_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_active = Column(Boolean, default=True)

    template = relationship("ApprovalTemplate", back_populates="levels")
    approvers = relationship(
        "ApprovalLevelApprover",
        back_populates="level",
        cascade="all, delete-orphan",
        order_by="ApprovalLevelApprover.sort_order",
    )

    __table_args__ = (
        Index("ix_approval_levels_template_scope", "template_id", "project_id", "cohort_id"),
        CheckConstraint("level_number >= 1", name="ck_approval_levels_number_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "level_number": self.level_number,
            "level_name": self.level_name,
            "project_id": self.project_id,
            "cohort_id": self.cohort_id,
            "sla_hours": self.sla_hours,
            "escalate_after_hours": self.escalate_after_hours,
            "escalate_to_user_id": self.escalate_to_user_id,
            "approvers": [a.to_dict() for a in self.approvers],
        }


# ── Level approver ───────────────────────────────────────────────

class ApprovalLevelApprover(db.Model):
    """One approver entry; exactly one of user_id / role_id / supervisor flag is set."""

    __tablename__ = "approval_level_approvers"

    id = Column(Integer, primary_key=True)
    level_id = Column(
        Integer, ForeignKey("approval_levels.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=True)
    is_requester_supervisor = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    level = relationship("ApprovalLevel", back_populates="approvers")

    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN user_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN role_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_requester_supervisor THEN 1 ELSE 0 END) = 1",
            name="ck_approval_level_approvers_one_kind",
        ),
    )

    def to_dict(self):
        if self.is_requester_supervisor:
            kind = "requester_supervisor"
        elif self.role_id is not None:
            kind = "role"
        else:
            kind = "user"
        return {
            "type": kind,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "is_requester_supervisor": self.is_requester_supervisor,
        }


# ── Request (reference row) ──────────────────────────────────────

class ApprovalRequest(db.Model):
    """A request raised against a template.

    Rows are created and advanced by the request runtime; the template engine
    only reads them to decide whether a template is in use.
    """

    __tablename__ = "approval_requests"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer, ForeignKey("approval_templates.id", ondelete="RESTRICT"), nullable=False
    )
    requester_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # see REQUEST_STATUSES
    current_level = Column(Integer, nullable=False, default=1)
    project_id = Column(Integer, nullable=True)
    cohort_id = Column(Integer, nullable=True)
    form_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    template = relationship("ApprovalTemplate", back_populates="requests")

    __table_args__ = (
        Index("ix_approval_requests_template_status", "template_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "requester_id": self.requester_id,
            "status": self.status,
            "current_level": self.current_level,
            "project_id": self.project_id,
            "cohort_id": self.cohort_id,
            "form_data": self.form_data or {},
            "created_at": _iso(self.created_at),
        }
