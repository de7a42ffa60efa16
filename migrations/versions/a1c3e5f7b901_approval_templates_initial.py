"""approval templates: users, roles, templates, fields, levels, approvers, requests

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def upgrade():
    bind = op.get_bind()
    existing = _table_names(bind)

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(200), nullable=False, unique=True),
            sa.Column("full_name", sa.String(200)),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("approval_status", sa.String(20), nullable=False, server_default="PENDING"),
            sa.Column("first_supervisor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
            sa.Column("second_supervisor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index("ix_users_first_supervisor_id", "users", ["first_supervisor_id"])

    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(100), nullable=False, unique=True),
            sa.Column("display_name", sa.String(200)),
            sa.Column("description", sa.Text()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("users.id")),
            sa.Column("assigned_at", sa.DateTime(), server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
        )

    if "approval_templates" not in existing:
        op.create_table(
            "approval_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(100), nullable=False, unique=True),
            sa.Column("display_name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text()),
            sa.Column("icon", sa.String(50)),
            sa.Column("color", sa.String(20)),
            sa.Column("default_sla_hours", sa.Integer(), nullable=False, server_default="24"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_by", sa.String(200), server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("default_sla_hours > 0", name="ck_approval_templates_sla_positive"),
        )

    if "approval_form_fields" not in existing:
        op.create_table(
            "approval_form_fields",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("template_id", sa.Integer(), sa.ForeignKey("approval_templates.id", ondelete="CASCADE"), nullable=False),
            sa.Column("field_name", sa.String(100), nullable=False),
            sa.Column("field_label", sa.String(200), nullable=False),
            sa.Column("field_type", sa.String(20), nullable=False, server_default="text"),
            sa.Column("placeholder", sa.String(500)),
            sa.Column("help_text", sa.Text()),
            sa.Column("is_required", sa.Boolean(), server_default=sa.text("false")),
            sa.Column("options", sa.JSON()),
            sa.Column("validation", sa.String(500)),
            sa.Column("default_value", sa.String(500)),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("depends_on_field", sa.String(100)),
            sa.Column("depends_on_value", sa.String(500)),
            sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
            sa.UniqueConstraint("template_id", "field_name", name="uq_approval_form_field_name"),
        )
        op.create_index(
            "ix_approval_form_fields_template_sort", "approval_form_fields", ["template_id", "sort_order"]
        )

    if "approval_levels" not in existing:
        op.create_table(
            "approval_levels",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("template_id", sa.Integer(), sa.ForeignKey("approval_templates.id", ondelete="CASCADE"), nullable=False),
            sa.Column("level_number", sa.Integer(), nullable=False),
            sa.Column("level_name", sa.String(200), nullable=False),
            sa.Column("project_id", sa.Integer()),
            sa.Column("cohort_id", sa.Integer()),
            sa.Column("sla_hours", sa.Integer()),
            sa.Column("escalate_after_hours", sa.Integer()),
            sa.Column("escalate_to_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
            sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
            sa.CheckConstraint("level_number >= 1", name="ck_approval_levels_number_positive"),
        )
        op.create_index(
            "ix_approval_levels_template_scope", "approval_levels", ["template_id", "project_id", "cohort_id"]
        )

    if "approval_level_approvers" not in existing:
        op.create_table(
            "approval_level_approvers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("level_id", sa.Integer(), sa.ForeignKey("approval_levels.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE")),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE")),
            sa.Column("is_requester_supervisor", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.CheckConstraint(
                "(CASE WHEN user_id IS NOT NULL THEN 1 ELSE 0 END)"
                " + (CASE WHEN role_id IS NOT NULL THEN 1 ELSE 0 END)"
                " + (CASE WHEN is_requester_supervisor THEN 1 ELSE 0 END) = 1",
                name="ck_approval_level_approvers_one_kind",
            ),
        )

    if "approval_requests" not in existing:
        op.create_table(
            "approval_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("template_id", sa.Integer(), sa.ForeignKey("approval_templates.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("requester_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("project_id", sa.Integer()),
            sa.Column("cohort_id", sa.Integer()),
            sa.Column("form_data", sa.JSON()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(
            "ix_approval_requests_template_status", "approval_requests", ["template_id", "status"]
        )


def downgrade():
    op.drop_index("ix_approval_requests_template_status", table_name="approval_requests")
    op.drop_table("approval_requests")
    op.drop_table("approval_level_approvers")
    op.drop_index("ix_approval_levels_template_scope", table_name="approval_levels")
    op.drop_table("approval_levels")
    op.drop_index("ix_approval_form_fields_template_sort", table_name="approval_form_fields")
    op.drop_table("approval_form_fields")
    op.drop_table("approval_templates")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_index("ix_users_first_supervisor_id", table_name="users")
    op.drop_table("users")
