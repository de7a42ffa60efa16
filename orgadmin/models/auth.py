"""
Directory Models — users, roles, user_roles.

These tables back the two read-only collaborators of the approval engine:
  - role membership  (roles ← user_roles → users)
  - organization     (users.first_supervisor_id / second_supervisor_id)

User and role administration screens are plain CRUD and live outside the
approval engine; the engine only reads these rows.
"""

from datetime import datetime, timezone

from orgadmin.models import db

USER_APPROVAL_STATUSES = {"PENDING", "APPROVED", "REJECTED"}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    approval_status = db.Column(db.String(20), default="PENDING", nullable=False)  # PENDING | APPROVED | REJECTED
    first_supervisor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    second_supervisor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_first_supervisor_id", "first_supervisor_id"),
    )

    # Relationships
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "approval_status": self.approval_status,
            "first_supervisor_id": self.first_supervisor_id,
            "second_supervisor_id": self.second_supervisor_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    user_roles = db.relationship(
        "UserRole", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
        }


# ═══════════════════════════════════════════════════════════════
# 3. USER_ROLES (Junction table)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    # Relationships
    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role", back_populates="user_roles")
