"""
SQL-backed directory collaborators for approver resolution.

    SqlRoleDirectory.members_of(role_id)        users holding the role that can approve
    SqlOrgDirectory.first_supervisor_of(user_id)  users.first_supervisor_id

Both are read-only and uncached: every call hits the current session, so
role changes made after a template was authored are picked up immediately.
"""

import logging

from sqlalchemy import select

from orgadmin.models import db
from orgadmin.models.auth import User, UserRole

logger = logging.getLogger(__name__)


class SqlRoleDirectory:
    """Role membership from the user_roles junction."""

    def members_of(self, role_id: int) -> set[int]:
        stmt = (
            select(User.id)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                UserRole.role_id == role_id,
                User.is_active.is_(True),
                User.approval_status == "APPROVED",
            )
        )
        members = set(db.session.execute(stmt).scalars().all())
        logger.debug("Role %s has %d approving member(s)", role_id, len(members))
        return members


class SqlOrgDirectory:
    """Reporting lines from users.first_supervisor_id."""

    def first_supervisor_of(self, user_id: int) -> int | None:
        user = db.session.get(User, user_id)
        if user is None:
            logger.debug("first_supervisor_of: user %s not found", user_id)
            return None
        return user.first_supervisor_id
