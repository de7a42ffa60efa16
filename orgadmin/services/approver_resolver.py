"""
Approver resolution — turn a level's approver set into concrete user ids.

Resolution happens when a request reaches a level, never at authoring time:

    UserApprover(user_id)   → user_id as-is
    RoleApprover(role_id)   → roles.members_of(role_id), re-queried every call
    RequesterSupervisor()   → organization.first_supervisor_of(requester_id)

No second-line fallback: a requester without a first supervisor fails with
NoSupervisorAvailableError and the caller decides what to do.  A role with
no members is reported in ``empty_roles``; only a level that ends up with no
user at all fails (RoleHasNoMembersError).  A level with no approver
entries at all fails with EmptyApproverSetError.

Usage:
    resolver = ApproverResolver(roles=SqlRoleDirectory(), organization=SqlOrgDirectory())
    result = resolver.resolve(level, requester_id=42)
    result.user_ids   # frozenset({7, 9})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from orgadmin.services.approver_set import RequesterSupervisor, RoleApprover, UserApprover
from orgadmin.services.level_chain import ApprovalLevelDefinition
from orgadmin.services.template_errors import (
    EmptyApproverSetError,
    NoSupervisorAvailableError,
    RoleHasNoMembersError,
)

logger = logging.getLogger(__name__)


class RoleMembership(Protocol):
    def members_of(self, role_id: int) -> set[int]:
        ...


class Organization(Protocol):
    def first_supervisor_of(self, user_id: int) -> int | None:
        ...


@dataclass(frozen=True)
class ResolvedApprovers:
    """Concrete decision-makers for one level of one request."""
    level_number: int
    user_ids: frozenset[int]
    empty_roles: tuple[int, ...] = field(default_factory=tuple)
    via_supervisor: bool = False

    def to_dict(self) -> dict:
        return {
            "level_number": self.level_number,
            "user_ids": sorted(self.user_ids),
            "empty_roles": list(self.empty_roles),
            "via_supervisor": self.via_supervisor,
        }


class ApproverResolver:
    """Expands approver sets using the two read-only directory collaborators."""

    def __init__(self, roles: RoleMembership, organization: Organization) -> None:
        self.roles = roles
        self.organization = organization

    def resolve(self, level: ApprovalLevelDefinition, requester_id: int) -> ResolvedApprovers:
        """Resolve ``level`` for a request raised by ``requester_id``.

        Raises:
            NoSupervisorAvailableError: supervisor level, requester has none.
            RoleHasNoMembersError: every role resolved to nobody.
            EmptyApproverSetError: the level has no approvers configured.
        """
        user_ids: set[int] = set()
        empty_roles: list[int] = []
        via_supervisor = False

        for approver in level.approvers:
            if isinstance(approver, RequesterSupervisor):
                supervisor_id = self.organization.first_supervisor_of(requester_id)
                if supervisor_id is None:
                    logger.warning(
                        "No first-line supervisor for requester=%s at level=%s",
                        requester_id, level.level_number,
                    )
                    raise NoSupervisorAvailableError(
                        f"Requester {requester_id} has no supervisor on record "
                        f"(level {level.level_number}: {level.level_name})",
                        subject=level.level_number,
                    )
                user_ids.add(supervisor_id)
                via_supervisor = True
            elif isinstance(approver, UserApprover):
                user_ids.add(approver.user_id)
            elif isinstance(approver, RoleApprover):
                members = set(self.roles.members_of(approver.role_id))
                if not members:
                    empty_roles.append(approver.role_id)
                user_ids |= members

        if not user_ids:
            if empty_roles:
                logger.warning(
                    "Level %s resolved to nobody; empty roles=%s",
                    level.level_number, empty_roles,
                )
                raise RoleHasNoMembersError(
                    f"Level {level.level_number} ({level.level_name}) has no approvers: "
                    f"role(s) {', '.join(str(r) for r in empty_roles)} have no active members",
                    subject=level.level_number,
                )
            raise EmptyApproverSetError(
                f"Level {level.level_number} ({level.level_name}) has no approvers configured",
                subject=level.level_number,
            )

        if empty_roles:
            logger.info(
                "Level %s: role(s) %s have no members; continuing with %d approver(s)",
                level.level_number, empty_roles, len(user_ids),
            )

        return ResolvedApprovers(
            level_number=level.level_number,
            user_ids=frozenset(user_ids),
            empty_roles=tuple(empty_roles),
            via_supervisor=via_supervisor,
        )
