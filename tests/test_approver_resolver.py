"""
ApproverResolver — expansion of approver sets into user ids at request time.

Uses in-memory directory fakes; the SQL collaborators are covered in
test_approval_templates_api.py.
"""

import pytest

from orgadmin.services.approver_resolver import ApproverResolver
from orgadmin.services.approver_set import ApproverSet, RequesterSupervisor, RoleApprover, UserApprover
from orgadmin.services.level_chain import ApprovalLevelDefinition
from orgadmin.services.template_errors import (
    EmptyApproverSetError,
    NoSupervisorAvailableError,
    RoleHasNoMembersError,
)


class FakeRoles:
    def __init__(self, members=None):
        self.members = members or {}
        self.calls = []

    def members_of(self, role_id):
        self.calls.append(role_id)
        return set(self.members.get(role_id, ()))


class FakeOrg:
    def __init__(self, supervisors=None):
        self.supervisors = supervisors or {}

    def first_supervisor_of(self, user_id):
        return self.supervisors.get(user_id)


def _level(*approvers, number=1):
    return ApprovalLevelDefinition(
        level_number=number, level_name=f"Level {number}", approvers=ApproverSet.of(approvers),
    )


@pytest.fixture()
def roles():
    return FakeRoles({10: {1, 2}, 11: set()})


@pytest.fixture()
def org():
    # 100 reports to 1; 1 reports to nobody
    return FakeOrg({100: 1})


class TestResolve:
    def test_user_passes_through(self, roles, org):
        result = ApproverResolver(roles, org).resolve(_level(UserApprover(7)), requester_id=100)
        assert result.user_ids == frozenset({7})
        assert not result.via_supervisor

    def test_role_expands_to_members(self, roles, org):
        result = ApproverResolver(roles, org).resolve(_level(RoleApprover(10)), requester_id=100)
        assert result.user_ids == {1, 2}

    def test_union_is_deduplicated(self, roles, org):
        level = _level(RoleApprover(10), UserApprover(2), UserApprover(3))
        result = ApproverResolver(roles, org).resolve(level, requester_id=100)
        assert result.user_ids == {1, 2, 3}
        assert result.to_dict()["user_ids"] == [1, 2, 3]

    def test_supervisor_resolved_from_org(self, roles, org):
        result = ApproverResolver(roles, org).resolve(_level(RequesterSupervisor()), requester_id=100)
        assert result.user_ids == {1}
        assert result.via_supervisor

    def test_no_supervisor_raises(self, roles, org):
        level = _level(RequesterSupervisor(), number=2)
        with pytest.raises(NoSupervisorAvailableError) as exc:
            ApproverResolver(roles, org).resolve(level, requester_id=1)
        assert exc.value.subject == 2
        assert exc.value.code == "NO_SUPERVISOR_AVAILABLE"

    def test_empty_role_is_reported_not_fatal(self, roles, org):
        result = ApproverResolver(roles, org).resolve(
            _level(RoleApprover(11), UserApprover(5)), requester_id=100,
        )
        assert result.user_ids == {5}
        assert result.empty_roles == (11,)

    def test_level_resolving_to_nobody_raises(self, roles, org):
        with pytest.raises(RoleHasNoMembersError):
            ApproverResolver(roles, org).resolve(_level(RoleApprover(11)), requester_id=100)

    def test_unstaffed_level_is_not_a_role_problem(self, roles, org):
        with pytest.raises(EmptyApproverSetError) as exc:
            ApproverResolver(roles, org).resolve(_level(number=3), requester_id=100)
        assert exc.value.code == "EMPTY_APPROVER_SET"
        assert exc.value.subject == 3
        assert roles.calls == []

    def test_role_membership_is_read_at_resolution_time(self, roles, org):
        resolver = ApproverResolver(roles, org)
        level = _level(RoleApprover(10))
        assert resolver.resolve(level, requester_id=100).user_ids == {1, 2}

        roles.members[10] = {2, 8}
        assert resolver.resolve(level, requester_id=100).user_ids == {2, 8}
        assert roles.calls == [10, 10]
