"""
Approver variants and ApproverSet — exclusivity, dedup, payload parsing.
"""

import pytest

from orgadmin.services.approver_set import (
    ApproverKind,
    ApproverSet,
    RequesterSupervisor,
    RoleApprover,
    UserApprover,
    parse_approver,
)
from orgadmin.services.template_errors import InvalidApproverError, MixedApproverKindsError


class TestParseApprover:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ({"type": "user", "user_id": 3}, UserApprover(3)),
            ({"type": "role", "role_id": "2"}, RoleApprover(2)),
            ({"type": "requester_supervisor"}, RequesterSupervisor()),
            ({"user_id": 7}, UserApprover(7)),
            ({"user_role_id": 4}, RoleApprover(4)),
            ({"is_requester_supervisor": True}, RequesterSupervisor()),
            ({"user_id": None, "role_id": 5, "is_requester_supervisor": False}, RoleApprover(5)),
            ({"role_id": 5, "is_requester_supervisor": "false"}, RoleApprover(5)),
            ({"is_requester_supervisor": "true"}, RequesterSupervisor()),
            ({"user_id": 2, "is_requester_supervisor": None}, UserApprover(2)),
        ],
    )
    def test_accepted_shapes(self, raw, expected):
        assert parse_approver(raw) == expected

    def test_more_than_one_kind_is_mixed(self):
        with pytest.raises(MixedApproverKindsError):
            parse_approver({"user_id": 1, "role_id": 2})
        with pytest.raises(MixedApproverKindsError):
            parse_approver({"role_id": 2, "is_requester_supervisor": True})

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"type": "user"},
            {"type": "robot", "user_id": 1},
            {"user_id": "abc"},
            {"user_id": True},
            {"is_requester_supervisor": "maybe"},
            "user:1",
        ],
    )
    def test_invalid_payloads(self, raw):
        with pytest.raises(InvalidApproverError):
            parse_approver(raw)

    def test_user_and_role_with_same_id_are_distinct(self):
        assert UserApprover(1) != RoleApprover(1)
        assert UserApprover(1).kind is ApproverKind.USER


class TestApproverSet:
    def test_add_is_idempotent(self):
        s = ApproverSet.empty().add(UserApprover(1))
        assert s.add(UserApprover(1)) == s
        assert s.add({"type": "user", "user_id": 1}) == s
        assert len(s) == 1

    def test_add_preserves_insertion_order(self):
        s = ApproverSet.empty().add(RoleApprover(2)).add(UserApprover(9)).add(UserApprover(1))
        assert s.entries == (RoleApprover(2), UserApprover(9), UserApprover(1))
        assert s.user_ids == [9, 1]
        assert s.role_ids == [2]

    def test_adding_supervisor_replaces_named_entries(self):
        s = ApproverSet.empty().add(UserApprover(1)).add(RoleApprover(2))
        s = s.add(RequesterSupervisor())
        assert s.entries == (RequesterSupervisor(),)
        assert s.has_supervisor

    def test_adding_named_entry_drops_supervisor(self):
        s = ApproverSet.supervisor().add(UserApprover(4))
        assert s.entries == (UserApprover(4),)
        assert not s.has_supervisor

    def test_supervisor_only_once(self):
        s = ApproverSet.supervisor().add(RequesterSupervisor()).toggle_supervisor(True)
        assert len(s) == 1

    def test_toggle_supervisor_off(self):
        assert ApproverSet.supervisor().toggle_supervisor(False).is_empty()

    def test_toggle_off_keeps_named_entries(self):
        s = ApproverSet.of([UserApprover(1)])
        assert s.toggle_supervisor(False) is s

    def test_remove_by_value_and_predicate(self):
        s = ApproverSet.of([UserApprover(1), UserApprover(2), RoleApprover(3)])
        assert s.remove(UserApprover(2)).entries == (UserApprover(1), RoleApprover(3))
        only_users = s.remove(lambda a: isinstance(a, RoleApprover))
        assert only_users.entries == (UserApprover(1), UserApprover(2))

    def test_remove_missing_entry_is_noop(self):
        s = ApproverSet.of([UserApprover(1)])
        assert s.remove(UserApprover(99)) is s

    def test_of_collapses_duplicates(self):
        s = ApproverSet.of([{"user_id": 1}, {"type": "user", "user_id": 1}, {"role_id": 1}])
        assert s.entries == (UserApprover(1), RoleApprover(1))

    def test_of_rejects_supervisor_with_named(self):
        with pytest.raises(MixedApproverKindsError):
            ApproverSet.of([{"type": "requester_supervisor"}, {"user_id": 1}])

    def test_sets_are_immutable_values(self):
        base = ApproverSet.empty()
        grown = base.add(UserApprover(1))
        assert base.is_empty()
        assert grown != base
        assert hash(ApproverSet.of([UserApprover(1)])) == hash(grown)

    def test_to_list(self):
        assert ApproverSet.of([UserApprover(1), RoleApprover(2)]).to_list() == [
            {"type": "user", "user_id": 1},
            {"type": "role", "role_id": 2},
        ]
        assert ApproverSet.supervisor().to_list() == [{"type": "requester_supervisor"}]
