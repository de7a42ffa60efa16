"""
Approver variants and the per-level approver set.

An approver is exactly one of:
    UserApprover(user_id)     a named person
    RoleApprover(role_id)     whoever holds the role when the request is raised
    RequesterSupervisor()     the requester's first-line supervisor

An ApproverSet holds either a single RequesterSupervisor or one-or-more named
(User/Role) entries, never both, never the same user/role twice.  Sets are
immutable; every mutation returns a new set.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Union

from orgadmin.services.field_schema import parse_flag
from orgadmin.services.template_errors import (
    InvalidApproverError,
    MixedApproverKindsError,
)


class ApproverKind(str, Enum):
    USER = "user"
    ROLE = "role"
    REQUESTER_SUPERVISOR = "requester_supervisor"


@dataclass(frozen=True)
class UserApprover:
    user_id: int
    kind = ApproverKind.USER

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "user_id": self.user_id}


@dataclass(frozen=True)
class RoleApprover:
    role_id: int
    kind = ApproverKind.ROLE

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "role_id": self.role_id}


@dataclass(frozen=True)
class RequesterSupervisor:
    kind = ApproverKind.REQUESTER_SUPERVISOR

    def to_dict(self) -> dict:
        return {"type": self.kind.value}


Approver = Union[UserApprover, RoleApprover, RequesterSupervisor]
NamedApprover = Union[UserApprover, RoleApprover]


def _as_id(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise InvalidApproverError(f"{what} must be an integer id, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidApproverError(f"{what} must be an integer id, got {value!r}") from exc


def parse_approver(raw: Any) -> Approver:
    """Build an approver from an API payload.

    Accepted shapes:
        {"type": "user", "user_id": 3}
        {"type": "role", "role_id": 2}
        {"type": "requester_supervisor"}
        {"user_id"?, "role_id"?, "is_requester_supervisor"?}   (exactly one set)

    Raises:
        MixedApproverKindsError: the payload names more than one kind.
        InvalidApproverError: the payload names no kind or a bad id.
    """
    if isinstance(raw, (UserApprover, RoleApprover, RequesterSupervisor)):
        return raw
    if not isinstance(raw, dict):
        raise InvalidApproverError(f"Approver must be an object, got {type(raw).__name__}")

    user_id = raw.get("user_id")
    role_id = raw.get("role_id", raw.get("user_role_id"))
    flag = raw.get("is_requester_supervisor")
    try:
        supervisor = False if flag is None else parse_flag(flag)
    except ValueError as exc:
        raise InvalidApproverError(f"is_requester_supervisor: {exc}") from exc

    declared = raw.get("type")
    if declared is not None:
        try:
            kind = ApproverKind(str(declared).strip().lower())
        except ValueError as exc:
            raise InvalidApproverError(f"Unknown approver type {declared!r}") from exc
        supervisor = supervisor or kind is ApproverKind.REQUESTER_SUPERVISOR
        if kind is ApproverKind.USER and user_id is None:
            raise InvalidApproverError("User approver needs user_id")
        if kind is ApproverKind.ROLE and role_id is None:
            raise InvalidApproverError("Role approver needs role_id")

    present = [k for k, v in (("user", user_id), ("role", role_id)) if v is not None]
    if supervisor:
        present.append("requester_supervisor")

    if len(present) > 1:
        raise MixedApproverKindsError(
            f"An approver entry must have exactly one kind, got {', '.join(present)}"
        )
    if not present:
        raise InvalidApproverError("Approver entry names no user, role or supervisor")

    if supervisor:
        return RequesterSupervisor()
    if user_id is not None:
        return UserApprover(_as_id(user_id, "user_id"))
    return RoleApprover(_as_id(role_id, "role_id"))


class ApproverSet:
    """Immutable, deduplicated approver collection for one level."""

    __slots__ = ("_entries",)

    def __init__(self, entries: tuple[Approver, ...] = ()) -> None:
        self._entries = tuple(entries)

    # ── construction ─────────────────────────────────────────────────────

    @classmethod
    def empty(cls) -> "ApproverSet":
        return cls(())

    @classmethod
    def supervisor(cls) -> "ApproverSet":
        return cls((RequesterSupervisor(),))

    @classmethod
    def of(cls, entries: Iterable[Any]) -> "ApproverSet":
        """Build from a complete list (parsed or raw).

        Duplicates collapse; mixing the supervisor with named approvers
        raises MixedApproverKindsError.
        """
        parsed: list[Approver] = []
        for raw in entries or ():
            approver = parse_approver(raw)
            if approver not in parsed:
                parsed.append(approver)

        has_supervisor = any(isinstance(a, RequesterSupervisor) for a in parsed)
        if has_supervisor and len(parsed) > 1:
            raise MixedApproverKindsError(
                "A level cannot combine the requester's supervisor with named approvers"
            )
        return cls(tuple(parsed))

    # ── queries ──────────────────────────────────────────────────────────

    @property
    def entries(self) -> tuple[Approver, ...]:
        return self._entries

    @property
    def has_supervisor(self) -> bool:
        return any(isinstance(a, RequesterSupervisor) for a in self._entries)

    @property
    def user_ids(self) -> list[int]:
        return [a.user_id for a in self._entries if isinstance(a, UserApprover)]

    @property
    def role_ids(self) -> list[int]:
        return [a.role_id for a in self._entries if isinstance(a, RoleApprover)]

    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, item) -> bool:
        return item in self._entries

    def __eq__(self, other) -> bool:
        if not isinstance(other, ApproverSet):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"ApproverSet({list(self._entries)!r})"

    # ── mutations (return new sets) ──────────────────────────────────────

    def add(self, approver: Any) -> "ApproverSet":
        """Add one approver.

        The supervisor entry and named entries are mutually exclusive: adding
        one kind drops the other.  Adding an entry already present is a no-op.
        """
        approver = parse_approver(approver)
        if isinstance(approver, RequesterSupervisor):
            return self.toggle_supervisor(True)
        if approver in self._entries:
            return self
        named = tuple(a for a in self._entries if not isinstance(a, RequesterSupervisor))
        return ApproverSet(named + (approver,))

    def remove(self, target: Approver | Callable[[Approver], bool]) -> "ApproverSet":
        """Drop the entry equal to ``target`` (or every entry matching a predicate)."""
        if callable(target):
            kept = tuple(a for a in self._entries if not target(a))
        else:
            kept = tuple(a for a in self._entries if a != target)
        if kept == self._entries:
            return self
        return ApproverSet(kept)

    def toggle_supervisor(self, on: bool) -> "ApproverSet":
        """Switch the level to supervisor-only, or drop the supervisor entry."""
        if on:
            return ApproverSet.supervisor()
        return self.remove(lambda a: isinstance(a, RequesterSupervisor))

    def to_list(self) -> list[dict]:
        return [a.to_dict() for a in self._entries]
