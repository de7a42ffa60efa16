"""
Approval level chain — parsing, renumbering and validation.

A chain is an ordered list of ``ApprovalLevelDefinition`` whose level numbers
are exactly 1..N in list order.  Insert/remove always renumber, so a chain
built only through these helpers can never have gaps.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from orgadmin.services.approver_set import ApproverSet
from orgadmin.services.template_errors import (
    ApproverError,
    DuplicateLevelNumberError,
    EmptyApproverSetError,
    EmptyLevelChainError,
    EmptyLevelNameError,
    InvalidApproverError,
    LevelError,
    NonContiguousLevelNumbersError,
    NonPositiveSlaError,
    TemplateError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalLevelDefinition:
    """One stage of an approval chain."""
    level_number: int
    level_name: str
    approvers: ApproverSet = field(default_factory=ApproverSet.empty)
    sla_hours: int | None = None
    escalate_after_hours: int | None = None
    escalate_to_user_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "level_number": self.level_number,
            "level_name": self.level_name,
            "sla_hours": self.sla_hours,
            "escalate_after_hours": self.escalate_after_hours,
            "escalate_to_user_id": self.escalate_to_user_id,
            "approvers": self.approvers.to_list(),
        }


# ── Parsing ──────────────────────────────────────────────────────────────────

def positive_int_or_none(value: Any, label: str, subject: Any = None) -> int | None:
    """Coerce an optional hour count; None/"" mean "not set".

    Raises:
        NonPositiveSlaError: value is not an integer > 0.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise NonPositiveSlaError(f"{label} must be a positive integer, got {value!r}", subject=subject)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise NonPositiveSlaError(f"{label} must be a positive integer, got {value!r}", subject=subject) from None
    if number != value and not isinstance(value, str):
        # 2.5 hours is not an hour count
        raise NonPositiveSlaError(f"{label} must be a whole number of hours, got {value!r}", subject=subject)
    if number <= 0:
        raise NonPositiveSlaError(f"{label} must be > 0, got {number}", subject=subject)
    return number


def _parse_level(raw: Any, position: int) -> tuple[ApprovalLevelDefinition | None, list[TemplateError]]:
    if isinstance(raw, ApprovalLevelDefinition):
        return raw, []
    if not isinstance(raw, dict):
        return None, [EmptyLevelNameError(
            f"Level at position {position + 1} must be an object", subject=position + 1,
        )]

    errors: list[TemplateError] = []
    number_raw = raw.get("level_number")
    try:
        number = int(number_raw) if number_raw is not None else position + 1
    except (TypeError, ValueError):
        errors.append(NonContiguousLevelNumbersError(
            f"level_number {number_raw!r} is not an integer", subject=position + 1,
        ))
        number = position + 1

    name = str(raw.get("level_name") or "").strip()
    if not name:
        errors.append(EmptyLevelNameError(f"Level {number} has no name", subject=number))

    hours: dict[str, int | None] = {}
    for key in ("sla_hours", "escalate_after_hours"):
        try:
            hours[key] = positive_int_or_none(raw.get(key), f"Level {number} {key}", subject=number)
        except NonPositiveSlaError as exc:
            errors.append(exc)
            hours[key] = None

    escalate_to = raw.get("escalate_to_user_id")
    if escalate_to not in (None, ""):
        try:
            escalate_to = int(escalate_to)
        except (TypeError, ValueError):
            errors.append(LevelError(
                f"Level {number} escalate_to_user_id must be an integer id", subject=number,
            ))
            escalate_to = None
    else:
        escalate_to = None

    approvers_raw = raw.get("approvers")
    if approvers_raw is None:
        approvers = ApproverSet.empty()
    elif isinstance(approvers_raw, ApproverSet):
        approvers = approvers_raw
    elif not isinstance(approvers_raw, (list, tuple)):
        errors.append(InvalidApproverError(
            f"Level {number}: approvers must be a list, got {type(approvers_raw).__name__}",
            subject=number,
        ))
        approvers = ApproverSet.empty()
    else:
        try:
            approvers = ApproverSet.of(approvers_raw)
        except ApproverError as exc:
            errors.append(type(exc)(f"Level {number}: {exc}", subject=number))
            approvers = ApproverSet.empty()

    if errors:
        return None, errors
    return ApprovalLevelDefinition(
        level_number=number,
        level_name=name,
        approvers=approvers,
        sla_hours=hours["sla_hours"],
        escalate_after_hours=hours["escalate_after_hours"],
        escalate_to_user_id=escalate_to,
    ), []


def parse_level(raw: Any, position: int = 0) -> ApprovalLevelDefinition:
    """Parse one level payload; raises the first violation."""
    level, errors = _parse_level(raw, position)
    if errors:
        raise errors[0]
    return level


def check_level_list(raw_levels: Iterable[Any]) -> tuple[list[ApprovalLevelDefinition], list[TemplateError]]:
    """Parse a submitted chain, ordering it by level number.

    Entries without a level_number take their 1-based position.  The result
    is ordered by number; numbers must then be exactly 1..N.
    """
    if not isinstance(raw_levels, (list, tuple)):
        return [], [LevelError(
            f"Levels must be a list, got {type(raw_levels).__name__}", subject="levels",
        )]

    levels: list[ApprovalLevelDefinition] = []
    errors: list[TemplateError] = []
    for position, raw in enumerate(raw_levels):
        level, level_errors = _parse_level(raw, position)
        errors.extend(level_errors)
        if level is not None:
            levels.append(level)

    levels.sort(key=lambda lvl: lvl.level_number)
    errors.extend(_numbering_errors([lvl.level_number for lvl in levels]))
    return levels, errors


# ── Numbering ────────────────────────────────────────────────────────────────

def _numbering_errors(numbers: list[int]) -> list[LevelError]:
    errors: list[LevelError] = []
    counts = Counter(numbers)
    for number, count in sorted(counts.items()):
        if count > 1:
            errors.append(DuplicateLevelNumberError(
                f"Level number {number} is used {count} times", subject=number,
            ))
    if list(dict.fromkeys(numbers)) != list(range(1, len(counts) + 1)):
        errors.append(NonContiguousLevelNumbersError(
            f"Level numbers must run 1..N in order without gaps, got {numbers}",
        ))
    return errors


def renumber_levels(levels: Iterable[ApprovalLevelDefinition]) -> list[ApprovalLevelDefinition]:
    """Rewrite level numbers to 1..N following list order."""
    return [
        lvl if lvl.level_number == i else replace(lvl, level_number=i)
        for i, lvl in enumerate(levels, 1)
    ]


def insert_level(
    levels: list[ApprovalLevelDefinition],
    new_level: Any,
    at_end: bool = True,
    position: int | None = None,
) -> list[ApprovalLevelDefinition]:
    """Return a new chain with ``new_level`` appended (default) or inserted at ``position``."""
    chain = list(levels)
    level = parse_level(new_level, len(chain))
    if at_end or position is None:
        chain.append(level)
    else:
        chain.insert(max(0, min(position, len(chain))), level)
    return renumber_levels(chain)


def remove_level_at(levels: list[ApprovalLevelDefinition], index: int) -> list[ApprovalLevelDefinition]:
    """Return a new chain without the level at ``index``, compacted to 1..N."""
    if not 0 <= index < len(levels):
        raise IndexError(f"No level at index {index} (chain has {len(levels)} levels)")
    chain = list(levels[:index]) + list(levels[index + 1:])
    logger.debug("Removed level %s; renumbering %d remaining", index + 1, len(chain))
    return renumber_levels(chain)


# ── Validation ───────────────────────────────────────────────────────────────

def validate_levels(
    levels: Iterable[ApprovalLevelDefinition],
    for_activation: bool = False,
) -> list[TemplateError]:
    """Check a parsed chain; returns every violation (empty list → valid).

    Approver sets and an empty chain are only checked ``for_activation``;
    drafts may be saved incomplete.
    """
    chain = list(levels)
    errors: list[TemplateError] = list(_numbering_errors([lvl.level_number for lvl in chain]))

    for lvl in chain:
        if not (lvl.level_name or "").strip():
            errors.append(EmptyLevelNameError(f"Level {lvl.level_number} has no name", subject=lvl.level_number))
        for key in ("sla_hours", "escalate_after_hours"):
            value = getattr(lvl, key)
            if value is not None and value <= 0:
                errors.append(NonPositiveSlaError(
                    f"Level {lvl.level_number} {key} must be > 0, got {value}",
                    subject=lvl.level_number,
                ))

    if for_activation:
        if not chain:
            errors.append(EmptyLevelChainError("An active template needs at least one approval level"))
        for lvl in chain:
            if lvl.approvers.is_empty():
                errors.append(EmptyApproverSetError(
                    f"Level {lvl.level_number} ({lvl.level_name}) has no approvers",
                    subject=lvl.level_number,
                ))
    return errors
