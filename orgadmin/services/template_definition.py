"""
TemplateDefinition — the approval template aggregate.

Holds a template's metadata, its form-field schema and its approval chain(s)
and is the only place the cross-cutting invariants are enforced:

  - internal_name: normalized (lowercase, whitespace → "_"), ^[a-z0-9_]+$,
    unique (checked through a caller-supplied ``name_exists``), immutable
  - display_name non-empty, color from the fixed palette, SLA hours > 0
  - fields / levels are replaced as whole lists, all-or-nothing
  - set_active(True) is the gate: every chain contiguous, every level staffed

Besides the global chain, a template may carry chains scoped to a project
and/or cohort; a request raised in a scope without its own chain uses the
global one.

Persistence lives in ``orgadmin.services.template_store``; this module never
touches the database.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from orgadmin.core.exceptions import NotFoundError
from orgadmin.services.field_schema import (
    FieldDefinition,
    check_field_list,
    normalize_name,
    parse_flag,
    validate_field_list,
)
from orgadmin.services.level_chain import (
    ApprovalLevelDefinition,
    check_level_list,
    positive_int_or_none,
    validate_levels,
)
from orgadmin.services.template_errors import (
    DuplicateInternalNameError,
    EmptyDisplayNameError,
    EmptyInternalNameError,
    ImmutableInternalNameError,
    InvalidColorError,
    InvalidFlagError,
    InvalidInternalNameError,
    NonPositiveSlaError,
    TemplateError,
    TemplateValidationError,
)

logger = logging.getLogger(__name__)

COLOR_PALETTE = (
    "#4F46E5", "#7C3AED", "#EC4899", "#EF4444", "#F97316",
    "#EAB308", "#22C55E", "#14B8A6", "#0EA5E9", "#6366F1",
)
ICON_OPTIONS = (
    "FileText", "Briefcase", "Calendar", "Clock", "Users", "DollarSign",
    "Package", "Truck", "ShoppingCart", "CreditCard", "Building", "Home",
)
DEFAULT_ICON = "FileText"
DEFAULT_COLOR = "#4F46E5"
DEFAULT_SLA_HOURS = 24

_INTERNAL_NAME = re.compile(r"^[a-z0-9_]+$")

_METADATA_KEYS = ("display_name", "description", "icon", "color", "default_sla_hours")


@dataclass(frozen=True)
class LevelScope:
    """Project / cohort a chain applies to; both None is the global chain."""
    project_id: int | None = None
    cohort_id: int | None = None

    @classmethod
    def of(cls, project_id: Any = None, cohort_id: Any = None) -> "LevelScope | None":
        project_id = int(project_id) if project_id not in (None, "") else None
        cohort_id = int(cohort_id) if cohort_id not in (None, "") else None
        if project_id is None and cohort_id is None:
            return None
        return cls(project_id, cohort_id)

    def to_dict(self) -> dict:
        return {"project_id": self.project_id, "cohort_id": self.cohort_id}


# ── Metadata rules ───────────────────────────────────────────────────────────

def normalize_internal_name(value: Any) -> str:
    """Lowercase, whitespace → underscore (same rule as field names)."""
    return normalize_name(value)


def internal_name_errors(name: str) -> list[TemplateError]:
    if not name:
        return [EmptyInternalNameError("Internal name is required", subject="name")]
    if not _INTERNAL_NAME.match(name):
        return [InvalidInternalNameError(
            f"Internal name {name!r} may only contain a-z, 0-9 and '_'", subject="name",
        )]
    return []


def normalize_color(value: Any) -> str | None:
    """Return the palette spelling of ``value``.

    Raises:
        InvalidColorError: not in COLOR_PALETTE.
    """
    if value is None or str(value).strip() == "":
        return None
    color = str(value).strip().upper()
    if color not in COLOR_PALETTE:
        raise InvalidColorError(
            f"Color {value!r} is not in the palette ({', '.join(COLOR_PALETTE)})",
            subject="color",
        )
    return color


def _check_metadata(values: dict) -> tuple[dict, list[TemplateError]]:
    """Normalize display_name / description / icon / color / default_sla_hours."""
    errors: list[TemplateError] = []
    out = dict(values)

    if "display_name" in values:
        display_name = str(values.get("display_name") or "").strip()
        if not display_name:
            errors.append(EmptyDisplayNameError("Display name is required", subject="display_name"))
        out["display_name"] = display_name

    for key in ("description", "icon"):
        if key in values:
            out[key] = str(values[key] or "").strip() or None

    if "color" in values:
        try:
            out["color"] = normalize_color(values["color"])
        except InvalidColorError as exc:
            errors.append(exc)

    if "default_sla_hours" in values:
        try:
            hours = positive_int_or_none(values["default_sla_hours"], "default_sla_hours", subject="default_sla_hours")
        except NonPositiveSlaError as exc:
            errors.append(exc)
        else:
            if hours is None:
                errors.append(NonPositiveSlaError(
                    "default_sla_hours is required and must be > 0", subject="default_sla_hours",
                ))
            out["default_sla_hours"] = hours

    return out, errors


def _active_flag(values: dict, errors: list[TemplateError]) -> bool | None:
    """Parsed ``is_active`` from a payload; None when absent or invalid."""
    raw = values.get("is_active")
    if raw is None:
        return None
    try:
        return parse_flag(raw)
    except ValueError:
        errors.append(InvalidFlagError(
            f"is_active must be true or false, got {raw!r}", subject="is_active",
        ))
        return None


# ── Aggregate ────────────────────────────────────────────────────────────────

@dataclass(eq=False)
class TemplateDefinition:
    internal_name: str
    display_name: str
    id: int | None = None
    description: str | None = None
    icon: str | None = DEFAULT_ICON
    color: str | None = DEFAULT_COLOR
    default_sla_hours: int = DEFAULT_SLA_HOURS
    is_active: bool = False
    fields: list[FieldDefinition] = field(default_factory=list)
    levels: list[ApprovalLevelDefinition] = field(default_factory=list)
    scoped_levels: dict[LevelScope, list[ApprovalLevelDefinition]] = field(default_factory=dict)
    created_by: str | None = None

    # ── creation ─────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        metadata: dict,
        *,
        name_exists: Callable[[str], bool] | None = None,
        fields: Iterable[Any] | None = None,
        levels: Iterable[Any] | None = None,
        defaults: dict | None = None,
    ) -> "TemplateDefinition":
        """Build a new (unsaved) template.

        Args:
            metadata: name / display_name / description / icon / color /
                default_sla_hours / is_active.
            name_exists: storage lookup for internal-name uniqueness.
            fields, levels: optional initial schema and global chain.
            defaults: fallback icon / color / default_sla_hours (from config).

        Raises:
            TemplateValidationError: every metadata / field / level violation.
            DuplicateInternalNameError: the normalized name is taken.
        """
        defaults = defaults or {}
        raw_name = metadata.get("name", metadata.get("internal_name"))
        internal_name = normalize_internal_name(raw_name)
        errors: list[TemplateError] = internal_name_errors(internal_name)

        values = {
            "display_name": metadata.get("display_name"),
            "description": metadata.get("description"),
            "icon": metadata.get("icon") or defaults.get("icon", DEFAULT_ICON),
            "color": metadata.get("color") or defaults.get("color", DEFAULT_COLOR),
            "default_sla_hours": metadata.get(
                "default_sla_hours", defaults.get("default_sla_hours", DEFAULT_SLA_HOURS)
            ),
        }
        values, meta_errors = _check_metadata(values)
        errors.extend(meta_errors)
        active = _active_flag(metadata, errors)

        field_defs, field_errors = check_field_list(fields if fields is not None else [])
        errors.extend(field_errors)

        level_defs, level_errors = check_level_list(levels if levels is not None else [])
        errors.extend(level_errors)

        if errors:
            raise TemplateValidationError(errors)

        if name_exists is not None and name_exists(internal_name):
            raise DuplicateInternalNameError(
                f"An approval template named {internal_name!r} already exists",
                subject="name",
            )

        template = cls(
            internal_name=internal_name,
            display_name=values["display_name"],
            description=values["description"],
            icon=values["icon"],
            color=values["color"],
            default_sla_hours=values["default_sla_hours"],
            fields=field_defs,
            levels=level_defs,
            created_by=metadata.get("created_by"),
        )
        if active:
            template.set_active(True)
        return template

    # ── metadata ─────────────────────────────────────────────────────────

    def update_metadata(self, changes: dict) -> "TemplateDefinition":
        """Apply a partial metadata update, all-or-nothing.

        ``name`` / ``internal_name`` may be repeated unchanged but never
        changed; ``is_active`` goes through the activation gate.
        """
        for key in ("name", "internal_name"):
            if key in changes and changes[key] is not None:
                if normalize_internal_name(changes[key]) != self.internal_name:
                    raise ImmutableInternalNameError(
                        f"Internal name {self.internal_name!r} cannot be changed",
                        subject="name",
                    )

        values, errors = _check_metadata({k: changes[k] for k in _METADATA_KEYS if k in changes})
        active = _active_flag(changes, errors)
        if errors:
            raise TemplateValidationError(errors)

        snapshot = {k: getattr(self, k) for k in _METADATA_KEYS}
        for key, value in values.items():
            setattr(self, key, value)

        if active is not None:
            try:
                self.set_active(active)
            except TemplateValidationError:
                for key, value in snapshot.items():
                    setattr(self, key, value)
                raise
        return self

    # ── schema & chain ───────────────────────────────────────────────────

    def replace_fields(self, raw_fields: Iterable[Any]) -> list[FieldDefinition]:
        """Replace the whole field list; the template is untouched on error."""
        field_defs, errors = check_field_list(raw_fields)
        if errors:
            raise TemplateValidationError(errors)
        self.fields = field_defs
        return self.fields

    def replace_levels(
        self,
        raw_levels: Iterable[Any],
        scope: LevelScope | None = None,
    ) -> list[ApprovalLevelDefinition]:
        """Replace the global chain, or the chain of ``scope``.

        Replacing a scoped chain with an empty list removes it.  On an active
        template the new chain must satisfy the activation checks as well.
        """
        level_defs, errors = check_level_list(raw_levels)
        if not errors and self.is_active and (scope is None or level_defs):
            errors = validate_levels(level_defs, for_activation=True)
        if errors:
            raise TemplateValidationError(errors)

        if scope is None:
            self.levels = level_defs
        elif level_defs:
            self.scoped_levels[scope] = level_defs
        else:
            self.clear_levels(scope)
        return level_defs

    def clear_levels(self, scope: LevelScope) -> None:
        self.scoped_levels.pop(scope, None)

    # ── activation ───────────────────────────────────────────────────────

    def activation_errors(self) -> list[TemplateError]:
        """Everything that would stop this template from being activated."""
        errors: list[TemplateError] = list(internal_name_errors(self.internal_name))
        _, meta_errors = _check_metadata({k: getattr(self, k) for k in ("display_name", "color", "default_sla_hours")})
        errors.extend(meta_errors)
        errors.extend(validate_field_list(self.fields))
        errors.extend(validate_levels(self.levels, for_activation=True))
        for chain in self.scoped_levels.values():
            errors.extend(validate_levels(chain, for_activation=True))
        return errors

    def can_activate(self) -> bool:
        return not self.activation_errors()

    def set_active(self, active: bool) -> None:
        """Activate (through the gate) or deactivate the template."""
        if active and not self.is_active:
            errors = self.activation_errors()
            if errors:
                raise TemplateValidationError(
                    errors,
                    message=f"Template {self.internal_name!r} cannot be activated: "
                            + "; ".join(str(e) for e in errors),
                )
        self.is_active = bool(active)

    # ── lookups ──────────────────────────────────────────────────────────

    def chain_for(self, scope: LevelScope | None = None) -> list[ApprovalLevelDefinition]:
        """Chain used for a request raised in ``scope`` (global fallback)."""
        if scope is not None and self.scoped_levels.get(scope):
            return self.scoped_levels[scope]
        return self.levels

    def level(self, level_number: int, scope: LevelScope | None = None) -> ApprovalLevelDefinition:
        chain = self.chain_for(scope)
        for lvl in chain:
            if lvl.level_number == level_number:
                return lvl
        raise NotFoundError(resource="ApprovalLevel", resource_id=level_number)

    def effective_sla_hours(self, level: ApprovalLevelDefinition) -> int:
        return level.sla_hours or self.default_sla_hours

    # ── serialization ────────────────────────────────────────────────────

    def chain_to_dict(self, chain: list[ApprovalLevelDefinition]) -> list[dict]:
        out = []
        for lvl in chain:
            d = lvl.to_dict()
            d["effective_sla_hours"] = self.effective_sla_hours(lvl)
            out.append(d)
        return out

    def to_dict(self, include_fields: bool = True, include_levels: bool = True) -> dict:
        d = {
            "id": self.id,
            "name": self.internal_name,
            "display_name": self.display_name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "default_sla_hours": self.default_sla_hours,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "field_count": len(self.fields),
            "level_count": len(self.levels),
        }
        if include_fields:
            d["fields"] = [f.to_dict() for f in self.fields]
        if include_levels:
            d["levels"] = self.chain_to_dict(self.levels)
            d["scoped_levels"] = [
                {**scope.to_dict(), "levels": self.chain_to_dict(chain)}
                for scope, chain in sorted(
                    self.scoped_levels.items(),
                    key=lambda item: (item[0].project_id or 0, item[0].cohort_id or 0),
                )
            ]
        return d
