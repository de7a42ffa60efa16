"""
Form-field schema validation for approval templates.

Normalizes raw field payloads into ``FieldDefinition`` values and validates a
whole ordered field list:
  - name: trimmed, lowercased, whitespace runs → "_"; must be non-empty
  - choice types (select/radio/checkbox) need at least one option;
    other types have their options cleared
  - list position is authoritative: sort_order is re-derived from it
  - depends_on_field must name an earlier, active field (no self / forward refs)

Pure functions; nothing here touches the database.

Usage:
    from orgadmin.services.field_schema import normalize_field_list
    fields = normalize_field_list(payload["fields"])   # raises TemplateValidationError
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable

from orgadmin.services.template_errors import (
    DanglingDependencyError,
    DuplicateFieldNameError,
    EmptyFieldLabelError,
    EmptyFieldNameError,
    FieldError,
    InvalidFieldTypeError,
    InvalidFlagError,
    MissingOptionsForChoiceTypeError,
    TemplateValidationError,
)

_WHITESPACE = re.compile(r"\s+")
_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    EMAIL = "email"
    PHONE = "phone"


CHOICE_TYPES = frozenset({FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX})


@dataclass(frozen=True)
class FieldDefinition:
    """One normalized input on a template's request form."""
    name: str
    label: str
    type: FieldType = FieldType.TEXT
    placeholder: str | None = None
    help_text: str | None = None
    default_value: str | None = None
    validation_rule: str | None = None
    is_required: bool = False
    options: tuple[str, ...] = field(default_factory=tuple)
    sort_order: int = 0
    depends_on_field: str | None = None
    depends_on_value: str | None = None
    is_active: bool = True

    @property
    def is_choice(self) -> bool:
        return self.type in CHOICE_TYPES

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "type": self.type.value,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
            "default_value": self.default_value,
            "validation_rule": self.validation_rule,
            "is_required": self.is_required,
            "options": list(self.options),
            "sort_order": self.sort_order,
            "depends_on_field": self.depends_on_field,
            "depends_on_value": self.depends_on_value,
            "is_active": self.is_active,
        }


# ── Helpers ──────────────────────────────────────────────────────────────────

def normalize_name(value: Any) -> str:
    """Lowercase and replace whitespace runs with underscores."""
    if value is None:
        return ""
    return _WHITESPACE.sub("_", str(value).strip().lower())


def parse_flag(value: Any) -> bool:
    """Read a true/false setting from a payload.

    Accepts booleans, 0/1 and the words true/false, yes/no, on/off.

    Raises:
        ValueError: anything else ("maybe", 2, [] ...).
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"expected true or false, got {value!r}")


def _pick(raw: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _clean_options(values: list | tuple) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        text = str(value).strip() if value is not None else ""
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


def _as_mapping(raw: Any) -> dict:
    if isinstance(raw, FieldDefinition):
        data = raw.to_dict()
        data["type"] = raw.type
        return data
    if isinstance(raw, dict):
        return raw
    raise EmptyFieldNameError(f"Field definition must be an object, got {type(raw).__name__}")


def _field_errors(raw: Any, sort_order: int) -> tuple[FieldDefinition | None, list[FieldError]]:
    """Normalize one field, collecting every per-field violation."""
    try:
        data = _as_mapping(raw)
    except FieldError as exc:
        return None, [exc]

    errors: list[FieldError] = []
    name = normalize_name(_pick(data, "name", "field_name"))
    subject = name or f"#{sort_order}"
    if not name:
        errors.append(EmptyFieldNameError(f"Field at position {sort_order} has no name", subject=subject))

    label = str(_pick(data, "label", "field_label", default="")).strip()
    if not label:
        errors.append(EmptyFieldLabelError(f"Field '{subject}' has no label", subject=subject))

    raw_type = _pick(data, "type", "field_type", default=FieldType.TEXT)
    try:
        field_type = FieldType(raw_type.value if isinstance(raw_type, FieldType) else str(raw_type).strip().lower())
    except ValueError:
        errors.append(InvalidFieldTypeError(
            f"Field '{subject}' has unknown type {raw_type!r}; "
            f"expected one of {', '.join(t.value for t in FieldType)}",
            subject=subject,
        ))
        field_type = FieldType.TEXT

    raw_options = _pick(data, "options", default=())
    options_are_list = isinstance(raw_options, (list, tuple))
    options = _clean_options(raw_options) if options_are_list else ()
    if field_type in CHOICE_TYPES:
        if not options_are_list:
            errors.append(MissingOptionsForChoiceTypeError(
                f"Field '{subject}' options must be a list, got {type(raw_options).__name__}",
                subject=subject,
            ))
        elif not options:
            errors.append(MissingOptionsForChoiceTypeError(
                f"Field '{subject}' of type {field_type.value} needs at least one option",
                subject=subject,
            ))
    else:
        options = ()

    depends_on_field = normalize_name(_pick(data, "depends_on_field")) or None
    depends_on_value = _optional_text(_pick(data, "depends_on_value")) if depends_on_field else None
    if depends_on_field and depends_on_field == name:
        errors.append(DanglingDependencyError(
            f"Field '{subject}' cannot depend on itself", subject=subject,
        ))

    flags: dict[str, bool] = {}
    for key, default in (("is_required", False), ("is_active", True)):
        try:
            flags[key] = parse_flag(_pick(data, key, default=default))
        except ValueError:
            errors.append(InvalidFlagError(
                f"Field '{subject}' {key} must be true or false, got {data.get(key)!r}",
                subject=subject,
            ))

    if errors:
        return None, errors

    return FieldDefinition(
        name=name,
        label=label,
        type=field_type,
        placeholder=_optional_text(_pick(data, "placeholder")),
        help_text=_optional_text(_pick(data, "help_text")),
        default_value=_optional_text(_pick(data, "default_value")),
        validation_rule=_optional_text(_pick(data, "validation_rule", "validation")),
        is_required=flags["is_required"],
        options=options,
        sort_order=sort_order,
        depends_on_field=depends_on_field,
        depends_on_value=depends_on_value,
        is_active=flags["is_active"],
    ), []


# ── Public API ───────────────────────────────────────────────────────────────

def normalize_field(raw: Any, sort_order: int = 0) -> FieldDefinition:
    """Normalize a single field payload.

    Raises:
        FieldError: the first violation found for this field.
    """
    definition, errors = _field_errors(raw, sort_order)
    if errors:
        raise errors[0]
    return definition


def check_field_list(raw_fields: Iterable[Any]) -> tuple[list[FieldDefinition], list[FieldError]]:
    """Normalize an ordered field list and collect every violation.

    List order wins over any supplied sort_order.  Fields that fail
    per-field checks are left out of the returned list but still count as
    "declared" for dependency lookups, so one bad field does not cascade
    into spurious dangling-dependency errors on its dependents.
    """
    if not isinstance(raw_fields, (list, tuple)):
        return [], [FieldError(
            f"Fields must be a list, got {type(raw_fields).__name__}", subject="fields",
        )]

    fields: list[FieldDefinition] = []
    errors: list[FieldError] = []
    seen_names: set[str] = set()
    active_before: set[str] = set()
    declared_before: set[str] = set()

    for position, raw in enumerate(raw_fields):
        definition, field_errs = _field_errors(raw, position)
        errors.extend(field_errs)

        if definition is None:
            try:
                bad_name = normalize_name(_pick(_as_mapping(raw), "name", "field_name"))
            except FieldError:
                bad_name = ""
            if bad_name:
                declared_before.add(bad_name)
            continue

        if definition.name in seen_names:
            errors.append(DuplicateFieldNameError(
                f"Field name '{definition.name}' is used more than once",
                subject=definition.name,
            ))
        else:
            seen_names.add(definition.name)

        target = definition.depends_on_field
        if target and target not in active_before and target not in (declared_before - seen_names):
            errors.append(DanglingDependencyError(
                f"Field '{definition.name}' depends on '{target}', "
                "which is not an earlier active field",
                subject=definition.name,
            ))

        fields.append(definition)
        declared_before.add(definition.name)
        if definition.is_active:
            active_before.add(definition.name)

    return fields, errors


def validate_field_list(raw_fields: Iterable[Any]) -> list[FieldError]:
    """Return every violation in the list; an empty list means valid."""
    _, errors = check_field_list(raw_fields)
    return errors


def normalize_field_list(raw_fields: Iterable[Any]) -> list[FieldDefinition]:
    """Normalize and validate a full field list.

    Raises:
        TemplateValidationError: carrying all violations.
    """
    fields, errors = check_field_list(raw_fields)
    if errors:
        raise TemplateValidationError(errors)
    return fields


def renumber_fields(fields: Iterable[FieldDefinition]) -> list[FieldDefinition]:
    """Re-derive sort_order from position."""
    return [
        f if f.sort_order == i else replace(f, sort_order=i)
        for i, f in enumerate(fields)
    ]
