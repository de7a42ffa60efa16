"""
Approval-template engine errors.

Every violation the engine can report is a ``TemplateError`` subclass with a
stable ``code`` (used in API bodies) and an optional ``subject`` naming the
offending field / level / approver.  Validators return lists of these
instances; aggregate operations wrap them in ``TemplateValidationError``.

    FieldError          EmptyFieldName, DuplicateFieldName, ...
    LevelError          NonContiguousLevelNumbers, EmptyApproverSet, ...
    ApproverError       MixedApproverKinds, InvalidApprover
    ResolutionError     NoSupervisorAvailable, RoleHasNoMembers
    TemplateMetadataError  DuplicateInternalName, InvalidColor, NonPositiveSla, ...
    InvalidFlagError    a true/false setting that is neither
"""

from __future__ import annotations

from orgadmin.core.exceptions import ConflictError, ValidationError


class TemplateError(ValidationError):
    """Base class for a single engine violation."""

    code = "TEMPLATE_INVALID"

    def __init__(self, message: str, *, subject: str | int | None = None) -> None:
        self.subject = subject
        details = {"code": self.code}
        if subject is not None:
            details["subject"] = subject
        super().__init__(message, details=details)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "subject": self.subject}

    def __eq__(self, other):
        return (
            type(self) is type(other)
            and str(self) == str(other)
            and self.subject == other.subject
        )

    def __hash__(self):
        return hash((type(self), str(self), self.subject))

    def __repr__(self):
        return f"{type(self).__name__}({str(self)!r}, subject={self.subject!r})"


# ── Flags ────────────────────────────────────────────────────────────────────

class InvalidFlagError(TemplateError):
    code = "INVALID_FLAG"


# ── Metadata ─────────────────────────────────────────────────────────────────

class TemplateMetadataError(TemplateError):
    code = "TEMPLATE_METADATA_INVALID"


class DuplicateInternalNameError(TemplateMetadataError):
    code = "DUPLICATE_INTERNAL_NAME"


class EmptyInternalNameError(TemplateMetadataError):
    code = "EMPTY_INTERNAL_NAME"


class InvalidInternalNameError(TemplateMetadataError):
    code = "INVALID_INTERNAL_NAME"


class ImmutableInternalNameError(TemplateMetadataError):
    code = "IMMUTABLE_INTERNAL_NAME"


class EmptyDisplayNameError(TemplateMetadataError):
    code = "EMPTY_DISPLAY_NAME"


class InvalidColorError(TemplateMetadataError):
    code = "INVALID_COLOR"


class NonPositiveSlaError(TemplateMetadataError):
    code = "NON_POSITIVE_SLA"


# ── Form fields ──────────────────────────────────────────────────────────────

class FieldError(TemplateError):
    code = "FIELD_INVALID"


class EmptyFieldNameError(FieldError):
    code = "EMPTY_FIELD_NAME"


class EmptyFieldLabelError(FieldError):
    code = "EMPTY_FIELD_LABEL"


class InvalidFieldTypeError(FieldError):
    code = "INVALID_FIELD_TYPE"


class DuplicateFieldNameError(FieldError):
    code = "DUPLICATE_FIELD_NAME"


class MissingOptionsForChoiceTypeError(FieldError):
    code = "MISSING_OPTIONS_FOR_CHOICE_TYPE"


class DanglingDependencyError(FieldError):
    code = "DANGLING_DEPENDENCY"


# ── Levels ───────────────────────────────────────────────────────────────────

class LevelError(TemplateError):
    code = "LEVEL_INVALID"


class NonContiguousLevelNumbersError(LevelError):
    code = "NON_CONTIGUOUS_LEVEL_NUMBERS"


class DuplicateLevelNumberError(LevelError):
    code = "DUPLICATE_LEVEL_NUMBER"


class EmptyApproverSetError(LevelError):
    code = "EMPTY_APPROVER_SET"


class EmptyLevelChainError(LevelError):
    code = "EMPTY_LEVEL_CHAIN"


class EmptyLevelNameError(LevelError):
    code = "EMPTY_LEVEL_NAME"


# ── Approvers ────────────────────────────────────────────────────────────────

class ApproverError(TemplateError):
    code = "APPROVER_INVALID"


class MixedApproverKindsError(ApproverError):
    code = "MIXED_APPROVER_KINDS"


class InvalidApproverError(ApproverError):
    code = "INVALID_APPROVER"


# ── Resolution ───────────────────────────────────────────────────────────────

class ResolutionError(TemplateError):
    code = "RESOLUTION_FAILED"


class NoSupervisorAvailableError(ResolutionError):
    code = "NO_SUPERVISOR_AVAILABLE"


class RoleHasNoMembersError(ResolutionError):
    code = "ROLE_HAS_NO_MEMBERS"


# ── Aggregates ───────────────────────────────────────────────────────────────

class TemplateValidationError(ValidationError):
    """Carries every violation found by one authoring operation."""

    def __init__(self, errors: list[TemplateError], message: str | None = None) -> None:
        self.errors = list(errors)
        if message is None:
            message = "; ".join(str(e) for e in self.errors) or "Template is invalid"
        super().__init__(message, details={"errors": [e.to_dict() for e in self.errors]})

    @property
    def codes(self) -> list[str]:
        return [e.code for e in self.errors]


class TemplateInUseError(ConflictError):
    """Structural edit attempted while requests are still moving through the chain."""

    def __init__(self, template_id: int | None, operation: str) -> None:
        self.template_id = template_id
        self.operation = operation
        super().__init__(
            "ApprovalTemplate",
            "in_flight_requests",
            template_id,
            message=(
                f"Cannot {operation} for template id={template_id}: "
                "it has requests in progress"
            ),
        )
