"""
Validator - applies per-field rules to a formatted payload.

Rules are checked against formatted values, never the raw form, so type
coercion has already happened. Validation is not fail-fast: every field
is checked and all violations are returned together.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from dazzle_admin.runtime.field_formatter import (
    UNSET,
    FormattedPayload,
    RelationChange,
    RemoveFile,
)
from dazzle_admin.runtime.logging import get_admin_logger
from dazzle_admin.specs.resource import ResourceSpec

logger = get_admin_logger()

REQUIRED_MESSAGE = "This field is required"
INVALID_MESSAGE = "Invalid value"


@dataclass(frozen=True)
class Violation:
    """One failed rule."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"property": self.field, "message": self.message}


@dataclass(frozen=True)
class ValidationResult:
    """Ordered set of violations. Empty means the payload may be dispatched."""

    violations: tuple[Violation, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.violations)

    def __len__(self) -> int:
        return len(self.violations)

    def __iter__(self) -> Iterator[Violation]:
        return iter(self.violations)

    @property
    def fields(self) -> set[str]:
        return {v.field for v in self.violations}

    def for_field(self, name: str) -> list[str]:
        return [v.message for v in self.violations if v.field == name]

    def to_list(self) -> list[dict[str, str]]:
        return [v.to_dict() for v in self.violations]


def _is_empty(value: Any) -> bool:
    """Whether a formatted value counts as "no value" for the required rule."""
    if value is None or value is UNSET or isinstance(value, RemoveFile):
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, RelationChange):
        return not value.link
    if isinstance(value, list | tuple | dict | set):
        return len(value) == 0
    return False


def _run_custom_validator(
    name: str, validator: Any, value: Any, values: dict[str, Any]
) -> str | None:
    """Call a custom validator; returns a violation message or None."""
    try:
        outcome = validator(value, values)
    except ValueError as exc:
        return str(exc) or INVALID_MESSAGE
    except Exception as exc:
        logger.warning(f"Validator for field '{name}' raised {type(exc).__name__}: {exc}")
        return INVALID_MESSAGE
    if outcome is None or outcome is True:
        return None
    if outcome is False:
        return INVALID_MESSAGE
    if isinstance(outcome, str):
        return outcome
    logger.warning(
        f"Validator for field '{name}' returned {type(outcome).__name__}; "
        "expected bool, str or None"
    )
    return INVALID_MESSAGE


def validate(
    payload: FormattedPayload,
    resource: ResourceSpec,
    is_create: bool,
) -> ValidationResult:
    """
    Validate a formatted payload against a resource's field rules.

    - Coercion errors recorded while formatting are violations.
    - Required fields must hold a non-empty value. The identifier field is
      never required; on update, fields that were not submitted at all are
      left unchanged and not checked.
    - Custom validators run on every field that has a value or is required,
      receiving the formatted value and all formatted values. A ``False``
      or string return, or any exception, is a violation for that field.
      A ``ValueError`` message is reported as is; other failures report a
      generic message.

    Args:
        payload: Output of the field formatter
        resource: Target resource
        is_create: Whether the payload is for a new record

    Returns:
        ValidationResult (empty on success)
    """
    violations: list[Violation] = [
        Violation(field=name, message=message)
        for name, message in payload.coercion_errors.items()
    ]
    failed = set(payload.coercion_errors)

    for field in resource.fields:
        name = field.name
        if name == resource.id_field or field.read_only or name in failed:
            continue

        submitted = name in payload.values
        if not submitted and not is_create:
            continue

        value = payload.values.get(name)
        if field.required and _is_empty(value):
            violations.append(Violation(field=name, message=REQUIRED_MESSAGE))
            continue

        if field.validator is not None and (submitted or field.required):
            message = _run_custom_validator(name, field.validator, value, payload.values)
            if message is not None:
                violations.append(Violation(field=name, message=message))

    if violations:
        logger.debug(
            f"Validation of {resource.name} failed on {', '.join(v.field for v in violations)}"
        )
    return ValidationResult(tuple(violations))
