"""Field-level validation for series records.

Validation is pure: it never mutates the candidate and never raises for a
recoverable problem. Each violation names the field it belongs to so a form can
show it next to the input.
"""

import math
from typing import Any, List, Mapping

from recinventory.models.constants import (
    BYTE_COUNT_FIELDS,
    FULL_DATE_PATTERN,
    ITEM_NUMBER_PATTERN,
    LIST_FIELDS,
    NUMERIC_FIELDS,
    PARTIAL_DATE_PATTERN,
    SCHEDULE_NUMBER_PATTERN,
    STRING_FIELDS,
)
from recinventory.models.results import FieldViolation, ValidationResult
from recinventory.models.series import ApprovalStatus
from recinventory.engine.normalize import coerce_number

APPROVAL_STATUS_VALUES = tuple(status.value for status in ApprovalStatus)


def _present(value: Any) -> bool:
    return value is not None and not (isinstance(value, str) and not value.strip())


def _check_title(record: Mapping[str, Any], violations: List[FieldViolation]) -> None:
    title = record.get("record_series_title")
    if not isinstance(title, str) or not title.strip():
        violations.append(FieldViolation(
            field="record_series_title",
            code="required",
            message="Record Series Title is required",
        ))


def _check_pattern(record, field, pattern, message, violations) -> None:
    value = record.get(field)
    if not _present(value):
        return
    if not isinstance(value, str) or not pattern.match(value.strip()):
        violations.append(FieldViolation(field=field, code="format", message=message))


def _check_numbers(record: Mapping[str, Any], violations: List[FieldViolation]) -> None:
    for field in NUMERIC_FIELDS:
        value = record.get(field)
        if not _present(value):
            continue
        number = coerce_number(value)
        if number is None or not math.isfinite(number):
            violations.append(FieldViolation(field=field, code="type", message="Must be a number"))
            continue
        if number < 0:
            violations.append(FieldViolation(field=field, code="range", message="Must not be negative"))
        if field in BYTE_COUNT_FIELDS and not number.is_integer():
            violations.append(FieldViolation(field=field, code="integral", message="Byte counts must be whole numbers"))


def _check_types(record: Mapping[str, Any], violations: List[FieldViolation]) -> None:
    for field in STRING_FIELDS:
        value = record.get(field)
        if value is not None and not isinstance(value, str):
            violations.append(FieldViolation(field=field, code="type", message="Must be text"))

    for field in LIST_FIELDS:
        value = record.get(field)
        if value is None:
            continue
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            violations.append(FieldViolation(field=field, code="type", message="Must be a list of text values"))

    extras = record.get("ui_extras")
    if extras is not None and not isinstance(extras, dict):
        violations.append(FieldViolation(field="ui_extras", code="type", message="Must be an object"))


def validate_record(record: Mapping[str, Any]) -> ValidationResult:
    """Validate a (normalized) candidate record.

    Args:
        record: Candidate record as a field -> value mapping

    Returns:
        ValidationResult with one FieldViolation per problem found
    """
    violations: List[FieldViolation] = []

    _check_title(record, violations)
    _check_types(record, violations)

    _check_pattern(
        record, "schedule_number", SCHEDULE_NUMBER_PATTERN,
        "Schedule number must be in format XX-XXX (e.g., 25-012)", violations,
    )
    _check_pattern(
        record, "item_number", ITEM_NUMBER_PATTERN,
        "Item number must be numeric with optional letter or decimal suffix", violations,
    )
    _check_pattern(
        record, "approval_date", FULL_DATE_PATTERN,
        "Approval date must be YYYY-MM-DD", violations,
    )
    _check_pattern(
        record, "dates_covered_start", PARTIAL_DATE_PATTERN,
        "Start date must be YYYY, YYYY-MM or YYYY-MM-DD", violations,
    )

    status = record.get("approval_status")
    if _present(status) and status not in APPROVAL_STATUS_VALUES:
        violations.append(FieldViolation(
            field="approval_status",
            code="choice",
            message=f"Approval status must be one of: {', '.join(APPROVAL_STATUS_VALUES)}",
        ))

    _check_numbers(record, violations)

    # A field already flagged for its type is not re-reported for its format
    seen = set()
    unique: List[FieldViolation] = []
    for violation in violations:
        if violation.field in seen and violation.code == "format":
            continue
        seen.add(violation.field)
        unique.append(violation)

    return ValidationResult(valid=not unique, violations=unique)
