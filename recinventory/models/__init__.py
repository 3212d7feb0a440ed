"""Data models for the records inventory."""

from recinventory.models.series import Series, ApprovalStatus
from recinventory.models.audit_event import AuditEvent, AuditAction
from recinventory.models.results import (
    FieldViolation,
    ValidationResult,
    BatchResult,
    ScheduleSummary,
    SavedSeries,
)

__all__ = [
    "Series",
    "ApprovalStatus",
    "AuditEvent",
    "AuditAction",
    "FieldViolation",
    "ValidationResult",
    "BatchResult",
    "ScheduleSummary",
    "SavedSeries",
]
