"""Result models returned by inventory operations."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from recinventory.models.series import Series


class FieldViolation(BaseModel):
    """A single field-level validation problem."""
    field: str
    code: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating one candidate record."""
    valid: bool
    violations: List[FieldViolation] = Field(default_factory=list)

    def by_field(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for violation in self.violations:
            out.setdefault(violation.field, []).append(violation.message)
        return out


class BatchResult(BaseModel):
    """Applied counts for an upsert batch, bulk edit or import."""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    audit_events_written: int = 0
    audit_events_skipped: int = 0
    audit_events_orphaned: int = 0
    series: int = Field(0, description="Series records processed")
    schedules: int = Field(0, description="Distinct non-blank schedule_number values processed")
    series_ids: List[int] = Field(default_factory=list, description="Resolved _id per processed record, in input order")

    @computed_field
    @property
    def summary(self) -> str:
        return f"{self.schedules} schedules, {self.series} series"


class ScheduleSummary(BaseModel):
    """Derived view of one schedule (a group of series sharing a schedule_number)."""
    schedule_number: str
    approval_status: Optional[str] = None
    approval_date: Optional[str] = None
    division: Optional[str] = None
    series_count: int = 0
    item_numbers: List[str] = Field(default_factory=list)


class SavedSeries(BaseModel):
    """A single saved record plus whether storage changed."""
    series: Series
    created: bool = False
    changed: bool = True
