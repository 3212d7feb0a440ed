"""Series data model for the records inventory."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field


class ApprovalStatus(str, Enum):
    """Retention schedule approval status."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    SUPERSEDED = "superseded"


class Series(BaseModel):
    """Canonical record series model.

    A series optionally belongs to a retention schedule through its
    ``schedule_number``; the schedule itself is never stored.
    """

    id: Optional[int] = Field(None, alias="_id", description="Storage-assigned identity")

    # Natural key parts
    schedule_number: Optional[str] = Field(None, description="Retention schedule number (NN-NNN)")
    item_number: Optional[str] = Field(None, description="Item within the schedule (e.g. 12, 12a, 12.1)")

    record_series_title: str = Field(..., description="Record series title")
    division: Optional[str] = Field(None, description="Owning division")
    notes: Optional[str] = Field(None, description="Free-form notes")

    # Schedule-scoped
    approval_status: Optional[ApprovalStatus] = Field(None, description="Schedule approval status")
    approval_date: Optional[str] = Field(None, description="Schedule approval date (YYYY-MM-DD)")

    # Coverage
    dates_covered_start: Optional[str] = Field(None, description="YYYY, YYYY-MM or YYYY-MM-DD")
    dates_covered_end: Optional[str] = Field(None, description="Free-form; may be the literal 'present'")

    # Retention (never interpreted)
    retention_text: Optional[str] = Field(None, description="Retention instructions as written")
    retention_term: Optional[float] = Field(None, ge=0, description="Retention term, in years")
    retention_trigger: Optional[str] = Field(None, description="Event that starts the retention clock")

    # Volume
    volume_paper_cubic_feet: Optional[float] = Field(None, ge=0)
    volume_electronic_bytes: Optional[int] = Field(None, ge=0)

    tags: List[str] = Field(default_factory=list)
    media_types: List[str] = Field(default_factory=list)
    omb_or_statute_refs: List[str] = Field(default_factory=list)
    related_series: List[str] = Field(default_factory=list)

    ui_extras: Dict[str, Any] = Field(default_factory=dict, description="Presentation-only attributes")

    version: int = Field(1, ge=1, description="Incremented on every mutation")
    created_at: Optional[datetime] = Field(None, description="Set once at first insert")
    updated_at: Optional[datetime] = Field(None, description="Set on every mutation")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
        populate_by_name = True

    @property
    def natural_key(self) -> Optional[Tuple[str, str]]:
        """(schedule_number, item_number) when both are present."""
        if self.schedule_number and self.item_number:
            return (self.schedule_number, self.item_number)
        return None

    def to_export(self) -> Dict[str, Any]:
        """JSON-ready dict using the external ``_id`` name."""
        return self.model_dump(mode="json", by_alias=True)
