"""AuditEvent data model for the records inventory."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from recinventory.models.constants import SERIES_ENTITY, DEFAULT_ACTOR


class AuditAction(str, Enum):
    """Audit action enumeration."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SCHEDULE_BULK_UPDATE = "schedule_bulk_update"
    SCHEDULE_UNASSIGNED = "schedule_unassigned"
    IMPORT = "import"


class AuditEvent(BaseModel):
    """Immutable log entry for a single mutation to a series record."""

    id: Optional[int] = Field(None, description="Storage-assigned identity")
    entity: str = Field(SERIES_ENTITY, description="Entity type (always 'series')")
    entity_id: int = Field(..., description="_id of the series this event relates to")
    action: str = Field(..., description="What happened")
    actor: str = Field(DEFAULT_ACTOR, description="Who did it")
    at: datetime = Field(..., description="When it happened (UTC)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Structured event details")

    def to_export(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
