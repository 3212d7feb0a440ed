"""SQLAlchemy database models for the records inventory."""

from typing import Union, TypeVar, Type
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, ForeignKey, Index, event
from sqlalchemy.orm import relationship

from recinventory.database.database import Base
from recinventory.models.audit_event import AuditEvent
from recinventory.models.constants import SERIES_ENTITY
from recinventory.models.series import Series, ApprovalStatus

T = TypeVar('T')

# Columns copied one-to-one between SeriesDB and Series
SERIES_COLUMNS = (
    "schedule_number",
    "item_number",
    "record_series_title",
    "division",
    "notes",
    "approval_date",
    "dates_covered_start",
    "dates_covered_end",
    "retention_text",
    "retention_term",
    "retention_trigger",
    "volume_paper_cubic_feet",
    "volume_electronic_bytes",
    "version",
    "created_at",
    "updated_at",
)
SERIES_JSON_COLUMNS = ("tags", "media_types", "omb_or_statute_refs", "related_series", "ui_extras")


def enum_to_value(enum_obj: Union[str, T, None]):
    """Convert enum to string value (handles enum, string and None)."""
    if enum_obj is None:
        return None
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default.

    Args:
        value: String value to convert
        enum_class: Enum class to convert to
        default: Default enum value if conversion fails

    Returns:
        Enum instance, or default if conversion fails
    """
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


class SeriesDB(Base):
    """Database model for Series."""

    __tablename__ = "series"
    __table_args__ = (
        # Natural key. NULLs never collide, so records lacking either part are unconstrained.
        Index("ix_series_schedule_item", "schedule_number", "item_number", unique=True),
        # Never reuse an _id after delete
        {"sqlite_autoincrement": True},
    )

    id = Column("_id", Integer, primary_key=True, autoincrement=True)

    schedule_number = Column(String, nullable=True, index=True)
    item_number = Column(String, nullable=True)

    record_series_title = Column(String, nullable=False, index=True)
    division = Column(String, nullable=True, index=True)
    notes = Column(String, nullable=True)

    approval_status = Column(String, nullable=True)
    approval_date = Column(String, nullable=True)

    dates_covered_start = Column(String, nullable=True, index=True)
    dates_covered_end = Column(String, nullable=True)

    retention_text = Column(String, nullable=True)
    retention_term = Column(Float, nullable=True)
    retention_trigger = Column(String, nullable=True)

    volume_paper_cubic_feet = Column(Float, nullable=True)
    volume_electronic_bytes = Column(Integer, nullable=True)

    # Ordered lists stored as JSON arrays
    tags = Column(JSON, nullable=False, default=list)
    media_types = Column(JSON, nullable=False, default=list)
    omb_or_statute_refs = Column(JSON, nullable=False, default=list)
    related_series = Column(JSON, nullable=False, default=list)

    ui_extras = Column(JSON, nullable=False, default=dict)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    tag_entries = relationship(
        "SeriesTagDB",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def set_tags(self, tags) -> None:
        """Set the tag list and keep the multi-entry tag index in step."""
        self.tags = list(tags or [])
        wanted = list(dict.fromkeys(self.tags))
        current = {entry.tag: entry for entry in self.tag_entries}
        self.tag_entries = [current.get(tag) or SeriesTagDB(tag=tag) for tag in wanted]

    def to_pydantic(self) -> Series:
        """Convert database model to Pydantic model."""
        values = {name: getattr(self, name) for name in SERIES_COLUMNS}
        for name in SERIES_JSON_COLUMNS:
            values[name] = getattr(self, name) or ({} if name == "ui_extras" else [])
        approval = value_to_enum(self.approval_status, ApprovalStatus, None) if self.approval_status else None
        return Series(id=self.id, approval_status=approval, **values)

    @classmethod
    def from_pydantic(cls, series: Series) -> "SeriesDB":
        """Create database model from Pydantic model."""
        row = cls(
            id=series.id,
            approval_status=enum_to_value(series.approval_status),
            **{name: getattr(series, name) for name in SERIES_COLUMNS},
            **{name: getattr(series, name) for name in SERIES_JSON_COLUMNS if name != "tags"},
        )
        row.set_tags(series.tags)
        return row

    def apply(self, series: Series) -> None:
        """Copy every mutable value from a Pydantic model onto this row."""
        for name in SERIES_COLUMNS:
            if name == "created_at":
                continue
            setattr(self, name, getattr(series, name))
        for name in SERIES_JSON_COLUMNS:
            if name == "tags":
                continue
            setattr(self, name, getattr(series, name))
        self.approval_status = enum_to_value(series.approval_status)
        self.set_tags(series.tags)


class SeriesTagDB(Base):
    """Multi-entry index of series tags (one row per distinct tag per series)."""

    __tablename__ = "series_tags"

    series_id = Column(Integer, ForeignKey("series._id", ondelete="CASCADE"), primary_key=True)
    tag = Column(String, primary_key=True, index=True)


class AuditEventDB(Base):
    """Database model for AuditEvent. Append-only."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_entity_entity_id_at", "entity", "entity_id", "at"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # No foreign key: delete events outlive the series they describe
    entity = Column(String, nullable=False, default=SERIES_ENTITY, index=True)
    entity_id = Column(Integer, nullable=False)
    action = Column(String, nullable=False, index=True)
    actor = Column(String, nullable=False)
    at = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)

    def to_pydantic(self) -> AuditEvent:
        """Convert database model to Pydantic model."""
        return AuditEvent(
            id=self.id,
            entity=self.entity,
            entity_id=self.entity_id,
            action=self.action,
            actor=self.actor,
            at=self.at,
            payload=self.payload or {},
        )

    @classmethod
    def from_pydantic(cls, audit_event: AuditEvent) -> "AuditEventDB":
        """Create database model from Pydantic model (storage assigns the id)."""
        return cls(
            entity=audit_event.entity,
            entity_id=audit_event.entity_id,
            action=audit_event.action,
            actor=audit_event.actor,
            at=audit_event.at,
            payload=audit_event.payload,
        )


@event.listens_for(AuditEventDB, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise RuntimeError(f"Audit event {target.id} is immutable")


@event.listens_for(AuditEventDB, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise RuntimeError(f"Audit event {target.id} is immutable")
