"""Repository layer for database operations.

Repositories never commit. They run inside a session opened by the
TransactionCoordinator, which owns commit and rollback for the whole batch.
"""

import logging
from typing import Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import asc

from recinventory.models.audit_event import AuditEvent
from recinventory.models.constants import SERIES_ENTITY
from recinventory.models.series import Series
from recinventory.database.models import SeriesDB, SeriesTagDB, AuditEventDB

logger = logging.getLogger(__name__)


class SeriesRepository:
    """Repository for Series database operations."""

    def __init__(self, db: Session):
        self.db = db

    def insert(self, series: Series) -> SeriesDB:
        """Insert a new series and flush so storage assigns its _id."""
        series_db = SeriesDB.from_pydantic(series.model_copy(update={"id": None}))
        self.db.add(series_db)
        self.db.flush()
        logger.debug(f"Inserted series {series_db.id}: {series.record_series_title[:50]}")
        return series_db

    def update(self, series: Series) -> SeriesDB:
        """Write every mutable field of an existing series (matched by _id)."""
        series_db = self.db.get(SeriesDB, series.id)
        if series_db is None:
            raise ValueError(f"Series {series.id} not found")
        series_db.apply(series)
        self.db.flush()
        logger.debug(f"Updated series {series.id}: {series.record_series_title[:50]}")
        return series_db

    def delete(self, series_id: int) -> Optional[Series]:
        """Delete a series by _id; returns the deleted record, or None if absent."""
        series_db = self.db.get(SeriesDB, series_id)
        if series_db is None:
            return None
        snapshot = series_db.to_pydantic()
        self.db.delete(series_db)
        self.db.flush()
        logger.debug(f"Deleted series {series_id}")
        return snapshot

    def get(self, series_id: int) -> Optional[Series]:
        """Get series by _id."""
        series_db = self.db.get(SeriesDB, series_id)
        return series_db.to_pydantic() if series_db else None

    def get_all(self) -> List[Series]:
        """Get all series ordered by _id."""
        rows = self.db.query(SeriesDB).order_by(asc(SeriesDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_many(self, series_ids: Iterable[int]) -> List[Series]:
        ids = list(series_ids)
        if not ids:
            return []
        rows = self.db.query(SeriesDB).filter(SeriesDB.id.in_(ids)).order_by(asc(SeriesDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_by_schedule(self, schedule_number: str) -> List[Series]:
        """All series sharing a schedule_number, ordered by _id."""
        rows = self.db.query(SeriesDB).filter(
            SeriesDB.schedule_number == schedule_number
        ).order_by(asc(SeriesDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_by_division(self, division: str) -> List[Series]:
        rows = self.db.query(SeriesDB).filter(SeriesDB.division == division).order_by(asc(SeriesDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_by_tag(self, tag: str) -> List[Series]:
        """Series carrying a tag, via the multi-entry tag index."""
        rows = (
            self.db.query(SeriesDB)
            .join(SeriesTagDB, SeriesTagDB.series_id == SeriesDB.id)
            .filter(SeriesTagDB.tag == tag)
            .order_by(asc(SeriesDB.id))
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def count(self) -> int:
        return self.db.query(SeriesDB).count()


class AuditEventRepository:
    """Append-only repository for AuditEvent records."""

    def __init__(self, db: Session):
        self.db = db

    def add_all(self, events: Iterable[AuditEvent]) -> List[AuditEvent]:
        """Append events in order and flush so each gets its id."""
        rows = [AuditEventDB.from_pydantic(audit_event) for audit_event in events]
        self.db.add_all(rows)
        self.db.flush()
        return [row.to_pydantic() for row in rows]

    def get_all(self) -> List[AuditEvent]:
        rows = self.db.query(AuditEventDB).order_by(asc(AuditEventDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_for_entity(self, entity_id: int, entity: str = SERIES_ENTITY) -> List[AuditEvent]:
        """Events for one record, oldest first (uses the (entity, entity_id, at) index)."""
        rows = self.db.query(AuditEventDB).filter(
            AuditEventDB.entity == entity,
            AuditEventDB.entity_id == entity_id,
        ).order_by(asc(AuditEventDB.at), asc(AuditEventDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_for_entities(self, entity_ids: Iterable[int], entity: str = SERIES_ENTITY) -> List[AuditEvent]:
        ids = list(entity_ids)
        if not ids:
            return []
        rows = self.db.query(AuditEventDB).filter(
            AuditEventDB.entity == entity,
            AuditEventDB.entity_id.in_(ids),
        ).order_by(asc(AuditEventDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def get_by_action(self, action: str) -> List[AuditEvent]:
        rows = self.db.query(AuditEventDB).filter(AuditEventDB.action == action).order_by(asc(AuditEventDB.id)).all()
        return [row.to_pydantic() for row in rows]

    def fingerprints(self) -> Dict[tuple, int]:
        """(entity, entity_id, action, actor, at) -> count, for duplicate detection on import."""
        out: Dict[tuple, int] = {}
        query = self.db.query(
            AuditEventDB.entity, AuditEventDB.entity_id, AuditEventDB.action, AuditEventDB.actor, AuditEventDB.at
        )
        for row in query.all():
            key = tuple(row)
            out[key] = out.get(key, 0) + 1
        return out

    def count(self) -> int:
        return self.db.query(AuditEventDB).count()
