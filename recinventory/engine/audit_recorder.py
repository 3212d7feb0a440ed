"""Audit event construction with deferred entity_id remapping.

Inside an import batch a freshly inserted series has no ``_id`` until storage
assigns one, so its audit event cannot be built up front. The recorder queues
events against a batch reference instead, and turns references into ids only
when the upsert engine hands over its reference -> ``_id`` mapping. The events
are then written in the same session, before the transaction commits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Hashable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from recinventory.database.repository import AuditEventRepository
from recinventory.errors import MappingError
from recinventory.models.audit_event import AuditEvent
from recinventory.models.constants import DEFAULT_ACTOR, SERIES_ENTITY
from recinventory.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingRef:
    """A series inserted in the current batch, known only by its batch reference."""
    ref: Hashable


@dataclass
class QueuedEvent:
    action: str
    target: Union[int, PendingRef]
    payload: Dict[str, Any]
    actor: str
    at: datetime
    entity: str = SERIES_ENTITY
    # Imported history is skipped when an identical event is already stored
    historical: bool = False


@dataclass
class FlushResult:
    written: List[AuditEvent] = field(default_factory=list)
    skipped: int = 0


class AuditRecorder:
    """Collects one audit event per mutation and writes them at the end of a batch."""

    def __init__(self, actor: str = DEFAULT_ACTOR, at: Optional[datetime] = None):
        self.actor = actor
        self.at = at or utcnow()
        self.queue: List[QueuedEvent] = []

    def record(self, action: str, entity_id: int, payload: Mapping[str, Any]) -> None:
        """Queue an event for a series whose _id is already known."""
        self.queue.append(QueuedEvent(action, entity_id, dict(payload), self.actor, self.at))

    def record_pending(self, action: str, ref: Hashable, payload: Mapping[str, Any]) -> None:
        """Queue an event for a series inserted in this batch."""
        self.queue.append(QueuedEvent(action, PendingRef(ref), dict(payload), self.actor, self.at))

    def record_imported(self, audit_event: AuditEvent, ref: Hashable) -> None:
        """Queue a historical event from an import payload, keyed by its series' batch reference."""
        self.queue.append(QueuedEvent(
            action=audit_event.action,
            target=PendingRef(ref),
            payload=dict(audit_event.payload),
            actor=audit_event.actor,
            at=audit_event.at,
            entity=audit_event.entity,
            historical=True,
        ))

    def resolve(self, mapping: Mapping[Hashable, int]) -> List[QueuedEvent]:
        """Replace every pending reference with its assigned _id.

        Raises:
            MappingError: if any reference has no entry in the mapping
        """
        unresolved = [queued for queued in self.queue
                      if isinstance(queued.target, PendingRef) and queued.target.ref not in mapping]
        if unresolved:
            refs = sorted({repr(queued.target.ref) for queued in unresolved})
            raise MappingError(
                f"{len(unresolved)} audit events could not be mapped to an inserted series",
                [{"record": None, "ref": ref, "message": "no _id assigned for this reference"} for ref in refs],
            )
        for queued in self.queue:
            if isinstance(queued.target, PendingRef):
                queued.target = mapping[queued.target.ref]
        return self.queue

    def flush(self, session: Session, mapping: Mapping[Hashable, int]) -> FlushResult:
        """Remap pending references and append the queued events in the caller's session."""
        self.resolve(mapping)
        repo = AuditEventRepository(session)

        known: Dict[tuple, int] = {}
        if any(queued.historical for queued in self.queue):
            known = repo.fingerprints()

        result = FlushResult()
        to_write: List[AuditEvent] = []
        for queued in self.queue:
            fingerprint = (queued.entity, queued.target, queued.action, queued.actor, queued.at)
            if queued.historical and known.get(fingerprint, 0) > 0:
                known[fingerprint] -= 1
                result.skipped += 1
                continue
            to_write.append(AuditEvent(
                entity=queued.entity,
                entity_id=queued.target,
                action=queued.action,
                actor=queued.actor,
                at=queued.at,
                payload=queued.payload,
            ))

        result.written = repo.add_all(to_write)
        self.queue = []
        if result.skipped:
            logger.info(f"Skipped {result.skipped} imported audit events already present")
        logger.debug(f"Wrote {len(result.written)} audit events")
        return result


def audit_payload(series, **extra: Any) -> Dict[str, Any]:
    """Identifying details of a series for an audit payload."""
    payload: Dict[str, Any] = {
        "schedule_number": series.schedule_number,
        "item_number": series.item_number,
        "record_series_title": series.record_series_title,
    }
    payload.update(extra)
    return payload

