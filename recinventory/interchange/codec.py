"""Export and import of the full inventory as a JSON document.

Export shape::

    {
        "metadata": {"exported_at", "format_version", "total_series",
                     "total_schedules", "filtered_export"},
        "series": [...],
        "audit_events": [...]
    }

Import also accepts a bare list of series and the legacy ``series_items`` key.
Schedules are never exported; they are regrouped from ``schedule_number``.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from recinventory.database.repository import AuditEventRepository, SeriesRepository
from recinventory.engine.normalize import apply_legacy_aliases, split_array
from recinventory.errors import ValidationError
from recinventory.models.audit_event import AuditEvent
from recinventory.models.constants import (
    DEFAULT_ACTOR,
    EXPORT_FORMAT_VERSION,
    FORBIDDEN_DERIVED_FIELDS,
    INTERNAL_FIELDS,
    LIST_FIELDS,
    OBSOLETE_FIELDS,
    SERIES_ENTITY,
)
from recinventory.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Keys under which older exports carried the series list
SERIES_KEYS = ("series", "series_items")


@dataclass
class DecodedPayload:
    """Import payload split into records, their source ids and historical events."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    # Source _id per record (same positions as ``records``), None when absent
    source_ids: List[Optional[int]] = field(default_factory=list)
    # Historical events; entity_id still holds the source _id
    audit_events: List[AuditEvent] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def count_schedules(series: Iterable[Any]) -> int:
    """Distinct non-blank schedule_number values."""
    numbers = set()
    for item in series:
        value = item.get("schedule_number") if isinstance(item, dict) else item.schedule_number
        if isinstance(value, str) and value.strip():
            numbers.add(value.strip())
    return len(numbers)


def export_snapshot(session: Session, series_ids: Optional[Iterable[int]] = None) -> Dict[str, Any]:
    """Dump series and audit events as a JSON-ready dict.

    Args:
        session: Session over committed state
        series_ids: Limit the dump to these series and their events

    Returns:
        Export document (see module docstring)
    """
    series_repo = SeriesRepository(session)
    audit_repo = AuditEventRepository(session)

    if series_ids is None:
        series = series_repo.get_all()
        events = audit_repo.get_all()
    else:
        series = series_repo.get_many(series_ids)
        events = audit_repo.get_for_entities([item.id for item in series])

    logger.info(f"Exporting {len(series)} series and {len(events)} audit events")
    return {
        "metadata": {
            "exported_at": utcnow().isoformat(),
            "format_version": EXPORT_FORMAT_VERSION,
            "total_series": len(series),
            "total_schedules": count_schedules(series),
            "filtered_export": series_ids is not None,
        },
        "series": [item.to_export() for item in series],
        "audit_events": [audit_event.to_export() for audit_event in events],
    }


def _source_id(item: Dict[str, Any]) -> Optional[int]:
    value = item.get("_id", item.get("id"))
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def decode_series(item: Dict[str, Any]) -> Dict[str, Any]:
    """Canonicalize one imported series dict.

    Legacy names are aliased, delimited list strings split, and storage-managed,
    derived and obsolete fields removed. ``created_at`` is kept.
    """
    record = apply_legacy_aliases(item)
    created_at = record.get("created_at")
    for name in INTERNAL_FIELDS + FORBIDDEN_DERIVED_FIELDS + OBSOLETE_FIELDS:
        record.pop(name, None)
    for name in LIST_FIELDS:
        if isinstance(record.get(name), str):
            record[name] = split_array(record[name])
    if created_at:
        record["created_at"] = created_at
    return record


def _decode_audit_payload(payload: Any) -> Dict[str, Any]:
    # Older exports stored the payload as a JSON string
    if payload is None:
        return {}
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, str):
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            return {"raw": payload}
        return parsed if isinstance(parsed, dict) else {"raw": payload}
    return {"raw": payload}


def decode_audit_event(item: Dict[str, Any], imported_at) -> AuditEvent:
    data = {key: value for key, value in item.items() if key not in ("_id", "id")}
    data["payload"] = _decode_audit_payload(data.get("payload"))
    data.setdefault("entity", SERIES_ENTITY)
    if not data.get("actor"):
        data["actor"] = DEFAULT_ACTOR
    if not data.get("at"):
        data["at"] = imported_at
    audit_event = AuditEvent.model_validate(data)
    audit_event.at = to_naive_utc(audit_event.at)
    return audit_event


def decode_payload(payload: Any) -> DecodedPayload:
    """Split an import document into records and historical audit events.

    Raises:
        ValidationError: if the document has no series list, or an entry is malformed
    """
    if isinstance(payload, list):
        series_items: Any = payload
        raw_events: Any = []
        metadata: Dict[str, Any] = {}
    elif isinstance(payload, dict):
        series_items = next((payload[key] for key in SERIES_KEYS if key in payload), None)
        raw_events = payload.get("audit_events") or []
        metadata = payload.get("metadata") or {}
    else:
        series_items = None
        raw_events, metadata = [], {}

    if not isinstance(series_items, list):
        raise ValidationError(
            "Invalid import file: missing series array",
            [{"record": None, "message": "expected 'series' to be a list"}],
        )
    if not isinstance(raw_events, list):
        raise ValidationError(
            "Invalid import file: audit_events must be a list",
            [{"record": None, "message": "expected 'audit_events' to be a list"}],
        )

    decoded = DecodedPayload(metadata=dict(metadata))
    diagnostics: List[Dict[str, Any]] = []
    for position, item in enumerate(series_items):
        if not isinstance(item, dict):
            diagnostics.append({"record": position, "kind": "validation", "message": "Series entry must be an object"})
            continue
        decoded.source_ids.append(_source_id(item))
        decoded.records.append(decode_series(item))

    imported_at = utcnow()
    for position, item in enumerate(raw_events):
        if not isinstance(item, dict):
            diagnostics.append({"audit_event": position, "kind": "validation", "message": "Audit event must be an object"})
            continue
        try:
            decoded.audit_events.append(decode_audit_event(item, imported_at))
        except PydanticValidationError as e:
            diagnostics.append({"audit_event": position, "kind": "validation", "message": str(e)})

    if diagnostics:
        raise ValidationError(f"Invalid import file: {len(diagnostics)} malformed entries", diagnostics)

    logger.debug(
        f"Decoded {len(decoded.records)} series and {len(decoded.audit_events)} audit events "
        f"(format {metadata.get('format_version') or metadata.get('version') or 'unknown'})"
    )
    return decoded


def dumps(snapshot: Dict[str, Any]) -> str:
    return json.dumps(snapshot, indent=2)


def loads(text: str) -> DecodedPayload:
    """Parse an export file's text and decode it."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"Invalid import file: {e.msg}",
            [{"record": None, "message": f"line {e.lineno}, column {e.colno}: {e.msg}"}],
        ) from e
    return decode_payload(payload)
