"""Upsert engine: merges incoming records into the series store.

Planning and applying are separate steps. ``plan*`` reads only: it validates
every candidate, resolves it against a KeyIndex snapshot and collects per-record
diagnostics, so a bad batch is rejected before anything is written. ``apply``
then performs the inserts and updates inside the caller's transaction and
returns the reference -> ``_id`` mapping the AuditRecorder needs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from recinventory.database.repository import SeriesRepository
from recinventory.engine.audit_recorder import AuditRecorder, audit_payload
from recinventory.engine.key_resolver import KeyIndex, MatchRule, natural_key
from recinventory.engine.normalize import normalize_record, to_storage_values
from recinventory.engine.validator import validate_record
from recinventory.errors import DuplicateKeyError, SeriesNotFoundError, ValidationError
from recinventory.models.audit_event import AuditAction
from recinventory.models.constants import (
    EDITABLE_FIELDS,
    SCHEDULE_ASSIGNMENT_FIELDS,
    SCHEDULE_FIELDS,
)
from recinventory.models.series import Series
from recinventory.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


def record_ref(key: Optional[Tuple[str, str]], position: int) -> Hashable:
    """Batch reference of a record: its natural key, or its position when it has none."""
    if key is not None:
        return key
    return ("row", position)


@dataclass
class SeriesOperation:
    """One storage operation produced by planning."""
    kind: OperationKind
    position: int
    ref: Hashable
    series: Series
    action: str
    changed_fields: List[str] = field(default_factory=list)
    match_rule: MatchRule = MatchRule.NONE
    extra_payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UpsertPlan:
    """Operations for a batch, plus everything needed to report on it."""
    operations: List[SeriesOperation] = field(default_factory=list)
    refs: List[Hashable] = field(default_factory=list)
    # Records matched to a stored series (updated or unchanged)
    matched_ids: Dict[Hashable, int] = field(default_factory=dict)
    unchanged: int = 0
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)

    def raise_for_diagnostics(self) -> None:
        """Raise before any write if any record was rejected."""
        if not self.diagnostics:
            return
        if any(d["kind"] == "validation" for d in self.diagnostics):
            raise ValidationError(
                f"{len(self.diagnostics)} records failed validation",
                self.diagnostics,
            )
        raise DuplicateKeyError(
            f"{len(self.diagnostics)} records conflict on (schedule_number, item_number)",
            self.diagnostics,
        )


@dataclass
class UpsertOutcome:
    """What apply() wrote."""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    # Natural key (or row reference) -> _id for records inserted in this batch
    assigned_ids: Dict[Hashable, int] = field(default_factory=dict)
    # Every processed record's reference -> _id
    id_by_ref: Dict[Hashable, int] = field(default_factory=dict)
    series: List[Series] = field(default_factory=list)


def _diagnostic(position: int, candidate: Mapping[str, Any], kind: str, message: str, **extra: Any) -> Dict[str, Any]:
    out = {
        "record": position,
        "kind": kind,
        "record_series_title": candidate.get("record_series_title"),
        "schedule_number": candidate.get("schedule_number"),
        "item_number": candidate.get("item_number"),
        "message": message,
    }
    out.update(extra)
    return out


class UpsertEngine:
    """Plans and applies series inserts and updates."""

    def __init__(self, now=None):
        self.now = now or utcnow()

    # -- merging -----------------------------------------------------------

    def merge(self, existing: Series, changes: Mapping[str, Any]) -> Tuple[Series, List[str]]:
        """Overlay the fields present in ``changes`` onto a stored series.

        ``_id`` and ``created_at`` are preserved. When anything changed,
        ``updated_at`` is refreshed and ``version`` bumped.
        """
        current = existing.model_dump()
        changed: List[str] = []
        for name, value in changes.items():
            if name not in EDITABLE_FIELDS:
                continue
            if current.get(name) != value:
                current[name] = value
                changed.append(name)
        if not changed:
            return existing, []
        current["updated_at"] = self.now
        current["version"] = (existing.version or 0) + 1
        return Series.model_validate(current), changed

    def build_new(self, candidate: Mapping[str, Any]) -> Series:
        """Fresh Series for insert: storage assigns _id, version starts at 1."""
        data = {name: value for name, value in candidate.items() if name in EDITABLE_FIELDS}
        data["created_at"] = candidate.get("created_at") or self.now
        data["updated_at"] = self.now
        data["version"] = 1
        series = Series.model_validate(data)
        series.created_at = to_naive_utc(series.created_at)
        return series

    # -- planning ----------------------------------------------------------

    def plan(
        self,
        candidates: Sequence[Mapping[str, Any]],
        index: KeyIndex,
        *,
        insert_only: bool = False,
        insert_action: str = AuditAction.CREATE.value,
        update_action: str = AuditAction.UPDATE.value,
    ) -> UpsertPlan:
        """Resolve each candidate to an insert, an update or a no-op.

        Args:
            candidates: Raw incoming records (normalized here)
            index: Snapshot of stored series to match against
            insert_only: Treat a natural-key match as a conflict instead of an update
            insert_action: Audit action for inserts
            update_action: Audit action for updates

        Returns:
            UpsertPlan; call raise_for_diagnostics() before apply()
        """
        plan = UpsertPlan()
        batch_keys: Dict[Tuple[str, str], int] = {}
        claimed_ids: Set[int] = set()

        for position, raw in enumerate(candidates):
            candidate = normalize_record(raw, keep_timestamps=True)
            key = natural_key(candidate)
            ref = record_ref(key, position)
            plan.refs.append(ref)

            result = validate_record(candidate)
            if not result.valid:
                plan.diagnostics.append(_diagnostic(
                    position, candidate, "validation", "Record failed validation",
                    fields=result.by_field(),
                ))
                continue
            candidate = to_storage_values(candidate)

            if key is not None and key in batch_keys:
                plan.diagnostics.append(_diagnostic(
                    position, candidate, "duplicate_key",
                    f"Duplicates record {batch_keys[key]} in this batch",
                ))
                continue

            match = index.resolve(candidate, claimed_ids)
            if match.existing is not None and insert_only:
                plan.diagnostics.append(_diagnostic(
                    position, candidate, "duplicate_key",
                    f"Already exists as series {match.existing.id}",
                    existing_id=match.existing.id,
                ))
                continue

            try:
                if match.existing is None:
                    series = self.build_new(candidate)
                    if key is not None:
                        batch_keys[key] = position
                    plan.operations.append(SeriesOperation(
                        OperationKind.INSERT, position, ref, series, insert_action,
                        changed_fields=sorted(n for n in candidate if n in EDITABLE_FIELDS),
                    ))
                    continue

                existing = match.existing
                changes = {n: v for n, v in candidate.items() if n != "created_at"}
                merged, changed = self.merge(existing, changes)
            except PydanticValidationError as e:
                plan.diagnostics.append(_diagnostic(position, candidate, "validation", str(e)))
                continue

            new_key = merged.natural_key
            conflict = self._key_conflict(new_key, existing.id, index, batch_keys)
            if conflict:
                plan.diagnostics.append(_diagnostic(position, candidate, "duplicate_key", conflict))
                continue

            claimed_ids.add(existing.id)
            if new_key is not None:
                batch_keys[new_key] = position
            plan.matched_ids[ref] = existing.id
            if not changed:
                plan.unchanged += 1
                continue
            plan.operations.append(SeriesOperation(
                OperationKind.UPDATE, position, ref, merged, update_action,
                changed_fields=changed, match_rule=match.rule,
            ))

        return plan

    def plan_update(self, series_id: int, record: Mapping[str, Any], index: KeyIndex) -> UpsertPlan:
        """Plan an update-by-_id of a single stored series."""
        existing = index.by_id.get(series_id)
        if existing is None:
            raise SeriesNotFoundError(series_id)

        plan = UpsertPlan()
        candidate = normalize_record(record)
        ref = record_ref(existing.natural_key, 0)
        plan.refs.append(ref)

        result = validate_record({**existing.model_dump(), **candidate})
        if not result.valid:
            plan.diagnostics.append(_diagnostic(
                0, candidate, "validation", "Record failed validation", fields=result.by_field(),
            ))
            return plan

        merged, changed = self.merge(existing, to_storage_values(candidate))
        conflict = self._key_conflict(merged.natural_key, existing.id, index, {})
        if conflict:
            plan.diagnostics.append(_diagnostic(0, candidate, "duplicate_key", conflict))
            return plan

        plan.matched_ids[ref] = existing.id
        if changed:
            plan.operations.append(SeriesOperation(
                OperationKind.UPDATE, 0, ref, merged, AuditAction.UPDATE.value,
                changed_fields=changed, match_rule=MatchRule.NATURAL_KEY,
            ))
        else:
            plan.unchanged = 1
        return plan

    def plan_schedule_update(
        self,
        schedule_number: str,
        changes: Mapping[str, Any],
        rows: Sequence[Series],
    ) -> UpsertPlan:
        """Apply the same schedule-level changes to every series of a schedule.

        Any field outside the schedule-scoped set, or any row that would become
        invalid, rejects the whole edit.
        """
        plan = UpsertPlan()
        normalized = normalize_record(changes)
        for name in changes:
            if name not in SCHEDULE_FIELDS:
                plan.diagnostics.append({
                    "record": None,
                    "kind": "validation",
                    "schedule_number": schedule_number,
                    "message": "Not a schedule-level field",
                    "fields": {name: [f"{name} cannot be changed for a whole schedule"]},
                })
        if plan.diagnostics:
            return plan

        normalized = {n: v for n, v in normalized.items() if n in SCHEDULE_FIELDS}
        for position, existing in enumerate(rows):
            ref = record_ref(existing.natural_key, position)
            plan.refs.append(ref)
            proposed = {**existing.model_dump(), **normalized}
            result = validate_record(proposed)
            if not result.valid:
                plan.diagnostics.append(_diagnostic(
                    position, proposed, "validation", "Schedule change makes this series invalid",
                    existing_id=existing.id, fields=result.by_field(),
                ))
                continue
            merged, changed = self.merge(existing, to_storage_values(normalized))
            plan.matched_ids[ref] = existing.id
            if not changed:
                plan.unchanged += 1
                continue
            plan.operations.append(SeriesOperation(
                OperationKind.UPDATE, position, ref, merged, AuditAction.SCHEDULE_BULK_UPDATE.value,
                changed_fields=changed,
                extra_payload={"bulk_update_fields": sorted(normalized)},
            ))
        return plan

    def plan_schedule_unassign(self, schedule_number: str, rows: Sequence[Series]) -> UpsertPlan:
        """Clear the schedule assignment from every series of a schedule."""
        plan = UpsertPlan()
        clearing = {name: None for name in SCHEDULE_ASSIGNMENT_FIELDS}
        for position, existing in enumerate(rows):
            ref = record_ref(existing.natural_key, position)
            plan.refs.append(ref)
            merged, changed = self.merge(existing, clearing)
            plan.matched_ids[ref] = existing.id
            plan.operations.append(SeriesOperation(
                OperationKind.UPDATE, position, ref, merged, AuditAction.SCHEDULE_UNASSIGNED.value,
                changed_fields=changed,
                extra_payload={"previous_schedule_number": schedule_number},
            ))
        return plan

    @staticmethod
    def _key_conflict(new_key, own_id: int, index: KeyIndex, batch_keys: Mapping) -> Optional[str]:
        if new_key is None:
            return None
        owner = index.owner_of(new_key)
        if owner is not None and owner.id != own_id:
            return f"Schedule {new_key[0]} item {new_key[1]} already belongs to series {owner.id}"
        if new_key in batch_keys:
            return f"Schedule {new_key[0]} item {new_key[1]} duplicates record {batch_keys[new_key]} in this batch"
        return None

    # -- applying ----------------------------------------------------------

    def apply(self, plan: UpsertPlan, session: Session, recorder: AuditRecorder) -> UpsertOutcome:
        """Write the planned operations and queue one audit event per mutation.

        Inserted records are queued against their batch reference; the caller
        passes ``outcome.id_by_ref`` to ``recorder.flush`` once all writes are done.
        """
        plan.raise_for_diagnostics()
        repo = SeriesRepository(session)
        outcome = UpsertOutcome(unchanged=plan.unchanged)
        outcome.id_by_ref.update(plan.matched_ids)

        for op in plan.operations:
            payload = audit_payload(op.series, changed_fields=op.changed_fields, **op.extra_payload)
            if op.kind == OperationKind.INSERT:
                row = repo.insert(op.series)
                outcome.assigned_ids[op.ref] = row.id
                outcome.id_by_ref[op.ref] = row.id
                outcome.inserted += 1
                outcome.series.append(row.to_pydantic())
                recorder.record_pending(op.action, op.ref, payload)
            else:
                row = repo.update(op.series)
                outcome.updated += 1
                outcome.series.append(row.to_pydantic())
                recorder.record(op.action, op.series.id, payload)

        logger.debug(
            f"Applied batch: {outcome.inserted} inserted, {outcome.updated} updated, "
            f"{outcome.unchanged} unchanged"
        )
        return outcome
