"""Records inventory service.

The narrow API the UI (or the HTTP app) uses. Every mutation runs as one batch
inside ``TransactionCoordinator.atomic()``:

    normalize -> validate -> resolve keys -> plan -> apply -> audit -> commit

Nothing is written unless the whole batch, audit events included, commits.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from recinventory.database.repository import AuditEventRepository, SeriesRepository
from recinventory.database.transaction import TransactionCoordinator
from recinventory.engine.audit_recorder import AuditRecorder, audit_payload
from recinventory.engine.key_resolver import KeyIndex, KeyMatch
from recinventory.engine.normalize import normalize_record
from recinventory.engine.search import SearchCriteria, search
from recinventory.engine.upsert import UpsertEngine, UpsertOutcome, UpsertPlan
from recinventory.engine.validator import validate_record
from recinventory.errors import SeriesNotFoundError
from recinventory.interchange.codec import DecodedPayload, count_schedules, decode_payload, export_snapshot, loads
from recinventory.models.audit_event import AuditAction, AuditEvent
from recinventory.models.constants import DEFAULT_ACTOR, DEFAULT_FALLBACK_FIELDS
from recinventory.models.results import BatchResult, SavedSeries, ScheduleSummary, ValidationResult
from recinventory.models.series import Series
from recinventory.timeutil import utcnow

logger = logging.getLogger(__name__)


class InventoryService:
    """Facade over the reconciliation engine and the record store."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        actor: Optional[str] = None,
        import_fallback_fields: Sequence[str] = DEFAULT_FALLBACK_FIELDS,
    ):
        self.coordinator = coordinator
        self.actor = actor or os.getenv("AUDIT_ACTOR", DEFAULT_ACTOR)
        self.import_fallback_fields = tuple(import_fallback_fields)

    def _tools(self):
        now = utcnow()
        return UpsertEngine(now=now), AuditRecorder(actor=self.actor, at=now)

    @staticmethod
    def _result(plan: UpsertPlan, outcome: UpsertOutcome, written: int, processed: Iterable[Any]) -> BatchResult:
        processed = list(processed)
        return BatchResult(
            inserted=outcome.inserted,
            updated=outcome.updated,
            unchanged=outcome.unchanged,
            audit_events_written=written,
            series=len(processed),
            schedules=count_schedules(processed),
            series_ids=[outcome.id_by_ref[ref] for ref in plan.refs if ref in outcome.id_by_ref],
        )

    # -- read side ---------------------------------------------------------

    def validate(self, record: Mapping[str, Any]) -> ValidationResult:
        """Validate a record as it would be saved (after normalization)."""
        return validate_record(normalize_record(record))

    def resolve_key(
        self,
        record: Mapping[str, Any],
        existing: Optional[Iterable[Series]] = None,
        fallback_fields: Sequence[str] = (),
    ) -> KeyMatch:
        """Find the stored series a record would update, if any."""
        if existing is None:
            with self.coordinator.read() as session:
                existing = SeriesRepository(session).get_all()
        return KeyIndex(existing, fallback_fields).resolve(normalize_record(record))

    def get_series(self, series_id: int) -> Series:
        with self.coordinator.read() as session:
            series = SeriesRepository(session).get(series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    def search_series(self, criteria: Optional[SearchCriteria] = None) -> List[Series]:
        """Search the inventory; no criteria returns everything in _id order."""
        criteria = criteria or SearchCriteria()
        with self.coordinator.read() as session:
            repo = SeriesRepository(session)
            if criteria.schedule_number:
                candidates = repo.get_by_schedule(criteria.schedule_number)
            elif criteria.division:
                candidates = repo.get_by_division(criteria.division)
            elif len(criteria.tags) == 1:
                candidates = repo.get_by_tag(criteria.tags[0])
            else:
                candidates = repo.get_all()
        return search(candidates, criteria)

    def list_schedules(self) -> List[ScheduleSummary]:
        """Schedules regrouped from the series that carry a schedule_number."""
        with self.coordinator.read() as session:
            series = SeriesRepository(session).get_all()

        schedules: Dict[str, ScheduleSummary] = {}
        for item in series:
            if not item.schedule_number:
                continue
            summary = schedules.get(item.schedule_number)
            if summary is None:
                # Schedule-level values come from the oldest series in the schedule
                summary = ScheduleSummary(
                    schedule_number=item.schedule_number,
                    approval_status=item.approval_status,
                    approval_date=item.approval_date,
                    division=item.division,
                )
                schedules[item.schedule_number] = summary
            summary.series_count += 1
            if item.item_number:
                summary.item_numbers.append(item.item_number)
        return [schedules[number] for number in sorted(schedules)]

    def list_audit_events(self, entity_id: Optional[int] = None, action: Optional[str] = None) -> List[AuditEvent]:
        with self.coordinator.read() as session:
            repo = AuditEventRepository(session)
            if entity_id is not None:
                events = repo.get_for_entity(entity_id)
            elif action:
                events = repo.get_by_action(action)
            else:
                events = repo.get_all()
        if entity_id is not None and action:
            events = [audit_event for audit_event in events if audit_event.action == action]
        return events

    def export_all(self, series_ids: Optional[Iterable[int]] = None) -> Dict[str, Any]:
        """Export every series and audit event (or only the given series and their events)."""
        with self.coordinator.read() as session:
            return export_snapshot(session, series_ids)

    # -- write side --------------------------------------------------------

    def upsert_batch(self, records: Sequence[Mapping[str, Any]], fallback_fields: Sequence[str] = ()) -> BatchResult:
        """Insert or update a batch of records atomically.

        Records with a complete natural key update the stored series holding
        it; others match on ``fallback_fields`` or are inserted.

        Raises:
            ValidationError: if any record is invalid (nothing is written)
            DuplicateKeyError: if natural keys conflict within the batch or with storage
            TransactionAbortError: if storage fails; the batch is rolled back
        """
        engine, recorder = self._tools()
        with self.coordinator.atomic("upsert batch") as session:
            index = KeyIndex(SeriesRepository(session).get_all(), fallback_fields)
            plan = engine.plan(records, index)
            plan.raise_for_diagnostics()
            outcome = engine.apply(plan, session, recorder)
            flushed = recorder.flush(session, outcome.id_by_ref)
            result = self._result(plan, outcome, len(flushed.written),
                                  [normalize_record(record) for record in records])

        logger.info(
            f"Upserted {result.summary}: {result.inserted} inserted, "
            f"{result.updated} updated, {result.unchanged} unchanged"
        )
        return result

    def import_all(self, payload: Union[str, Mapping[str, Any], List[Any], DecodedPayload]) -> BatchResult:
        """Import an export document as one batch, remapping its audit history.

        Historical events follow their series to its new ``_id``; events already
        present are skipped, and events for series absent from the payload are
        counted as orphaned.
        """
        if isinstance(payload, DecodedPayload):
            decoded = payload
        elif isinstance(payload, str):
            decoded = loads(payload)
        else:
            decoded = decode_payload(payload)

        engine, recorder = self._tools()
        with self.coordinator.atomic("import") as session:
            index = KeyIndex(SeriesRepository(session).get_all(), self.import_fallback_fields)
            plan = engine.plan(decoded.records, index, insert_action=AuditAction.IMPORT.value)
            plan.raise_for_diagnostics()

            ref_by_source_id = {
                source_id: plan.refs[position]
                for position, source_id in enumerate(decoded.source_ids)
                if source_id is not None
            }
            orphaned = 0
            for audit_event in decoded.audit_events:
                ref = ref_by_source_id.get(audit_event.entity_id)
                if ref is None:
                    orphaned += 1
                    continue
                recorder.record_imported(audit_event, ref)

            outcome = engine.apply(plan, session, recorder)
            flushed = recorder.flush(session, outcome.id_by_ref)
            result = self._result(plan, outcome, len(flushed.written), decoded.records)
            result.audit_events_skipped = flushed.skipped
            result.audit_events_orphaned = orphaned

        if orphaned:
            logger.warning(f"Dropped {orphaned} imported audit events whose series is not in the payload")
        logger.info(
            f"Imported {result.summary}: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.audit_events_written} audit events"
        )
        return result

    def save_series(self, record: Mapping[str, Any], series_id: Optional[int] = None) -> SavedSeries:
        """Create a series, or update the one with ``series_id``.

        Creating a series whose natural key already exists is a DuplicateKeyError.
        """
        engine, recorder = self._tools()
        with self.coordinator.atomic("save series") as session:
            index = KeyIndex(SeriesRepository(session).get_all())
            if series_id is None:
                plan = engine.plan([record], index, insert_only=True)
            else:
                plan = engine.plan_update(series_id, record, index)
            plan.raise_for_diagnostics()
            outcome = engine.apply(plan, session, recorder)
            recorder.flush(session, outcome.id_by_ref)
            saved_id = outcome.id_by_ref[plan.refs[0]]
            series = SeriesRepository(session).get(saved_id)

        return SavedSeries(series=series, created=outcome.inserted == 1, changed=not outcome.unchanged)

    def delete_series(self, series_id: int) -> BatchResult:
        recorder = AuditRecorder(actor=self.actor)
        with self.coordinator.atomic("delete series") as session:
            deleted = SeriesRepository(session).delete(series_id)
            if deleted is None:
                raise SeriesNotFoundError(series_id)
            recorder.record(AuditAction.DELETE.value, series_id, audit_payload(deleted))
            flushed = recorder.flush(session, {})

        logger.info(f"Deleted series {series_id}")
        return BatchResult(
            deleted=1,
            audit_events_written=len(flushed.written),
            series=1,
            schedules=count_schedules([deleted]),
            series_ids=[series_id],
        )

    def bulk_update_schedule(self, schedule_number: str, changes: Mapping[str, Any]) -> BatchResult:
        """Apply the same schedule-level changes to every series of a schedule.

        Either every series is updated (one audit event each) or none is.
        An unknown schedule_number updates nothing and succeeds.
        """
        engine, recorder = self._tools()
        with self.coordinator.atomic(f"schedule {schedule_number} update") as session:
            rows = SeriesRepository(session).get_by_schedule(schedule_number)
            plan = engine.plan_schedule_update(schedule_number, changes, rows)
            plan.raise_for_diagnostics()
            outcome = engine.apply(plan, session, recorder)
            flushed = recorder.flush(session, outcome.id_by_ref)
            result = self._result(plan, outcome, len(flushed.written), rows)

        logger.info(f"Schedule {schedule_number}: updated {result.updated} of {result.series} series")
        return result

    def unassign_schedule(self, schedule_number: str) -> BatchResult:
        """Remove the schedule assignment from every series of a schedule."""
        engine, recorder = self._tools()
        with self.coordinator.atomic(f"schedule {schedule_number} unassign") as session:
            rows = SeriesRepository(session).get_by_schedule(schedule_number)
            plan = engine.plan_schedule_unassign(schedule_number, rows)
            outcome = engine.apply(plan, session, recorder)
            flushed = recorder.flush(session, outcome.id_by_ref)
            result = self._result(plan, outcome, len(flushed.written), rows)

        logger.info(f"Schedule {schedule_number}: unassigned {result.updated} series")
        return result

