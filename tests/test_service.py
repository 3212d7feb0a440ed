"""End-to-end tests for InventoryService batches, bulk edits and import/export."""

import pytest

from recinventory.engine.search import SearchCriteria
from recinventory.errors import DuplicateKeyError, SeriesNotFoundError, ValidationError
from recinventory.models.audit_event import AuditAction

TEST_ACTOR = "test-user"


def _natural_keys(service):
    return [s.natural_key for s in service.search_series() if s.natural_key]


class TestUpsertBatch:
    """Batch upserts against the (schedule_number, item_number) key."""

    def test_one_schedule_three_series(self, service, schedule_records):
        result = service.upsert_batch(schedule_records)

        assert result.summary == "1 schedules, 3 series"
        assert result.inserted == 3
        assert result.audit_events_written == 3
        assert len(result.series_ids) == 3
        assert result.series_ids == sorted(result.series_ids)

    def test_second_upsert_updates_in_place(self, service, schedule_records, make_record):
        first = service.upsert_batch(schedule_records)
        second = service.upsert_batch([make_record(item_number="2", record_series_title="Agendas (Revised)")])

        assert second.inserted == 0
        assert second.updated == 1
        assert second.series_ids == [first.series_ids[1]]
        stored = service.get_series(first.series_ids[1])
        assert stored.record_series_title == "Agendas (Revised)"
        assert stored.version == 2

    def test_resubmitting_same_batch_is_unchanged(self, service, schedule_records):
        service.upsert_batch(schedule_records)
        events_before = len(service.list_audit_events())

        again = service.upsert_batch(schedule_records)

        assert (again.inserted, again.updated, again.unchanged) == (0, 0, 3)
        assert again.audit_events_written == 0
        assert len(service.list_audit_events()) == events_before

    def test_application_number_alias(self, service, make_record):
        legacy = make_record(item_number="7")
        legacy["application_number"] = legacy.pop("schedule_number")

        result = service.upsert_batch([legacy])
        stored = service.get_series(result.series_ids[0])

        assert stored.schedule_number == "25-012"
        assert "application_number" not in stored.to_export()
        # Same key under the canonical name updates, not inserts
        again = service.upsert_batch([make_record(item_number="7", notes="now canonical")])
        assert again.updated == 1

    def test_within_batch_duplicate_key_writes_nothing(self, service, make_record):
        with pytest.raises(DuplicateKeyError):
            service.upsert_batch([make_record(item_number="1"), make_record(item_number="1", notes="dup")])
        assert service.search_series() == []
        assert service.list_audit_events() == []

    def test_invalid_record_writes_nothing(self, service, make_record):
        with pytest.raises(ValidationError) as exc_info:
            service.upsert_batch([make_record(item_number="1"), make_record(item_number="2", approval_status="done")])
        assert exc_info.value.diagnostics[0]["record"] == 1
        assert service.search_series() == []

    def test_infinite_number_writes_nothing(self, service, make_record):
        with pytest.raises(ValidationError) as exc_info:
            service.upsert_batch([make_record(retention_term="inf")])
        assert "retention_term" in exc_info.value.diagnostics[0]["fields"]
        assert service.search_series() == []

    def test_approval_status_input_is_case_insensitive(self, service, make_record):
        result = service.upsert_batch([make_record(approval_status="APPROVED")])
        assert service.get_series(result.series_ids[0]).approval_status == "approved"

    def test_keyless_records_are_never_merged_without_fallback(self, service):
        service.upsert_batch([{"record_series_title": "Loose"}])
        service.upsert_batch([{"record_series_title": "Loose"}])
        assert len(service.search_series()) == 2

    def test_fallback_fields_match_keyless_records(self, service):
        service.upsert_batch([{"record_series_title": "Loose", "division": "HR"}])
        result = service.upsert_batch(
            [{"record_series_title": "Loose", "division": "HR", "notes": "matched"}],
            fallback_fields=("record_series_title", "division"),
        )
        assert result.updated == 1
        assert len(service.search_series()) == 1

    def test_natural_keys_stay_unique(self, service, schedule_records, make_record):
        service.upsert_batch(schedule_records)
        service.upsert_batch([make_record(item_number="1", notes="x"), make_record(item_number="4")])
        keys = _natural_keys(service)
        assert len(keys) == len(set(keys)) == 4

    def test_present_is_stored_verbatim_and_nothing_is_derived(self, service, make_record):
        result = service.upsert_batch([make_record(dates_covered_end="present", retention_text="Permanent")])
        exported = service.get_series(result.series_ids[0]).to_export()

        assert exported["dates_covered_end"] == "present"
        for derived in ("open_ended", "retention_is_permanent", "retention_status", "schedule_id"):
            assert derived not in exported

    def test_search_by_tag(self, service, make_record):
        service.upsert_batch([
            make_record(item_number="1", tags=["minutes", "board"]),
            make_record(item_number="2", tags=["payroll"]),
            make_record(item_number="3", tags="board; audit"),
        ])

        assert [s.item_number for s in service.search_series(SearchCriteria(tags=["board"]))] == ["1", "3"]
        assert [s.item_number for s in service.search_series(SearchCriteria(tags=["payroll", "audit"]))] == ["2", "3"]
        assert service.search_series(SearchCriteria(tags=["unknown"])) == []


class TestSaveAndDelete:
    def test_create_then_update_by_id(self, service, make_record):
        created = service.save_series(make_record())
        assert created.created is True
        assert created.series.version == 1

        updated = service.save_series({"notes": "Reviewed 2024"}, series_id=created.series.id)
        assert updated.created is False
        assert updated.changed is True
        assert updated.series.notes == "Reviewed 2024"
        assert updated.series.version == 2
        assert updated.series.created_at == created.series.created_at

    def test_noop_update_is_not_a_mutation(self, service, make_record):
        created = service.save_series(make_record())
        same = service.save_series({"notes": None}, series_id=created.series.id)
        assert same.changed is False
        assert same.series.version == 1
        assert len(service.list_audit_events(entity_id=created.series.id)) == 1

    def test_create_with_existing_key_is_duplicate(self, service, make_record):
        service.save_series(make_record())
        with pytest.raises(DuplicateKeyError):
            service.save_series(make_record(record_series_title="Copy"))

    def test_update_unknown_id(self, service):
        with pytest.raises(SeriesNotFoundError):
            service.save_series({"notes": "x"}, series_id=404)

    def test_delete_records_event_that_outlives_series(self, service, make_record):
        created = service.save_series(make_record())
        result = service.delete_series(created.series.id)

        assert result.deleted == 1
        with pytest.raises(SeriesNotFoundError):
            service.get_series(created.series.id)
        actions = [e.action for e in service.list_audit_events(entity_id=created.series.id)]
        assert actions == ["create", "delete"]

    def test_delete_unknown_id(self, service):
        with pytest.raises(SeriesNotFoundError):
            service.delete_series(1)

    def test_ids_are_not_reused_after_delete(self, service, make_record):
        first = service.save_series(make_record(item_number="1"))
        service.delete_series(first.series.id)
        second = service.save_series(make_record(item_number="1"))
        assert second.series.id > first.series.id


class TestScheduleBulkEdit:
    """Schedule-wide edits update every series of the schedule, or none."""

    def test_bulk_approval(self, service, schedule_records, make_record):
        service.upsert_batch(schedule_records + [make_record(schedule_number="25-013", item_number="1")])

        result = service.bulk_update_schedule("25-012", {"approval_status": "approved", "approval_date": "2024-05-01"})

        assert result.updated == 3
        assert result.audit_events_written == 3
        in_schedule = service.search_series(SearchCriteria(schedule_number="25-012"))
        assert {(s.approval_status, s.approval_date) for s in in_schedule} == {("approved", "2024-05-01")}
        other = service.search_series(SearchCriteria(schedule_number="25-013"))
        assert other[0].approval_status is None

        events = service.list_audit_events(action=AuditAction.SCHEDULE_BULK_UPDATE.value)
        assert sorted(e.entity_id for e in events) == sorted(s.id for s in in_schedule)
        assert all(e.actor == TEST_ACTOR for e in events)
        assert events[0].payload["bulk_update_fields"] == ["approval_date", "approval_status"]

    def test_one_invalid_row_rejects_whole_edit(self, service, schedule_records):
        service.upsert_batch(schedule_records)
        events_before = len(service.list_audit_events())

        with pytest.raises(ValidationError):
            service.bulk_update_schedule("25-012", {"approval_date": "05/01/2024"})

        assert all(s.approval_date is None for s in service.search_series())
        assert len(service.list_audit_events()) == events_before

    def test_non_schedule_field_is_rejected(self, service, schedule_records):
        service.upsert_batch(schedule_records)
        with pytest.raises(ValidationError):
            service.bulk_update_schedule("25-012", {"item_number": "9"})

    def test_unknown_schedule_succeeds_with_zero_counts(self, service):
        result = service.bulk_update_schedule("99-999", {"approval_status": "approved"})
        assert (result.updated, result.series, result.audit_events_written) == (0, 0, 0)

    def test_unassign_schedule(self, service, schedule_records):
        service.upsert_batch(schedule_records)

        result = service.unassign_schedule("25-012")

        assert result.updated == 3
        assert service.list_schedules() == []
        assert all(s.schedule_number is None for s in service.search_series())
        assert len(service.list_audit_events(action="schedule_unassigned")) == 3

    def test_list_schedules(self, service, schedule_records, make_record):
        service.upsert_batch(schedule_records + [make_record(schedule_number="24-001", item_number="1"),
                                                 {"record_series_title": "Unscheduled"}])
        schedules = service.list_schedules()
        assert [(s.schedule_number, s.series_count) for s in schedules] == [("24-001", 1), ("25-012", 3)]
        assert schedules[1].item_numbers == ["1", "2", "3"]


class TestImportExport:
    """Round trips through the export document."""

    def test_export_shape(self, service, schedule_records):
        service.upsert_batch(schedule_records)
        exported = service.export_all()

        assert set(exported) == {"metadata", "series", "audit_events"}
        assert exported["metadata"]["total_series"] == 3
        assert exported["metadata"]["total_schedules"] == 1
        assert exported["metadata"]["format_version"] == "3.7"
        assert exported["metadata"]["filtered_export"] is False
        assert "_id" in exported["series"][0]

    def test_filtered_export(self, service, schedule_records):
        result = service.upsert_batch(schedule_records)
        exported = service.export_all(series_ids=result.series_ids[:1])
        assert exported["metadata"]["filtered_export"] is True
        assert [s["_id"] for s in exported["series"]] == result.series_ids[:1]
        assert {e["entity_id"] for e in exported["audit_events"]} == set(result.series_ids[:1])

    def test_import_of_own_export_is_idempotent(self, service, schedule_records):
        service.upsert_batch(schedule_records + [{"record_series_title": "Loose", "division": "HR"}])
        service.bulk_update_schedule("25-012", {"approval_status": "pending"})
        before = service.export_all()

        result = service.import_all(before)

        assert (result.inserted, result.updated, result.unchanged) == (0, 0, 4)
        assert result.audit_events_written == 0
        assert result.audit_events_skipped == len(before["audit_events"])
        after = service.export_all()
        assert after["series"] == before["series"]
        assert after["audit_events"] == before["audit_events"]

    def test_import_into_empty_store_remaps_history(self, service, target_service, schedule_records):
        service.upsert_batch(schedule_records)
        exported = service.export_all()
        # Occupy _id 1 so imported ids differ from the source ids
        target_service.upsert_batch([{"record_series_title": "Already Here"}])

        result = target_service.import_all(exported)

        assert result.summary == "1 schedules, 3 series"
        assert result.inserted == 3
        # 3 historical create events + 3 import events
        assert result.audit_events_written == 6
        for series_id in result.series_ids:
            actions = [e.action for e in target_service.list_audit_events(entity_id=series_id)]
            assert actions == ["create", "import"]
        source_ids = [s["_id"] for s in exported["series"]]
        assert result.series_ids != source_ids

    @pytest.mark.parametrize("records", [
        [{"record_series_title": "Correspondence"}, {"record_series_title": "Correspondence"}],
        [{"record_series_title": "Loose", "division": "HR"}, {"record_series_title": "Loose", "division": "HR"}],
        [{"record_series_title": "Loose", "division": "HR", "notes": "Outgoing"},
         {"record_series_title": "Loose", "division": "HR", "notes": "Incoming"}],
    ])
    def test_look_alike_keyless_series_round_trip(self, service, records):
        service.upsert_batch(records)
        before = service.export_all()

        result = service.import_all(before)

        assert (result.inserted, result.updated, result.unchanged) == (0, 0, 2)
        assert result.audit_events_written == 0
        after = service.export_all()
        assert after["series"] == before["series"]
        assert after["audit_events"] == before["audit_events"]

    def test_keyless_import_pairs_one_to_one_then_creates(self, service):
        service.upsert_batch([{"record_series_title": "Correspondence", "notes": "Outgoing"}])

        result = service.import_all([
            {"record_series_title": "Correspondence", "notes": "Outgoing"},
            {"record_series_title": "Correspondence", "notes": "Incoming"},
        ])

        assert (result.inserted, result.unchanged) == (1, 1)
        assert sorted(s.notes for s in service.search_series()) == ["Incoming", "Outgoing"]

    def test_orphaned_events_are_counted_not_written(self, service, make_record):
        payload = {
            "series": [{**make_record(), "_id": 10}],
            "audit_events": [
                {"entity": "series", "entity_id": 10, "action": "create", "actor": "a", "at": "2020-01-01T00:00:00"},
                {"entity": "series", "entity_id": 11, "action": "create", "actor": "a", "at": "2020-01-01T00:00:00"},
            ],
        }
        result = service.import_all(payload)
        assert result.audit_events_orphaned == 1
        assert {e.entity_id for e in service.list_audit_events()} == set(result.series_ids)

    def test_legacy_payload_shapes(self, service):
        result = service.import_all({
            "series_items": [{
                "application_number": "25-012",
                "item_number": "1",
                "record_series_title": "Legacy",
                "tags": "a, b",
                "open_ended": True,
                "retention_is_permanent": True,
                "schedule_id": 3,
                "_id": 1,
            }],
            "audit_events": [{
                "entity": "series", "entity_id": 1, "action": "create", "actor": "old",
                "at": "2019-05-05T00:00:00Z", "payload": "{\"note\": \"legacy string\"}",
            }],
        })
        stored = service.get_series(result.series_ids[0])
        assert stored.schedule_number == "25-012"
        assert stored.tags == ["a", "b"]
        historical = [e for e in service.list_audit_events() if e.actor == "old"]
        assert historical[0].payload == {"note": "legacy string"}

    def test_bare_list_import_uses_fallback_fields(self, service):
        service.upsert_batch([{"record_series_title": "Loose", "division": "HR"}])
        result = service.import_all([{"record_series_title": "Loose", "division": "HR", "notes": "n"}])
        assert result.updated == 1

    def test_import_text(self, service, schedule_records):
        from recinventory.interchange.codec import dumps

        service.upsert_batch(schedule_records)
        result = service.import_all(dumps(service.export_all()))
        assert result.unchanged == 3
