"""Reconciliation engine for the records inventory."""

from recinventory.engine.normalize import normalize_record, split_array, apply_legacy_aliases
from recinventory.engine.validator import validate_record
from recinventory.engine.key_resolver import KeyIndex, KeyMatch, MatchRule, natural_key, resolve_key
from recinventory.engine.audit_recorder import AuditRecorder, audit_payload
from recinventory.engine.upsert import UpsertEngine, UpsertPlan, UpsertOutcome, SeriesOperation, OperationKind
from recinventory.engine.search import SearchCriteria, search

__all__ = [
    "normalize_record",
    "split_array",
    "apply_legacy_aliases",
    "validate_record",
    "KeyIndex",
    "KeyMatch",
    "MatchRule",
    "natural_key",
    "resolve_key",
    "AuditRecorder",
    "audit_payload",
    "UpsertEngine",
    "UpsertPlan",
    "UpsertOutcome",
    "SeriesOperation",
    "OperationKind",
    "SearchCriteria",
    "search",
]
