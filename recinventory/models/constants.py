"""Constants for the records inventory.

This module centralizes field groupings, formats and defaults used across the
engine, codec and storage layers.
"""

import re

# Entity name written on every audit event
SERIES_ENTITY = "series"

# Default actor for audit events (overridable via AUDIT_ACTOR)
DEFAULT_ACTOR = "local-user"

# Export format version, bumped when the payload shape changes
EXPORT_FORMAT_VERSION = "3.7"

# Field formats
SCHEDULE_NUMBER_PATTERN = re.compile(r"^\d{2}-\d{3}$")
ITEM_NUMBER_PATTERN = re.compile(r"^\d+([A-Za-z]|\.\d+)?$")
PARTIAL_DATE_PATTERN = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")
FULL_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Delimiters accepted when a list field arrives as a single string
ARRAY_DELIMITERS = re.compile(r"[,;\n]")

LIST_FIELDS = ("tags", "media_types", "omb_or_statute_refs", "related_series")

STRING_FIELDS = (
    "schedule_number",
    "item_number",
    "record_series_title",
    "division",
    "notes",
    "approval_status",
    "approval_date",
    "dates_covered_start",
    "dates_covered_end",
    "retention_text",
    "retention_trigger",
)

NUMERIC_FIELDS = ("retention_term", "volume_paper_cubic_feet", "volume_electronic_bytes")
BYTE_COUNT_FIELDS = ("volume_electronic_bytes",)

# Fields a caller may change; everything else is storage-managed
EDITABLE_FIELDS = STRING_FIELDS + NUMERIC_FIELDS + LIST_FIELDS + ("ui_extras",)

# Fields shared by all series under one schedule_number (Schedule View)
SCHEDULE_FIELDS = ("approval_status", "approval_date", "division", "notes", "tags")

# Fields cleared when a schedule assignment is removed
SCHEDULE_ASSIGNMENT_FIELDS = ("schedule_number", "approval_status", "approval_date")

# Storage-managed fields, never taken from a payload as-is
INTERNAL_FIELDS = ("_id", "id", "created_at", "updated_at", "version")

# Derived flags that must never be stored or emitted
FORBIDDEN_DERIVED_FIELDS = ("open_ended", "retention_is_permanent", "retention_status")

# Legacy columns dropped on import
OBSOLETE_FIELDS = ("schedule_id",)

# Legacy field name -> canonical field name
LEGACY_ALIASES = {
    "application_number": "schedule_number",
    "series_number": "item_number",
}

# Identifying fields used when a record has no complete natural key
DEFAULT_FALLBACK_FIELDS = ("record_series_title", "division")
