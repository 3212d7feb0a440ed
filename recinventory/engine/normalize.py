"""Normalization of loose incoming records.

Incoming records come from forms, bulk uploads and older exports. Before
validation and key resolution they are brought into one canonical dict shape:
legacy field names are aliased, list fields split into ordered string
sequences, blank strings cleared, and storage-managed or forbidden derived
fields removed.
"""

from typing import Any, Dict, List, Mapping, Optional

from recinventory.models.constants import (
    ARRAY_DELIMITERS,
    BYTE_COUNT_FIELDS,
    EDITABLE_FIELDS,
    LEGACY_ALIASES,
    LIST_FIELDS,
    NUMERIC_FIELDS,
    STRING_FIELDS,
)


def split_array(value: Any) -> Any:
    """Split a delimited string into an ordered list of trimmed, non-empty strings.

    Lists are trimmed element-wise; anything else is returned unchanged so the
    validator can report it.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in ARRAY_DELIMITERS.split(value) if part.strip()]
    if isinstance(value, (list, tuple)):
        out: List[Any] = []
        for item in value:
            if isinstance(item, str):
                item = item.strip()
                if not item:
                    continue
            elif isinstance(item, (int, float)) and not isinstance(item, bool):
                item = str(item)
            out.append(item)
        return out
    return value


def _clean_string(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        # 12.0 -> "12", 12.5 -> "12.5"
        return str(int(value)) if value.is_integer() else str(value)
    return value


def _clean_number(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def apply_legacy_aliases(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy legacy field names onto their canonical names.

    The canonical field wins when both are present and non-blank. The legacy
    name is always dropped.
    """
    out = dict(record)
    for legacy, canonical in LEGACY_ALIASES.items():
        if legacy not in out:
            continue
        legacy_value = out.pop(legacy)
        current = out.get(canonical)
        if current is None or (isinstance(current, str) and not current.strip()):
            out[canonical] = legacy_value
    return out


def normalize_record(record: Mapping[str, Any], *, keep_timestamps: bool = False) -> Dict[str, Any]:
    """Return a canonical copy of an incoming record. The input is not modified.

    Args:
        record: Raw record (form data, API body, or an exported series)
        keep_timestamps: Keep ``created_at`` so an import can carry it into a fresh insert

    Returns:
        A new dict containing only recognised fields, in canonical form
    """
    data = apply_legacy_aliases(record)

    created_at = data.get("created_at") if keep_timestamps else None

    for name in list(data):
        if name not in EDITABLE_FIELDS:
            data.pop(name)

    for name in STRING_FIELDS:
        if name in data:
            data[name] = _clean_string(data[name])
    if isinstance(data.get("approval_status"), str):
        data["approval_status"] = data["approval_status"].lower()

    for name in NUMERIC_FIELDS:
        if name in data:
            data[name] = _clean_number(data[name])

    for name in LIST_FIELDS:
        if name in data:
            data[name] = split_array(data[name])

    if "ui_extras" in data and data["ui_extras"] is None:
        data["ui_extras"] = {}

    if created_at:
        data["created_at"] = created_at
    return data


def coerce_number(value: Any) -> Optional[float]:
    """Parse a numeric field value; None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def to_storage_values(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert validated numeric strings to numbers (byte counts to int)."""
    out = dict(data)
    for name in NUMERIC_FIELDS:
        if name in out and out[name] is not None:
            number = coerce_number(out[name])
            if name in BYTE_COUNT_FIELDS and number is not None:
                out[name] = int(number)
            else:
                out[name] = number
    return out
