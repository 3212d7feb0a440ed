"""Natural-key resolution of incoming records against stored series.

The natural key is ``(schedule_number, item_number)``. It is unique in storage
only when both parts are present; records missing either part are matched by
caller-chosen fallback fields or created fresh.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from recinventory.engine.normalize import apply_legacy_aliases
from recinventory.models.constants import EDITABLE_FIELDS
from recinventory.models.series import Series

logger = logging.getLogger(__name__)

NaturalKey = Tuple[str, str]


class MatchRule(str, Enum):
    """How a candidate was matched to an existing record."""
    NATURAL_KEY = "natural_key"
    FALLBACK = "fallback"
    NONE = "none"


@dataclass(frozen=True)
class KeyMatch:
    """Resolution outcome for one candidate."""
    rule: MatchRule
    existing: Optional[Series] = None

    @property
    def matched(self) -> bool:
        return self.existing is not None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def natural_key(record: Mapping[str, Any]) -> Optional[NaturalKey]:
    """Return (schedule_number, item_number) when both are present, else None."""
    data = apply_legacy_aliases(record)
    schedule_number = _clean(data.get("schedule_number"))
    item_number = _clean(data.get("item_number"))
    if schedule_number and item_number:
        return (schedule_number, item_number)
    return None


def fallback_key(record: Mapping[str, Any], fields: Sequence[str]) -> Optional[Tuple[Optional[str], ...]]:
    """Values of the fallback fields, or None when no field has a value."""
    if not fields:
        return None
    values = tuple(_clean(record.get(field)) for field in fields)
    if all(value is None for value in values):
        return None
    return values


def _same_values(series: Series, candidate: Mapping[str, Any]) -> bool:
    stored = series.model_dump(mode="json")
    return all(stored.get(name) == value for name, value in candidate.items() if name in EDITABLE_FIELDS)


class KeyIndex:
    """Lookup tables over a snapshot of stored series, built once per batch."""

    def __init__(self, existing: Iterable[Series], fallback_fields: Sequence[str] = ()):
        self.fallback_fields = tuple(fallback_fields)
        self.by_id: Dict[int, Series] = {}
        self.by_natural_key: Dict[NaturalKey, Series] = {}
        self.by_fallback: Dict[Tuple[Optional[str], ...], List[Series]] = {}
        for series in existing:
            self.add(series)

    def add(self, series: Series) -> None:
        if series.id is not None:
            self.by_id[series.id] = series
        key = series.natural_key
        if key is not None:
            self.by_natural_key[key] = series
            return
        fb = fallback_key(series.model_dump(), self.fallback_fields)
        if fb is not None:
            self.by_fallback.setdefault(fb, []).append(series)

    def owner_of(self, key: Optional[NaturalKey]) -> Optional[Series]:
        """Stored series currently holding a natural key."""
        if key is None:
            return None
        return self.by_natural_key.get(key)

    def resolve(self, candidate: Mapping[str, Any], claimed: Collection[int] = ()) -> KeyMatch:
        """Match a candidate by natural key, then by fallback fields.

        Several keyless series can share the fallback values. Each candidate is
        paired with one not yet ``claimed`` by an earlier record of the batch,
        preferring one whose stored values already equal the candidate's.
        When every such series is claimed the candidate is new.
        """
        key = natural_key(candidate)
        if key is not None:
            existing = self.by_natural_key.get(key)
            if existing is not None:
                return KeyMatch(MatchRule.NATURAL_KEY, existing)
            return KeyMatch(MatchRule.NONE)

        fb = fallback_key(candidate, self.fallback_fields)
        if fb is None:
            return KeyMatch(MatchRule.NONE)
        hits = [series for series in self.by_fallback.get(fb, []) if series.id not in claimed]
        if not hits:
            return KeyMatch(MatchRule.NONE)
        if len(hits) > 1:
            chosen = next((series for series in hits if _same_values(series, candidate)), hits[0])
            logger.info(
                f"Fallback match on {self.fallback_fields}={fb} has {len(hits)} unclaimed "
                f"series; pairing with {chosen.id}"
            )
            return KeyMatch(MatchRule.FALLBACK, chosen)
        return KeyMatch(MatchRule.FALLBACK, hits[0])


def resolve_key(
    candidate: Mapping[str, Any],
    existing: Iterable[Series],
    fallback_fields: Sequence[str] = (),
) -> KeyMatch:
    """Determine whether a candidate matches a stored series, and by which rule.

    Args:
        candidate: Incoming record (legacy ``application_number`` is honoured)
        existing: Stored series to match against
        fallback_fields: Identifying fields used when the natural key is incomplete

    Returns:
        KeyMatch naming the rule used and the matched series, if any
    """
    return KeyIndex(existing, fallback_fields).resolve(candidate)
