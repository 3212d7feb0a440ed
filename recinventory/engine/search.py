"""Search, filter and sort over series records.

Text search requires every whitespace-separated term to appear somewhere in a
record's searchable text. Sorting is deterministic: equal sort values keep
storage (_id) order.
"""

import re
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field

from recinventory.models.series import Series

SORT_FIELDS = ("schedule_item", "record_series_title", "division", "dates_covered_start", "approval_date", "updated_at")

# ui_extras keys included in text search
SEARCHABLE_EXTRAS = ("seriesDescription", "seriesContact", "arrangement")

_DIGITS = re.compile(r"(\d+)")
_YEAR = re.compile(r"(\d{4})")


class SearchCriteria(BaseModel):
    """Filters for a series search. Empty criteria match everything."""
    text: Optional[str] = None
    schedule_number: Optional[str] = None
    division: Optional[str] = None
    approval_status: Optional[str] = None
    tags: List[str] = Field(default_factory=list, description="Match any of these tags")
    media_types: List[str] = Field(default_factory=list, description="Match any of these media types")
    sort_by: Optional[str] = None
    descending: bool = False


def searchable_text(series: Series) -> str:
    """Lowercased text a search term is matched against."""
    parts = [
        series.record_series_title,
        series.schedule_number,
        series.item_number,
        series.division,
        series.retention_text,
        series.notes,
        " ".join(series.tags),
        " ".join(series.media_types),
        " ".join(series.omb_or_statute_refs),
    ]
    for key in SEARCHABLE_EXTRAS:
        value = series.ui_extras.get(key)
        if isinstance(value, str):
            parts.append(value)
    return " ".join(part for part in parts if part).lower()


def matches(series: Series, criteria: SearchCriteria) -> bool:
    if criteria.schedule_number and series.schedule_number != criteria.schedule_number:
        return False
    if criteria.division and series.division != criteria.division:
        return False
    if criteria.approval_status and series.approval_status != criteria.approval_status.lower():
        return False
    if criteria.tags and not any(tag in series.tags for tag in criteria.tags):
        return False
    if criteria.media_types and not any(media in series.media_types for media in criteria.media_types):
        return False
    if criteria.text:
        haystack = searchable_text(series)
        if not all(term in haystack for term in criteria.text.lower().split()):
            return False
    return True


def _natural(value: str) -> Tuple[Any, ...]:
    # "25-012-10" sorts after "25-012-9"
    return tuple(int(part) if part.isdigit() else part for part in _DIGITS.split(value.lower()))


def _date_sort_value(value: Optional[str]) -> str:
    if not value:
        return "0000"
    if value.strip().lower() == "present":
        return "9999"
    match = _YEAR.search(value)
    return match.group(1) if match else "0000"


def sort_value(series: Series, sort_by: str) -> Optional[Tuple[Any, ...]]:
    """Comparable key for one sort field; None sorts last."""
    if sort_by == "schedule_item":
        return _natural(f"{series.schedule_number or 'zzz'}-{series.item_number or 'zzz'}")
    if sort_by in ("dates_covered_start", "approval_date"):
        return _natural(_date_sort_value(getattr(series, sort_by)))
    if sort_by == "updated_at":
        return (series.updated_at.isoformat(),) if series.updated_at else None
    value = getattr(series, sort_by, None)
    return _natural(str(value)) if value else None


def search(series: List[Series], criteria: SearchCriteria) -> List[Series]:
    """Filter and sort series.

    Args:
        series: Candidate records, in storage order
        criteria: Filters and sort order

    Returns:
        Matching records, sorted when ``criteria.sort_by`` is set
    """
    found = [item for item in series if matches(item, criteria)]
    if not criteria.sort_by:
        return found
    if criteria.sort_by not in SORT_FIELDS:
        raise ValueError(f"Cannot sort by {criteria.sort_by}; expected one of {', '.join(SORT_FIELDS)}")

    keyed = [(sort_value(item, criteria.sort_by), item) for item in found]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [item for value, item in keyed if value is None]
    # Tag parts so digit runs and text never compare directly
    present.sort(key=lambda pair: tuple((0, p) if isinstance(p, int) else (1, p) for p in pair[0]),
                 reverse=criteria.descending)
    return [item for _, item in present] + missing
