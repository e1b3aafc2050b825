"""Filtering and usage counts for the Data view.

Everything here is a pure function of its inputs: no I/O and no state, so
results are simply recomputed whenever the filter changes.
"""
from collections import OrderedDict
from datetime import date
from typing import List

from schemas import (
    ALL,
    BASE_CATEGORIES,
    UNKNOWN_CATEGORY,
    DataResponse,
    Entry,
    FilterCriteria,
    UsageCount,
    Zone,
    parse_date,
    weekday_name,
)


def _is_all(value) -> bool:
    return value is None or value == "" or value == ALL


def _wanted_period(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def filter_entries(entries: List[Entry], criteria: FilterCriteria) -> List[Entry]:
    """
    Keep the entries matching every active criterion, in input order.

    Student, weekday and period filters are skipped when empty or "All". The
    date range applies unless ``all_time`` is set; a missing bound is open.
    Entries without a readable date never pass a weekday or date-range filter.
    """
    day_active = not _is_all(criteria.day)
    period_active = not _is_all(criteria.period)
    range_active = not criteria.all_time
    wanted_period = _wanted_period(criteria.period) if period_active else None

    kept = []
    for entry in entries:
        if criteria.student_id and entry.student_id != criteria.student_id:
            continue
        if period_active and entry.period != wanted_period:
            continue

        entry_date = parse_date(entry.date)
        if (day_active or range_active) and entry_date is None:
            continue
        if day_active and weekday_name(entry_date) != criteria.day:
            continue
        if range_active:
            if criteria.date_from and entry_date < criteria.date_from:
                continue
            if criteria.date_to and entry_date > criteria.date_to:
                continue
        kept.append(entry)
    return kept


def sort_entries_newest_first(entries: List[Entry]) -> List[Entry]:
    """Date descending, then creation time descending; undated entries last."""
    return sorted(
        entries,
        key=lambda e: (parse_date(e.date) or date.min, e.created_at or ""),
        reverse=True,
    )


def zone_usage_counts(entries: List[Entry], zones: List[Zone]) -> List[UsageCount]:
    """One count per zone, in zone order, zero-filled. Unknown zone ids are dropped."""
    counts = OrderedDict((zone.id, 0) for zone in zones)
    for entry in entries:
        if entry.zone_id in counts:
            counts[entry.zone_id] += 1
    names = {zone.id: zone.name for zone in zones}
    return [UsageCount(key=zone_id, label=names[zone_id], count=n) for zone_id, n in counts.items()]


def _category_of(zone: Zone | None) -> str:
    if zone is None:
        return UNKNOWN_CATEGORY
    category = (zone.category or "").strip()
    return category or UNKNOWN_CATEGORY


def category_usage_counts(entries: List[Entry], zones: List[Zone]) -> List[UsageCount]:
    """
    Count entries per zone category.

    Buckets start with Focus, Semi-Collaborative, Collaborative and Unknown,
    followed by any other category found on the zones in first-seen order.
    Entries with no zone, an unknown zone, or an uncategorized zone count as
    Unknown.
    """
    counts = OrderedDict((category, 0) for category in (*BASE_CATEGORIES, UNKNOWN_CATEGORY))
    for zone in zones:
        counts.setdefault(_category_of(zone), 0)

    zones_by_id = {zone.id: zone for zone in zones}
    for entry in entries:
        zone = zones_by_id.get(entry.zone_id) if entry.zone_id else None
        counts[_category_of(zone)] += 1

    return [UsageCount(key=category, label=category, count=n) for category, n in counts.items()]


def summarize(entries: List[Entry], zones: List[Zone], criteria: FilterCriteria) -> DataResponse:
    """Filtered rows (newest first) plus both usage aggregations."""
    filtered = filter_entries(entries, criteria)
    return DataResponse(
        entries=sort_entries_newest_first(filtered),
        zone_usage=zone_usage_counts(filtered, zones),
        category_usage=category_usage_counts(filtered, zones),
    )
