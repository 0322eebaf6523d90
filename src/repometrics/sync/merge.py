"""Merge policies for stored dataset histories.

Every function here is pure: it takes the stored list and the freshly fetched
list and returns the list to persist, leaving its inputs untouched.

Date keys are the calendar-day prefix (``YYYY-MM-DD``) of an ISO-8601
timestamp. GitHub traffic endpoints report one entry per day, stamped at
midnight UTC.
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def date_key(value: Any) -> str:
    """Calendar-day prefix of a timestamp string."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    return str(value or "").split("T")[0][:10]


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Missing or malformed values sort before everything else.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_by_date(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Entries ordered by ``date`` ascending (stable for equal dates)."""
    return sorted(entries, key=lambda entry: parse_timestamp(entry.get("date")))


def latest_entry(entries: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Entry with the most recent ``date``, or None for an empty list.

    Among entries sharing that date the first one stored wins.
    """
    return max(entries, key=lambda entry: parse_timestamp(entry.get("date")), default=None)


def merge_watchers(
    stored: List[Dict[str, Any]],
    fresh: List[Dict[str, Any]],
    today: date,
) -> List[Dict[str, Any]]:
    """Replace today's stored entries with the fresh ones.

    Today's count is not final until the day is over, so any stored entry
    dated today is discarded before the fresh list is appended.
    """
    today_key = date_key(today)
    kept = [entry for entry in stored if date_key(entry.get("date")) != today_key]
    return kept + list(fresh)


def merge_daily_counts(
    stored: List[Dict[str, Any]],
    fresh: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Merge daily traffic counts (clones, views).

    The most recent stored day may still have been partial when it was
    recorded, so it is always dropped. The remaining stored entries and the
    fresh entries are then deduplicated by date key; for a shared key the
    fresh entry replaces the stored value while the key keeps the position of
    its first occurrence. The result is not re-sorted.
    """
    stored_sorted = sort_by_date(stored)
    fresh_sorted = sort_by_date(fresh)

    if stored_sorted:
        dropped = stored_sorted.pop()
        fresh_keys = {date_key(entry.get("date")) for entry in fresh_sorted}
        dropped_key = date_key(dropped.get("date"))
        if dropped_key not in fresh_keys:
            # Dropped day is not re-reported by the API, its count is lost
            logger.warning(
                f"Dropping stored entry for {dropped_key} which the fresh data does not cover"
            )

    merged: Dict[str, Dict[str, Any]] = {}
    for entry in stored_sorted + fresh_sorted:
        merged[date_key(entry.get("date"))] = entry
    return list(merged.values())


def _canonical(entry: Any) -> str:
    return json.dumps(entry, sort_keys=True, default=str)


def dedup_structural(entries: Iterable[Any]) -> List[Any]:
    """Drop entries structurally equal to an earlier one, keeping order."""
    seen = set()
    unique = []
    for entry in entries:
        key = _canonical(entry)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


def merge_events(stored: List[Any], fresh: List[Any]) -> List[Any]:
    """Append fresh events (workflow runs) and drop exact duplicates."""
    return dedup_structural(list(stored) + list(fresh))


def merge_releases(
    stored: List[Dict[str, Any]],
    fresh: List[Dict[str, Any]],
    today: date,
) -> List[Dict[str, Any]]:
    """Refresh today's releases, then drop exact duplicates of older ones."""
    return dedup_structural(merge_watchers(stored, fresh, today))
