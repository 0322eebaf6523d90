"""UTC timestamp helpers.

All stored timestamps use ``YYYY-MM-DDTHH:MM:SSZ`` so they compare correctly
as plain strings.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(moment: datetime) -> str:
    """Second-precision ISO-8601 UTC string."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def next_run_at(interval_seconds: int, now: Optional[datetime] = None) -> str:
    """Expiry timestamp ``interval_seconds`` from now."""
    return format_timestamp((now or utc_now()) + timedelta(seconds=interval_seconds))
