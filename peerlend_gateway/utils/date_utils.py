"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Any

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def add_months(from_date: date, months: int) -> date:
    """Add calendar months, clamping to the last day of shorter months"""
    return from_date + relativedelta(months=months)


def add_days(from_date: date, days: int) -> date:
    return from_date + timedelta(days=days)


def normalize_timestamp(value: Any) -> datetime:
    """
    Coerce a stored timestamp into a timezone-aware UTC datetime.

    Accepted shapes:
    - datetime (naive values are treated as UTC)
    - date (midnight UTC)
    - int/float epoch seconds
    - dict with "seconds"/"_seconds" and optional "nanoseconds"/"_nanoseconds"
    - ISO-8601 (or otherwise parseable) string

    Raises:
        ValueError: If the value has none of the shapes above
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, bool):
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError(f"Timestamp mapping has no seconds field: {value!r}")
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(microseconds=nanos // 1000)

    if isinstance(value, str):
        try:
            return normalize_timestamp(date_parser.isoparse(value))
        except ValueError:
            return normalize_timestamp(date_parser.parse(value))

    raise ValueError(f"Unsupported timestamp value: {value!r}")
