from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as a naive UTC datetime; the only clock the services read."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_today(tz_name: str = "UTC", now: Optional[datetime] = None) -> date:
    """
    Calendar day used for ledger and day-status keys.

    `now` is UTC-naive; it is shifted into the business zone before the
    time-of-day is dropped.
    """
    now = now or utcnow()
    aware = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
    return aware.date()


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - a Z or +HH:MM offset is shifted to UTC and dropped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value) -> Optional[datetime]:
    """Accept None, date, datetime (naive or aware) or ISO string; return UTC-naive."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return parse_iso_datetime(value)
    raise ValueError("invalid datetime")


def normalize_day(value) -> date:
    """Truncate a date/datetime/ISO string to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("invalid date")
        if len(s) == 10:
            return date.fromisoformat(s)
        dt = parse_iso_datetime(s)
        if dt is None:
            raise ValueError("invalid date")
        return dt.date()
    raise ValueError("invalid date")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    ISO-8601 with a trailing Z, seconds precision. Naive values are UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(day: Optional[date]) -> Optional[str]:
    return day.isoformat() if day else None
