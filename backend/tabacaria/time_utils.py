from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from .errors import ValidationError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string and normalize to UTC-naive.

    - None / "" -> None
    - "YYYY-MM-DD" -> midnight of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def end_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


def start_of_month(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def end_of_month(value: datetime) -> datetime:
    if value.month == 12:
        first_next = datetime(value.year + 1, 1, 1)
    else:
        first_next = datetime(value.year, value.month + 1, 1)
    return first_next - timedelta(microseconds=1)


def parse_date_range(start: Optional[str], end: Optional[str]) -> tuple[datetime | None, datetime | None]:
    """
    Parse a start/end filter pair.

    A date-only end bound covers the whole day (inclusive).
    """
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("Dates must be ISO-8601 (YYYY-MM-DD)")
    if end_dt is not None and end and "T" not in end:
        end_dt = end_of_day(end_dt)
    return start_dt, end_dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()
