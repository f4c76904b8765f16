from __future__ import annotations
"""Clock and duration helpers shared by the lifecycle, SLA and metrics services.

All timestamps are handled as tz-aware UTC. Naive datetimes (SQLite drops tzinfo on the
way back from the database) are treated as UTC.
"""
import calendar
import math
from datetime import datetime, timezone, date
from typing import Optional, Union

Timestamp = Union[datetime, str, None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Timestamp) -> Optional[datetime]:
    """Coerce a datetime or ISO-8601 string to tz-aware UTC; None when missing or unparseable."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: Timestamp) -> Optional[str]:
    dt = to_utc(value)
    if dt is None:
        return None
    return dt.isoformat().replace('+00:00', 'Z')


def round_half_up(value: float) -> int:
    # Ties go towards +infinity: 2.5 -> 3, -2.5 -> -2
    return int(math.floor(value + 0.5))


def diff_minutes(start: Timestamp, end: Timestamp) -> Optional[int]:
    """Whole minutes from start to end, or None if either side is missing/unparseable.

    Negative results are returned as-is; clock skew and bad data must stay visible.
    """
    start_dt = to_utc(start)
    end_dt = to_utc(end)
    if start_dt is None or end_dt is None:
        return None
    return round_half_up((end_dt - start_dt).total_seconds() / 60)


def add_months(value: Union[datetime, date], months: int):
    """Calendar-month arithmetic; the day is clamped to the target month's last day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_maintenance_due(last_done: Timestamp, interval_months: int) -> Optional[datetime]:
    """Due date of the next time-based maintenance run, None when never serviced."""
    if interval_months is None or interval_months <= 0:
        raise ValueError('interval_months must be a positive integer')
    last = to_utc(last_done)
    if last is None:
        return None
    return add_months(last, interval_months)


__all__ = ['utcnow', 'to_utc', 'isoformat_z', 'round_half_up', 'diff_minutes', 'add_months', 'next_maintenance_due']
