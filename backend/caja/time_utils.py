from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


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


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """
    UTC-naive [start, end) range covering one calendar day in the restaurant's
    timezone. Used for "orders of the day" filters and invoice sequences.
    """
    tz = ZoneInfo(tz_name)
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = start_local + timedelta(days=1)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def local_today(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


def local_clock(tz_name: str, dt: Optional[datetime] = None) -> str:
    """HH:MM in local time, as printed on kitchen tickets."""
    if dt is None:
        dt = utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZoneInfo(tz_name)).strftime("%H:%M")


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """'YYYY-MM-DD' -> date; None / '' -> None. Raises ValueError on bad input."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)
