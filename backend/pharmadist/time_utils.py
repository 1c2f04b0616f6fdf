from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    """Calendar date of 'now' in UTC. Expiry checks compare against this."""
    return utcnow().date()


def add_days(start: date, days: int) -> date:
    """Plain date arithmetic, no timezone component."""
    return start + timedelta(days=days)


def current_year_utc() -> int:
    return utcnow().year


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
    return value.isoformat()
