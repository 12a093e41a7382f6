"""
Clock capability and timezone helpers.

Everything that needs "now" takes a Clock (zero-arg callable returning an
aware datetime) so tests can pin it. Instants are stored in UTC.
"""
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from app.config import get_settings


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def fixed_clock(at: datetime):
    """Clock frozen at ``at`` (naive values are taken as UTC)."""
    pinned = as_utc(at)
    return lambda: pinned


def as_utc(dt: datetime) -> datetime:
    """Normalize to aware UTC. Naive values (SQLite round-trips) are UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def practice_timezone() -> tzinfo:
    """Wall-clock zone in which rule start dates/times are interpreted."""
    return ZoneInfo(get_settings().TIMEZONE)
