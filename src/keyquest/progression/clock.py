"""UTC date-key helpers.

Every day boundary in the engine is the UTC calendar day. Callers may pass an
explicit as-of date; the helpers only read the wall clock when they don't.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from keyquest.progression.results import ValidationError

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today(now: datetime | None = None) -> date:
    """The UTC calendar date of ``now`` (defaults to the current instant)."""
    if now is None:
        now = utc_now()
    return as_utc(now).date()


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_key(day: date) -> str:
    """Format a date as a 'YYYY-MM-DD' key."""
    return day.isoformat()


def parse_date_key(key: str) -> date:
    """Parse a 'YYYY-MM-DD' key, raising ValidationError when malformed."""
    if not isinstance(key, str) or not _DATE_KEY_RE.match(key):
        msg = f"Malformed date key: {key!r}"
        raise ValidationError(msg)
    try:
        return date.fromisoformat(key)
    except ValueError as exc:
        msg = f"Malformed date key: {key!r}"
        raise ValidationError(msg) from exc


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days


def previous_day(day: date) -> date:
    return day - timedelta(days=1)
