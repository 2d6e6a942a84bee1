# Overview: UTC helpers; the database stores naive UTC datetimes and the API speaks ISO-8601 with a trailing Z.

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _is_date_only(value: str) -> bool:
    return len(value) == 10 and value[4] == "-" and value[7] == "-"


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO-8601 input into a naive UTC datetime.

    Blank input gives None. A bare date means midnight UTC, a naive
    timestamp is taken as UTC, and offsets (including "Z") are converted.
    Raises ValueError for anything else.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    if _is_date_only(text):
        parsed = date.fromisoformat(text)
        return datetime(parsed.year, parsed.month, parsed.day)

    dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_range_end(value: Optional[str]) -> Optional[datetime]:
    """
    Exclusive upper bound for a date filter.

    "2024-06-30" means "through the end of June 30th", so a bare date is
    pushed to the following midnight. Full timestamps are used as given.
    """
    bound = parse_iso_datetime(value)
    if bound is not None and _is_date_only(value.strip()):
        bound += timedelta(days=1)
    return bound


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision with a trailing Z; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
