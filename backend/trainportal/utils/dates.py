from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union

DateLike = Union[datetime, date, str, None]


def normalize_instant(value: DateLike) -> Optional[datetime]:
    """
    Coerce a date-ish value to a timezone-aware UTC datetime.

    - ``None`` stays ``None``.
    - ISO-8601 strings are parsed (``Z`` suffix accepted).
    - Plain dates become midnight UTC.
    - Naive datetimes are taken as UTC (SQLite hands them back naive).
    """
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        value = datetime.fromisoformat(raw)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise TypeError(f"Unsupported date value: {value!r}")


def same_instant(left: DateLike, right: DateLike) -> bool:
    return normalize_instant(left) == normalize_instant(right)


def format_day(value: DateLike) -> str:
    """dd/mm/YYYY, the format used in client-facing messages."""
    instant = normalize_instant(value)
    if instant is None:
        return "-"
    return instant.strftime("%d/%m/%Y")
