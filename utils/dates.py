# utils/dates.py
from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as date_parser


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the DB as UTC."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def to_db(dt: datetime | None) -> datetime | None:
    """Naive UTC, which is how every DateTime column is stored."""
    if dt is None:
        return None
    return as_utc(dt).replace(tzinfo=None)


def iso_z(dt: datetime | None) -> str | None:
    """2026-10-17T08:30:00.000Z, the same shape JavaScript's toISOString() emits."""
    if dt is None:
        return None
    return as_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(raw) -> datetime | None:
    """Accept datetimes, ISO strings ("2026-01-31", "2026-01-31T10:00:00Z") or None."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return to_db(raw)
    try:
        return to_db(date_parser.isoparse(str(raw)))
    except (ValueError, OverflowError):
        raise ValueError(f"Invalid date: {raw!r}") from None
