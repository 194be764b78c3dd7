from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional


EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})$")


def utcnow() -> datetime:
    """Device-side 'now' in UTC (naive, canonical)."""
    return datetime.utcnow()


def now_iso() -> str:
    """Timestamp format used inside stored JSON records."""
    return to_utc_z(utcnow())


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


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" / unparseable -> None (stored records are not trusted)
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_expiry(value: Optional[str]) -> Optional[tuple[int, int]]:
    """'MM/YY' -> (year, month), or None when malformed or month out of range."""
    if not value:
        return None
    m = EXPIRY_RE.match(str(value).strip())
    if not m:
        return None
    month = int(m.group(1))
    year = 2000 + int(m.group(2))
    if month < 1 or month > 12:
        return None
    return year, month


def expiry_not_past(value: Optional[str], now: Optional[datetime] = None) -> bool:
    """A card is valid through the last day of its expiry month."""
    parsed = parse_expiry(value)
    if parsed is None:
        return False
    now = now or utcnow()
    year, month = parsed
    return year * 100 + month >= now.year * 100 + now.month


def date_stamp(dt: datetime) -> str:
    """YYYYMMDD, used in order and invoice numbers."""
    return f"{dt.year}{dt.month:02d}{dt.day:02d}"
