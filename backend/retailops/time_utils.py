# Overview: UTC timestamp helpers shared by models, documents and the ledger.

from __future__ import annotations

from datetime import datetime, timezone

"""
Timestamp Invariants (authoritative)

- Columns hold UTC-naive datetimes; JSON documents hold "...Z" strings.
- Naive input is taken as UTC; offset input is converted, then made naive.
- Serialized form drops microseconds, so the same instant always renders
  the same string (ledger rebuilds compare byte for byte).
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    """
    Normalize an ISO-8601 string or a datetime to UTC-naive.

    Accepts a trailing "Z". Blank input gives None; anything unparseable
    raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return parse_iso_datetime(dt).replace(microsecond=0).isoformat() + "Z"


def now_iso() -> str:
    """Current time in the form stored inside JSON documents."""
    return to_utc_z(utcnow())
