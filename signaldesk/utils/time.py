from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as dtparser

# epoch values above this are taken to be milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, int, float, bool, None]) -> Optional[datetime]:
    """Parse ISO-8601 text or epoch seconds/milliseconds into an aware UTC datetime.

    Returns None for anything unparseable; callers decide the fallback.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            ts = float(value)
            if ts > _EPOCH_MS_THRESHOLD:
                ts /= 1000.0
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return ensure_utc(dtparser.isoparse(text))
    except (ValueError, OverflowError):
        return None
