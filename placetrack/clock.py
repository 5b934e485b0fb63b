from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(raw: object) -> datetime | None:
    """
    Accepts datetime, date or an ISO-8601 string (a trailing "Z" is allowed,
    the browser build writes it). Naive values are taken as UTC.
    Returns None for anything that can't be read as a point in time.
    """
    if isinstance(raw, datetime):
        ts = raw
    elif isinstance(raw, date):
        ts = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str) and raw.strip():
        s = raw.strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
