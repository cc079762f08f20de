from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?[0-9]+)")


def is_trading_day(d: date) -> bool:
    # Weekends only; exchange holidays surface as an empty upstream result.
    return d.weekday() < 5


def last_n_trading_days(end: date, n: int) -> list[date]:
    """Walk backward from `end` collecting `n` weekdays, returned oldest-first.

    `end` itself counts when it is a weekday, so it is the most recent day of
    the window. The walk stops at `date.min`, so the list can come back short.
    """

    days: list[date] = []
    cur = end
    while len(days) < n:
        if is_trading_day(cur):
            days.append(cur)
        if cur == date.min:
            break
        cur -= timedelta(days=1)
    days.reverse()
    return days


def session_window(d: date, start_hour: int, end_hour: int) -> tuple[datetime, datetime]:
    start = datetime(d.year, d.month, d.day, tzinfo=timezone.utc) + timedelta(hours=start_hour)
    end = datetime(d.year, d.month, d.day, tzinfo=timezone.utc) + timedelta(hours=end_hour)
    return start, end


def parse_date(raw: str | None) -> date | None:
    if not raw or not _DATE_RE.fullmatch(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def parse_days(raw: str | None, *, default: int = 1, cap: int = 15) -> int:
    """Parse the `days` query value.

    Mirrors parseInt: only the leading integer counts ("3x" -> 3), anything
    non-numeric falls back to `default`. Result is clamped to [1, cap].
    """

    n = default
    if raw is not None:
        m = _LEADING_INT_RE.match(str(raw))
        if m:
            n = int(m.group(1)) or default
    return max(1, min(n, cap))


def iso_utc(dt: datetime) -> str:
    """`2026-02-19T08:00:00.000Z`"""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def from_epoch_ms(ts_ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(ts_ms))
