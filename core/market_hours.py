"""Helpers for determining US equity market trading hours."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

_EASTERN = ZoneInfo("America/New_York")
_OPEN_TIME = time(9, 30)
_CLOSE_TIME = time(16, 0)


def _normalize_now(now: datetime | None = None) -> datetime:
    if now is None:
        now = datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(_EASTERN)


def trading_date(now: datetime | None = None) -> date:
    """Calendar date of ``now`` in US/Eastern."""

    return _normalize_now(now).date()


def market_is_open(now: datetime | None = None) -> bool:
    """Return True if the regular US equity session is open for the provided time."""

    local = _normalize_now(now)
    if local.weekday() >= 5:  # Saturday/Sunday
        return False
    open_dt = datetime.combine(local.date(), _OPEN_TIME, tzinfo=_EASTERN)
    close_dt = datetime.combine(local.date(), _CLOSE_TIME, tzinfo=_EASTERN)
    return open_dt <= local < close_dt


def after_close(now: datetime | None = None) -> bool:
    """True on a weekday once the regular session has ended."""

    local = _normalize_now(now)
    if local.weekday() >= 5:
        return False
    return local >= datetime.combine(local.date(), _CLOSE_TIME, tzinfo=_EASTERN)


__all__ = ["market_is_open", "after_close", "trading_date"]
