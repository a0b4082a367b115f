# src/tasknudge/core/recurrence.py

"""
Recurrence and instant arithmetic.

All date math used by the reminder engine lives here as pure functions over
timezone-aware datetimes (immutable values, no I/O):
- next_occurrence(): next instant of a recurrence pattern, strictly after `from`
- next_daily_fire(): next "HH:MM" wall-clock instant (greeting timers)
- day_key() / to_local(): calendar-day keys in a fixed reference timezone

Overflow policy: monthly and yearly patterns CLAMP to the last valid day of the
target month (31 -> Apr 30, Feb 29 -> Feb 28 on non-leap years). The requested
day is re-applied for every month, so a clamp never drifts into later months.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from ..errors import RecurrenceError
from .models import RecurrencePattern, RecurrenceType, parse_time_of_day

_WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@lru_cache(maxsize=16)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def minutes_of_day(raw: str | None) -> int | None:
    hm = parse_time_of_day(raw)
    return None if hm is None else hm[0] * 60 + hm[1]


def to_local(ts: float, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(ts, tz)


def day_key(ts: float, tz: tzinfo) -> str:
    """YYYY-MM-DD of `ts` in the reference timezone (never the host locale)."""
    return to_local(ts, tz).strftime("%Y-%m-%d")


def js_weekday(dt: datetime | date) -> int:
    """Weekday with 0=Sunday ... 6=Saturday."""
    return (dt.weekday() + 1) % 7


def minute_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def validate_pattern(pattern: RecurrencePattern) -> None:
    if pattern.interval < 1:
        raise RecurrenceError(f"interval must be >= 1, got {pattern.interval}")
    for d in pattern.days_of_week:
        if not 0 <= d <= 6:
            raise RecurrenceError(f"weekday out of range: {d}")
    if pattern.day_of_month is not None and not 1 <= pattern.day_of_month <= 31:
        raise RecurrenceError(f"day_of_month out of range: {pattern.day_of_month}")
    if pattern.month is not None and not 1 <= pattern.month <= 12:
        raise RecurrenceError(f"month out of range: {pattern.month}")
    if pattern.time_of_day is not None and parse_time_of_day(pattern.time_of_day) is None:
        raise RecurrenceError(f"time_of_day must be HH:MM, got {pattern.time_of_day!r}")


def clamped_date(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def add_months(year: int, month: int, n: int) -> tuple[int, int]:
    idx = year * 12 + (month - 1) + n
    return idx // 12, idx % 12 + 1


def _anchor(pattern: RecurrencePattern, from_dt: datetime) -> time:
    hm = parse_time_of_day(pattern.time_of_day)
    if hm is None:
        return from_dt.time()
    return time(hm[0], hm[1])


def _at(d: date, t: time, tz: tzinfo | None) -> datetime:
    return datetime.combine(d, t, tzinfo=tz)


def next_occurrence(pattern: RecurrencePattern, from_dt: datetime) -> datetime:
    """
    Next occurrence of `pattern` strictly after `from_dt`.

    - daily:   from + interval days, at the anchor time
    - weekly:  smallest listed weekday after today; otherwise wrap to the first
               listed weekday plus (interval - 1) weeks. No weekdays: + interval weeks
    - monthly: this month's day_of_month if still ahead, else + interval months
    - yearly:  this year's month/day if still ahead, else + interval years

    The anchor time is pattern.time_of_day, or the time-of-day of `from_dt`.
    """
    validate_pattern(pattern)

    tz = from_dt.tzinfo
    t = _anchor(pattern, from_dt)
    base = from_dt.date()

    if pattern.type == RecurrenceType.DAILY:
        result = _at(base + timedelta(days=pattern.interval), t, tz)

    elif pattern.type == RecurrenceType.WEEKLY:
        if pattern.days_of_week:
            cur = js_weekday(base)
            days = sorted(set(pattern.days_of_week))
            later = [d for d in days if d > cur]
            if later:
                delta = later[0] - cur
            else:
                delta = 7 - cur + days[0] + (pattern.interval - 1) * 7
        else:
            delta = 7 * pattern.interval
        result = _at(base + timedelta(days=delta), t, tz)

    elif pattern.type == RecurrenceType.MONTHLY:
        target_day = pattern.day_of_month or base.day
        result = _at(clamped_date(base.year, base.month, target_day), t, tz)
        if result <= from_dt:
            y, m = add_months(base.year, base.month, pattern.interval)
            result = _at(clamped_date(y, m, target_day), t, tz)

    elif pattern.type == RecurrenceType.YEARLY:
        month = pattern.month or base.month
        day = pattern.day_of_month or base.day
        result = _at(clamped_date(base.year, month, day), t, tz)
        if result <= from_dt:
            result = _at(clamped_date(base.year + pattern.interval, month, day), t, tz)

    else:  # pragma: no cover - enum is closed
        raise RecurrenceError(f"unknown recurrence type: {pattern.type!r}")

    if result <= from_dt:
        raise RecurrenceError(f"computed occurrence {result.isoformat()} is not after {from_dt.isoformat()}")
    return result


def next_daily_fire(time_of_day: str, now: datetime) -> datetime:
    """Next wall-clock occurrence of "HH:MM" after `now` (today if still ahead, else tomorrow)."""
    hm = parse_time_of_day(time_of_day)
    if hm is None:
        raise RecurrenceError(f"time must be HH:MM, got {time_of_day!r}")
    t = time(hm[0], hm[1])
    candidate = _at(now.date(), t, now.tzinfo)
    if candidate <= now:
        candidate = _at(now.date() + timedelta(days=1), t, now.tzinfo)
    return candidate


def describe(pattern: RecurrencePattern) -> str:
    """Human-readable form, used in prompts ("every Monday, Wednesday")."""
    n = pattern.interval
    if pattern.type == RecurrenceType.DAILY:
        return "every day" if n == 1 else f"every {n} days"
    if pattern.type == RecurrenceType.WEEKLY:
        if pattern.days_of_week:
            days = ", ".join(_WEEKDAY_NAMES[d] for d in sorted(pattern.days_of_week))
            return f"every {days}" if n == 1 else f"every {n} weeks ({days})"
        return "every week" if n == 1 else f"every {n} weeks"
    if pattern.type == RecurrenceType.MONTHLY:
        if pattern.day_of_month:
            return (
                f"monthly on day {pattern.day_of_month}"
                if n == 1
                else f"every {n} months (day {pattern.day_of_month})"
            )
        return "every month" if n == 1 else f"every {n} months"
    return "every year" if n == 1 else f"every {n} years"
