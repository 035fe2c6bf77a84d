"""
Local-calendar day arithmetic.

Every day is identified by a DayKey (``YYYY-MM-DD``) in the user's local
timezone. Keys are fixed width and zero padded, so string comparison is
chronological comparison. Functions here are pure; a malformed key is a
programmer error and raises ``ValidationError`` immediately.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from dailyq.core.config import settings
from dailyq.core.errors import ValidationError
from dailyq.models.answer import DayKey, YearMonth

_DAY_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_YEAR_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")

Instant = Union[datetime, date]
TimezoneLike = Union[tzinfo, str, None]


@dataclass(frozen=True)
class WeekRange:
    start: DayKey
    end: DayKey


def _resolve_tz(tz: TimezoneLike) -> Optional[tzinfo]:
    if isinstance(tz, str):
        return ZoneInfo(tz)
    if tz is not None:
        return tz
    if settings.LOCAL_TIMEZONE:
        return ZoneInfo(settings.LOCAL_TIMEZONE)
    return None


def parse_day_key(day: DayKey) -> date:
    if not isinstance(day, str) or not _DAY_KEY_RE.match(day):
        raise ValidationError(f"Malformed day key: {day!r}")
    try:
        return date.fromisoformat(day)
    except ValueError as exc:
        raise ValidationError(f"Malformed day key: {day!r}") from exc


def to_day_key(value: date) -> DayKey:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def local_date(instant: Instant, tz: TimezoneLike = None) -> date:
    """Project an instant onto the local calendar.

    Naive datetimes are taken as local wall-clock time already. Aware
    datetimes are converted to ``tz`` (or the configured zone, or the host
    zone when neither is set).
    """
    if not isinstance(instant, datetime):
        return instant
    if instant.tzinfo is None:
        return instant.date()
    zone = _resolve_tz(tz)
    return instant.astimezone(zone).date()


def local_day_key(instant: Instant, tz: TimezoneLike = None) -> DayKey:
    return to_day_key(local_date(instant, tz))


def add_days(day: DayKey, days: int) -> DayKey:
    return to_day_key(parse_day_key(day) + timedelta(days=days))


def days_between(start: DayKey, end: DayKey) -> int:
    """Whole days from start to end (negative when end is earlier)."""
    return (parse_day_key(end) - parse_day_key(start)).days


def day_of_year(day: DayKey) -> int:
    parsed = parse_day_key(day)
    jan_zero = date(parsed.year, 1, 1) - timedelta(days=1)
    return (parsed - jan_zero).days


def day_label(day: DayKey) -> str:
    """Display label such as ``#042``."""
    return f"#{day_of_year(day):03d}"


def is_monday(instant: Instant, tz: TimezoneLike = None) -> bool:
    return local_date(instant, tz).weekday() == 0


def previous_week_range(instant: Instant, tz: TimezoneLike = None) -> WeekRange:
    """Monday-Sunday of the week before the one containing ``instant``."""
    today = local_date(instant, tz)
    days_since_monday = today.weekday()
    last_monday = today - timedelta(days=7 + days_since_monday)
    last_sunday = last_monday + timedelta(days=6)
    return WeekRange(start=to_day_key(last_monday), end=to_day_key(last_sunday))


def _account_start_key(account_created_at: Union[Instant, str, None], tz: TimezoneLike = None) -> Optional[DayKey]:
    if account_created_at is None:
        return None
    if isinstance(account_created_at, str):
        if _DAY_KEY_RE.match(account_created_at):
            return account_created_at
        try:
            account_created_at = datetime.fromisoformat(account_created_at.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Malformed account creation timestamp: {account_created_at!r}") from exc
    return local_day_key(account_created_at, tz)


def answerable_days_in_range(
    start: DayKey,
    end: DayKey,
    account_created_at: Union[Instant, str, None] = None,
    tz: TimezoneLike = None,
) -> int:
    """Count days in [start, end] on or after the account-creation day."""
    first = parse_day_key(start)
    last = parse_day_key(end)
    created_key = _account_start_key(account_created_at, tz)
    if created_key is not None:
        first = max(first, parse_day_key(created_key))
    if first > last:
        return 0
    return (last - first).days + 1


def is_before_account_start(day: DayKey, account_created_at: Union[Instant, str, None], tz: TimezoneLike = None) -> bool:
    created_key = _account_start_key(account_created_at, tz)
    if created_key is None:
        return False
    return parse_day_key(day) < parse_day_key(created_key)


def within_trailing_window(day: DayKey, today: DayKey, window_size_days: int = 7) -> bool:
    diff = days_between(day, today)
    return 0 <= diff <= window_size_days - 1


def iter_days(start: DayKey, end: DayKey) -> Iterator[DayKey]:
    current = parse_day_key(start)
    last = parse_day_key(end)
    while current <= last:
        yield to_day_key(current)
        current += timedelta(days=1)


# Months ----------------------------------------------------------------

def parse_year_month(year_month: YearMonth) -> Tuple[int, int]:
    if not isinstance(year_month, str) or not _YEAR_MONTH_RE.match(year_month):
        raise ValidationError(f"Malformed year-month: {year_month!r}")
    year, month = int(year_month[:4]), int(year_month[5:])
    if not 1 <= month <= 12:
        raise ValidationError(f"Malformed year-month: {year_month!r}")
    return year, month


def year_month_of(day: DayKey) -> YearMonth:
    parse_day_key(day)
    return day[:7]


def days_in_month(year_month: YearMonth) -> int:
    year, month = parse_year_month(year_month)
    return calendar.monthrange(year, month)[1]


def month_bounds(year_month: YearMonth) -> Tuple[DayKey, DayKey]:
    year, month = parse_year_month(year_month)
    last = calendar.monthrange(year, month)[1]
    return f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{last:02d}"


def shift_month(year_month: YearMonth, delta: int) -> YearMonth:
    year, month = parse_year_month(year_month)
    index = year * 12 + (month - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"
