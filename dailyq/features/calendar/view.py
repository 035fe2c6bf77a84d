"""
Month grid for the calendar screen.

Weeks start on Monday; the first row is padded with ``None`` placeholders up
to the weekday of the 1st. Cell states are recomputed from the cache on every
render, so an optimistic write shows up without a refetch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from dailyq.core.config import Settings, settings as default_settings
from dailyq.features.calendar.cache import MonthSnapshot, ReconciliationCache
from dailyq.features.calendar.classifier import classify_cell
from dailyq.features.calendar.days import (
    Instant,
    answerable_days_in_range,
    iter_days,
    local_day_key,
    month_bounds,
    parse_day_key,
    parse_year_month,
    shift_month,
    year_month_of,
)
from dailyq.models.answer import CalendarAnswerEntry, DayKey, Lang, YearMonth
from dailyq.models.streak import CellState


@dataclass(frozen=True)
class MonthCell:
    day: DayKey
    number: int
    state: CellState
    entry: Optional[CalendarAnswerEntry] = None


@dataclass(frozen=True)
class MonthProgress:
    answered: int
    answerable: int

    @property
    def percent(self) -> float:
        if self.answerable <= 0:
            return 0.0
        return round(self.answered / self.answerable * 100, 1)


@dataclass(frozen=True)
class MonthView:
    year_month: YearMonth
    today: DayKey
    cells: List[Optional[MonthCell]]
    progress: MonthProgress
    loading: bool = False
    error: Optional[str] = None

    @property
    def weeks(self) -> List[List[Optional[MonthCell]]]:
        padded = self.cells + [None] * (-len(self.cells) % 7)
        return [padded[i:i + 7] for i in range(0, len(padded), 7)]


def month_grid(year_month: YearMonth) -> List[Optional[DayKey]]:
    """Monday-first day keys with leading ``None`` placeholders."""
    start, end = month_bounds(year_month)
    leading = parse_day_key(start).weekday()
    return [None] * leading + list(iter_days(start, end))


def month_progress(
    year_month: YearMonth,
    snapshot: MonthSnapshot,
    today: DayKey,
    account_created_at: Union[Instant, str, None] = None,
) -> MonthProgress:
    start, end = month_bounds(year_month)
    if start > today:
        return MonthProgress(answered=0, answerable=0)
    last = min(end, today)
    answered = sum(1 for day in snapshot.entries if start <= day <= last)
    answerable = answerable_days_in_range(start, last, account_created_at)
    return MonthProgress(answered=answered, answerable=answerable)


def render_month(
    year_month: YearMonth,
    snapshot: MonthSnapshot,
    today: DayKey,
    account_created_at: Union[Instant, str, None] = None,
) -> MonthView:
    cells: List[Optional[MonthCell]] = []
    for day in month_grid(year_month):
        if day is None:
            cells.append(None)
            continue
        entry = snapshot.get(day)
        cells.append(
            MonthCell(
                day=day,
                number=int(day[8:]),
                state=classify_cell(day, today, entry, account_created_at),
                entry=entry,
            )
        )
    return MonthView(
        year_month=year_month,
        today=today,
        cells=cells,
        progress=month_progress(year_month, snapshot, today, account_created_at),
        loading=snapshot.loading,
        error=snapshot.error,
    )


class CalendarNavigator:
    """Which month the calendar screen shows, plus prev/next/today."""

    def __init__(
        self,
        cache: ReconciliationCache,
        user_id: str,
        *,
        account_created_at: Union[Instant, str, None] = None,
        lang: Optional[Lang] = None,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        self._cache = cache
        self._user_id = user_id
        self._settings = settings or default_settings
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.account_created_at = account_created_at
        self.lang = lang or self._settings.DEFAULT_LANG
        self.year_month: YearMonth = year_month_of(self.today())

    def today(self) -> DayKey:
        return local_day_key(self._clock(), self._settings.LOCAL_TIMEZONE)

    def go_to(self, year_month: YearMonth) -> YearMonth:
        parse_year_month(year_month)
        self.year_month = year_month
        return self.year_month

    def previous(self) -> YearMonth:
        return self.go_to(shift_month(self.year_month, -1))

    def next(self) -> YearMonth:
        return self.go_to(shift_month(self.year_month, 1))

    def go_today(self) -> YearMonth:
        return self.go_to(year_month_of(self.today()))

    def current(self) -> MonthView:
        """Render from whatever the cache holds now, without fetching."""
        return render_month(self.year_month, self._cache.peek(self.year_month, self._user_id), self.today(), self.account_created_at)

    async def load(self) -> Optional[MonthView]:
        """
        Fetch (or reuse) the selected month and render it.

        Returns None when the user navigated elsewhere while the fetch was in
        flight; the result belongs to a month no longer on screen.
        """
        requested = self.year_month
        snapshot = await self._cache.get_or_fetch_month(self._user_id, requested, self.lang)
        if self.year_month != requested:
            return None
        return render_month(requested, snapshot, self.today(), self.account_created_at)

    async def refresh(self) -> Optional[MonthView]:
        requested = self.year_month
        snapshot = await self._cache.refetch(requested, self._user_id, self.lang)
        if self.year_month != requested:
            return None
        return render_month(requested, snapshot, self.today(), self.account_created_at)
