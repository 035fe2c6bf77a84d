"""
Per-month calendar answer cache.

One ``ReconciliationCache`` lives for one signed-in session. Months are keyed
by ``(user_id, YYYY-MM)`` and hold ``DayKey -> CalendarAnswerEntry`` for the
days that have an answer; absent days are missed or future, never blank
entries.

Each month carries a generation counter. Starting a fetch and writing an
optimistic entry both advance it. A finished fetch commits only if no newer
fetch for the month was started in the meantime, and optimistic writes made
while it was in flight are laid over the fetched map, so a slow response can
neither overwrite a newer month nor erase a just-saved answer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dailyq.core.errors import StoreError, ValidationError
from dailyq.features.calendar.days import month_bounds, parse_year_month, year_month_of
from dailyq.features.store.base import AnswerStore
from dailyq.models.answer import CalendarAnswerEntry, DayKey, Lang, YearMonth

logger = logging.getLogger("dailyq")

LOAD_ERROR = "calendar_error_load"


@dataclass(frozen=True)
class MonthSnapshot:
    entries: Dict[DayKey, CalendarAnswerEntry]
    loading: bool = False
    error: Optional[str] = None

    def get(self, day: DayKey) -> Optional[CalendarAnswerEntry]:
        return self.entries.get(day)


@dataclass
class _MonthSlot:
    entries: Dict[DayKey, CalendarAnswerEntry] = field(default_factory=dict)
    populated: bool = False
    loading: bool = False
    error: Optional[str] = None
    lang: Optional[Lang] = None
    generation: int = 0
    latest_fetch: int = 0
    writes: Dict[DayKey, Tuple[int, CalendarAnswerEntry]] = field(default_factory=dict)

    def snapshot(self) -> MonthSnapshot:
        return MonthSnapshot(entries=dict(self.entries), loading=self.loading, error=self.error)


class ReconciliationCache:
    def __init__(self, store: AnswerStore, *, user_id: Optional[str] = None, default_lang: Lang = "nl"):
        self._store = store
        self._owner = user_id
        self._default_lang = default_lang
        self._months: Dict[Tuple[str, YearMonth], _MonthSlot] = {}
        self._closed = False

    # Reads ------------------------------------------------------------
    def peek(self, year_month: YearMonth, user_id: Optional[str] = None) -> MonthSnapshot:
        """Current state of a month without triggering a fetch."""
        slot = self._months.get((self._user(user_id), year_month))
        if slot is None:
            return MonthSnapshot(entries={}, loading=False, error=None)
        return slot.snapshot()

    def entry_for(self, day: DayKey, user_id: Optional[str] = None) -> Optional[CalendarAnswerEntry]:
        slot = self._months.get((self._user(user_id), year_month_of(day)))
        return slot.entries.get(day) if slot else None

    def is_populated(self, year_month: YearMonth, user_id: Optional[str] = None) -> bool:
        slot = self._months.get((self._user(user_id), year_month))
        return bool(slot and slot.populated)

    async def get_or_fetch_month(self, user_id: str, year_month: YearMonth, lang: Optional[Lang] = None) -> MonthSnapshot:
        parse_year_month(year_month)
        lang = lang or self._default_lang
        slot = self._slot(user_id, year_month)
        if slot.populated and slot.entries and slot.lang == lang:
            return slot.snapshot()
        await self._fetch(user_id, year_month, lang)
        return self._slot(user_id, year_month).snapshot()

    # Writes -----------------------------------------------------------
    async def refetch(self, year_month: YearMonth, user_id: Optional[str] = None, lang: Optional[Lang] = None) -> MonthSnapshot:
        """Bypass the cache and replace the month wholesale when the fetch lands."""
        parse_year_month(year_month)
        user = self._user(user_id)
        slot = self._slot(user, year_month)
        await self._fetch(user, year_month, lang or slot.lang or self._default_lang)
        return self._slot(user, year_month).snapshot()

    def set_answer_for_day(self, day: DayKey, entry: CalendarAnswerEntry, user_id: Optional[str] = None) -> None:
        """Optimistic single-day write, no round trip."""
        if self._closed:
            return
        slot = self._slot(self._user(user_id), year_month_of(day))
        slot.generation += 1
        slot.entries[day] = entry
        slot.writes[day] = (slot.generation, entry)

    def close(self) -> None:
        """Session teardown: drop every month and ignore late fetch results."""
        self._closed = True
        self._months.clear()

    # Internals --------------------------------------------------------
    def _user(self, user_id: Optional[str]) -> str:
        user = user_id or self._owner
        if not user:
            raise ValidationError("A user id is required for calendar cache access")
        return user

    def _slot(self, user_id: str, year_month: YearMonth) -> _MonthSlot:
        key = (user_id, year_month)
        slot = self._months.get(key)
        if slot is None:
            slot = _MonthSlot()
            if not self._closed:
                self._months[key] = slot
        return slot

    async def _fetch(self, user_id: str, year_month: YearMonth, lang: Lang) -> bool:
        slot = self._slot(user_id, year_month)
        slot.generation += 1
        generation = slot.generation
        slot.latest_fetch = generation
        slot.loading = True
        slot.error = None

        try:
            entries = await self._load_month(user_id, year_month, lang)
        except StoreError:
            if self._is_current(user_id, year_month, slot, generation):
                slot.loading = False
                slot.error = LOAD_ERROR
            logger.warning(
                "calendar.fetch_failed",
                extra={"user_id": user_id, "year_month": year_month, "error_code": LOAD_ERROR},
            )
            return False

        if not self._is_current(user_id, year_month, slot, generation):
            logger.debug("calendar.fetch_stale", extra={"user_id": user_id, "year_month": year_month})
            return False

        for day, (written_at, entry) in slot.writes.items():
            if written_at > generation:
                entries[day] = entry
        slot.entries = entries
        slot.writes = {}
        slot.populated = True
        slot.loading = False
        slot.lang = lang
        return True

    def _is_current(self, user_id: str, year_month: YearMonth, slot: _MonthSlot, generation: int) -> bool:
        if self._closed or self._months.get((user_id, year_month)) is not slot:
            return False
        return slot.latest_fetch == generation

    async def _load_month(self, user_id: str, year_month: YearMonth, lang: Lang) -> Dict[DayKey, CalendarAnswerEntry]:
        start, end = month_bounds(year_month)
        answers = await self._store.list_answers_in_range(user_id, start, end)

        try:
            question_rows = await self._store.list_questions_in_range(start, end, lang)
        except StoreError:
            # Question text is decoration; answers still render
            logger.warning("calendar.questions_unavailable", extra={"user_id": user_id, "year_month": year_month})
            question_rows = []
        day_to_text = {q.day: q.text for q in question_rows}

        return {
            answer.day: CalendarAnswerEntry(
                question_text=day_to_text.get(answer.day, ""),
                answer_text=answer.text or "",
                is_joker=answer.is_joker,
            )
            for answer in answers
        }
