from __future__ import annotations

from typing import Optional, Union

from dailyq.features.calendar.days import Instant, is_before_account_start, parse_day_key
from dailyq.models.answer import CalendarAnswerEntry, DayKey
from dailyq.models.streak import CellState


def classify_cell(
    day: DayKey,
    today: DayKey,
    entry: Optional[CalendarAnswerEntry] = None,
    account_created_at: Union[Instant, str, None] = None,
) -> CellState:
    """
    State of one calendar cell, recomputed on every render.

    ``today`` wins over an existing entry so the user can still edit today's
    answer; after that an entry wins over date comparison.
    """
    parse_day_key(day)
    parse_day_key(today)

    if day == today:
        return "today"
    if entry is not None:
        return "joker" if entry.is_joker else "answered"
    if day > today:
        return "future"
    if account_created_at is not None and is_before_account_start(day, account_created_at):
        return "before"
    return "missed"
