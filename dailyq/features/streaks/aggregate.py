"""
Streak aggregate shared by the bundled store implementations.

real streak:   consecutive days with an on-time answer, ending today, or
               ending yesterday while today is still unanswered.
visual streak: the same run, but joker-backed days count as present.
"""
from __future__ import annotations

from typing import AbstractSet, Iterable, Optional, Tuple

from dailyq.features.calendar.days import add_days, parse_day_key
from dailyq.models.answer import Answer, DayKey
from dailyq.models.streak import StreakState


def _run_ending_near(days: AbstractSet[DayKey], today: DayKey) -> Tuple[int, Optional[DayKey]]:
    anchor = today if today in days else add_days(today, -1)
    if anchor not in days:
        return 0, None
    length = 0
    current = anchor
    while current in days:
        length += 1
        current = add_days(current, -1)
    return length, anchor


def compute_streaks(answers: Iterable[Answer], today: DayKey) -> StreakState:
    parse_day_key(today)
    present = set()
    on_time = set()
    for answer in answers:
        if answer.day > today:
            continue
        present.add(answer.day)
        if not answer.is_joker:
            on_time.add(answer.day)

    visual, ends_on = _run_ending_near(present, today)
    real, _ = _run_ending_near(on_time, today)
    return StreakState(visual_streak=visual, real_streak=real, ends_on=ends_on)
