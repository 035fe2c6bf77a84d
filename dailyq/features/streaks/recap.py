"""Monday recap: "you answered X of the Y questions last week"."""
from __future__ import annotations

from typing import Optional, Union

from dailyq.core.logging import log_event
from dailyq.features.calendar.days import (
    Instant,
    TimezoneLike,
    answerable_days_in_range,
    is_monday,
    local_day_key,
    previous_week_range,
)
from dailyq.features.store.base import AnswerStore
from dailyq.models.streak import WeeklyRecap

RECAP_FLAG = "weekly_recap"


async def build_weekly_recap(
    store: AnswerStore,
    user_id: str,
    now: Instant,
    account_created_at: Union[Instant, str, None] = None,
    tz: TimezoneLike = None,
) -> WeeklyRecap:
    week = previous_week_range(now, tz)
    answers = await store.list_answers_in_range(user_id, week.start, week.end)
    total = answerable_days_in_range(week.start, week.end, account_created_at, tz)
    return WeeklyRecap(start=week.start, end=week.end, count=len(answers), total=total)


async def maybe_weekly_recap(
    store: AnswerStore,
    user_id: str,
    now: Instant,
    account_created_at: Union[Instant, str, None] = None,
    tz: TimezoneLike = None,
) -> Optional[WeeklyRecap]:
    """The recap for last week, at most once per Monday per user."""
    if not is_monday(now, tz):
        return None
    today = local_day_key(now, tz)
    recap = await build_weekly_recap(store, user_id, now, account_created_at, tz)
    if not await store.mark_flag_if_absent(user_id, RECAP_FLAG, today):
        return None
    log_event(
        "info",
        "recap.shown",
        user_id=user_id,
        day=today,
        event_type="weekly_recap",
        extra={"count": recap.count, "total": recap.total},
    )
    return recap
