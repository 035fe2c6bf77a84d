from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

from dailyq.core.config import Settings, settings as default_settings
from dailyq.core.errors import StoreError
from dailyq.core.logging import log_event
from dailyq.features.calendar.days import Instant, local_day_key, parse_day_key
from dailyq.features.store.base import AnswerStore
from dailyq.models.answer import DayKey
from dailyq.models.streak import MilestoneEvent, MilestoneProgress, StreakState

logger = logging.getLogger("dailyq")


def milestone_flag(milestone: int) -> str:
    return f"milestone:{milestone}"


def milestone_progress(streak: int, milestones: Sequence[int] = (7, 30, 100)) -> MilestoneProgress:
    """Distance to the next celebration, for the calendar header."""
    upcoming = next((m for m in sorted(milestones) if m > streak), None)
    if upcoming is None:
        return MilestoneProgress(next_milestone=None, days_left=0, percent=0.0)
    return MilestoneProgress(
        next_milestone=upcoming,
        days_left=upcoming - streak,
        percent=round(streak / upcoming * 100, 1),
    )


class StreakCalculator:
    """
    Interprets the (visual, real) streak pair reported by the store.

    A celebration fires when max(visual, real) equals a milestone exactly.
    The durable flag ``{user, milestone:<n>, ends_on}`` keeps it from firing
    again on re-render or on the next day before the user answers.
    """

    def __init__(self, store: AnswerStore, *, settings: Optional[Settings] = None, clock=None):
        self._store = store
        self._settings = settings or default_settings
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._last: Dict[str, StreakState] = {}

    @property
    def milestones(self) -> Tuple[int, ...]:
        return tuple(self._settings.STREAK_MILESTONES)

    def _today(self, today: Optional[DayKey], now: Optional[Instant] = None) -> DayKey:
        if today is not None:
            parse_day_key(today)
            return today
        return local_day_key(now or self._clock(), self._settings.LOCAL_TIMEZONE)

    def last_state(self, user_id: str) -> Optional[StreakState]:
        return self._last.get(user_id)

    async def current(self, user_id: str, today: Optional[DayKey] = None) -> StreakState:
        state = await self._store.get_streaks(user_id, self._today(today))
        self._last[user_id] = state
        return state

    async def check_milestone(
        self,
        user_id: str,
        state: StreakState,
        today: Optional[DayKey] = None,
    ) -> Optional[MilestoneEvent]:
        value = state.milestone_value
        if value not in self.milestones:
            return None
        shown_on = state.ends_on or self._today(today)
        first_time = await self._store.mark_flag_if_absent(user_id, milestone_flag(value), shown_on)
        if not first_time:
            return None
        log_event("info", "streak.milestone", user_id=user_id, day=shown_on, event_type="milestone", extra={"milestone": value})
        return MilestoneEvent(milestone=value, streak=value, day=shown_on)

    async def refresh(self, user_id: str, today: Optional[DayKey] = None) -> Tuple[StreakState, Optional[MilestoneEvent]]:
        """Re-read streaks after an answer was saved and evaluate milestones."""
        day = self._today(today)
        state = await self.current(user_id, day)
        event = await self.check_milestone(user_id, state, day)
        return state, event

    async def on_answer_saved(self, user_id: str, day: DayKey, today: Optional[DayKey] = None) -> Optional[MilestoneEvent]:
        """Listener hook for answer flows; failures only cost the popup."""
        try:
            _, event = await self.refresh(user_id, today)
        except StoreError:
            logger.warning("streak.refresh_failed", extra={"user_id": user_id, "day": day, "error_code": "store_unavailable"})
            return None
        return event

    def progress(self, state: StreakState) -> MilestoneProgress:
        return milestone_progress(state.milestone_value, self.milestones)
