from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from dailyq.core.config import Settings, settings as default_settings
from dailyq.core.errors import NotFoundError, StoreError
from dailyq.core.logging import log_event
from dailyq.features.calendar.cache import ReconciliationCache
from dailyq.features.calendar.days import Instant, local_day_key
from dailyq.features.missed_day.flow import validate_answer_text
from dailyq.features.store.base import AnswerStore
from dailyq.features.streaks.recap import maybe_weekly_recap
from dailyq.features.streaks.service import StreakCalculator
from dailyq.models.answer import Answer, CalendarAnswerEntry, Lang, Question
from dailyq.models.streak import MilestoneEvent, WeeklyRecap

logger = logging.getLogger("dailyq")


@dataclass(frozen=True)
class SubmitOutcome:
    answer: Answer
    was_update: bool
    recap: Optional[WeeklyRecap] = None
    milestone: Optional[MilestoneEvent] = None


class TodayAnswerService:
    """
    Today's question and the user's own answer to it.

    Saving is the only hard failure. The Monday recap and streak milestone
    run afterwards and degrade to "no popup" when the store misbehaves.
    """

    def __init__(
        self,
        store: AnswerStore,
        cache: ReconciliationCache,
        streaks: StreakCalculator,
        *,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        self._store = store
        self._cache = cache
        self._streaks = streaks
        self._settings = settings or default_settings
        self._clock = clock or (lambda: datetime.now().astimezone())

    def _lang(self, lang: Optional[Lang]) -> Lang:
        return lang or self._settings.DEFAULT_LANG  # type: ignore[return-value]

    async def load(self, user_id: str, lang: Optional[Lang] = None, now: Optional[Instant] = None) -> Tuple[Question, Optional[Answer]]:
        today = local_day_key(now or self._clock(), self._settings.LOCAL_TIMEZONE)
        question = await self._store.get_question(today, self._lang(lang))
        if question is None:
            raise NotFoundError(f"No question published for {today}", code="question_not_found")
        answer = await self._store.get_answer(user_id, today)
        return question, answer

    async def submit(
        self,
        user_id: str,
        text: str,
        lang: Optional[Lang] = None,
        now: Optional[Instant] = None,
    ) -> SubmitOutcome:
        cleaned = validate_answer_text(text, self._settings.ANSWER_MAX_LENGTH)
        now = now or self._clock()
        tz = self._settings.LOCAL_TIMEZONE
        today = local_day_key(now, tz)

        question, existing = await self.load(user_id, lang, now)
        answer = await self._store.upsert_answer(user_id, today, cleaned, is_joker=False)
        self._cache.set_answer_for_day(
            today,
            CalendarAnswerEntry(question_text=question.text, answer_text=cleaned, is_joker=False),
            user_id,
        )
        log_event(
            "info",
            "answer.updated" if existing else "answer.created",
            user_id=user_id,
            day=today,
            event_type="answer",
        )

        recap = None
        try:
            profile = await self._store.get_profile(user_id)
            recap = await maybe_weekly_recap(self._store, user_id, now, profile.created_at, tz)
        except StoreError:
            logger.warning("recap.failed", extra={"user_id": user_id, "day": today, "error_code": "store_unavailable"})

        milestone = await self._streaks.on_answer_saved(user_id, today, today)
        return SubmitOutcome(answer=answer, was_update=existing is not None, recap=recap, milestone=milestone)
