"""
Retroactive answer for a missed day, paid with one joker.

    opened -> closed_window                      (terminal, nothing spent)
    opened -> no_jokers                          (terminal, nothing spent)
    opened -> eligible -> answering -> submitting -> saved
                              ^             |
                              +-- failed ---+   (inline error, retry allowed)

Each flow generates one idempotency key when answering starts. The joker is
charged under that key and recorded against the day, so neither a retry in
the same flow nor a reopened day charges a second joker after a failed
answer write or a lost consume response.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional, Union
from uuid import uuid4

from dailyq.core.config import Settings, settings as default_settings
from dailyq.core.errors import ConflictError, InsufficientBalanceError, StoreError, ValidationError
from dailyq.core.logging import log_event
from dailyq.features.calendar.cache import ReconciliationCache
from dailyq.features.calendar.classifier import classify_cell
from dailyq.features.calendar.days import Instant, local_day_key, parse_day_key, within_trailing_window, year_month_of
from dailyq.features.jokers.ledger import JokerLedger
from dailyq.features.store.base import AnswerStore
from dailyq.features.streaks.service import StreakCalculator
from dailyq.models.answer import CalendarAnswerEntry, DayKey, Lang
from dailyq.models.streak import MilestoneEvent

logger = logging.getLogger("dailyq")

FlowState = Literal["opened", "closed_window", "no_jokers", "eligible", "answering", "submitting", "saved"]
FlowOutcome = Literal["closed_window", "no_jokers", "saved", "failed"]

TERMINAL_STATES = ("closed_window", "no_jokers", "saved")


def validate_answer_text(text: Optional[str], max_length: int) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Answer text cannot be empty")
    if len(cleaned) > max_length:
        raise ValidationError(f"Answer text exceeds {max_length} characters")
    return cleaned


@dataclass(frozen=True)
class FlowResult:
    state: FlowState
    outcome: Optional[FlowOutcome] = None
    error: Optional[str] = None
    joker_consumed: bool = False
    milestone: Optional[MilestoneEvent] = None


class MissedDayFlow:
    def __init__(
        self,
        *,
        user_id: str,
        day: DayKey,
        store: AnswerStore,
        ledger: JokerLedger,
        cache: ReconciliationCache,
        streaks: Optional[StreakCalculator] = None,
        lang: Lang = "nl",
        account_created_at: Union[Instant, str, None] = None,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        parse_day_key(day)
        self.user_id = user_id
        self.day = day
        self.lang = lang
        self.account_created_at = account_created_at
        self._store = store
        self._ledger = ledger
        self._cache = cache
        self._streaks = streaks
        self._settings = settings or default_settings
        self._clock = clock or (lambda: datetime.now().astimezone())

        self.state: FlowState = "opened"
        self.error: Optional[str] = None
        self.balance: Optional[int] = None
        self.question_text: str = ""
        self.joker_consumed = False
        self.attempt_key: Optional[str] = None
        self.today: Optional[DayKey] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def snapshot(self) -> FlowResult:
        return self._result()

    def _result(self, outcome: Optional[FlowOutcome] = None, milestone: Optional[MilestoneEvent] = None) -> FlowResult:
        if outcome is None and self.state in TERMINAL_STATES:
            outcome = self.state  # type: ignore[assignment]
        return FlowResult(
            state=self.state,
            outcome=outcome,
            error=self.error,
            joker_consumed=self.joker_consumed,
            milestone=milestone,
        )

    def _require(self, *states: FlowState) -> None:
        if self.state not in states:
            raise ConflictError(
                f"Missed-day flow is '{self.state}', expected one of {', '.join(states)}",
                code="invalid_flow_state",
            )

    # Steps ------------------------------------------------------------
    async def open(self, today: Optional[DayKey] = None) -> FlowResult:
        """Decide whether the tapped day can be filled with a joker."""
        self._require("opened")
        today = today or local_day_key(self._clock(), self._settings.LOCAL_TIMEZONE)
        self.today = today

        entry = self._cache.entry_for(self.day, self.user_id)
        if entry is None and not self._cache.is_populated(year_month_of(self.day), self.user_id):
            existing = await self._store.get_answer(self.user_id, self.day)
            if existing is not None:
                entry = CalendarAnswerEntry(question_text="", answer_text=existing.text, is_joker=existing.is_joker)

        # Only a missed day inside the window may be filled; anything else closes
        cell = classify_cell(self.day, today, entry, self.account_created_at)
        if cell != "missed" or not within_trailing_window(self.day, today, self._settings.JOKER_WINDOW_DAYS):
            self.state = "closed_window"
            log_event(
                "info",
                "missed_day.closed_window",
                user_id=self.user_id,
                day=self.day,
                event_type="missed_day",
                extra={"cell": cell},
            )
            return self._result()

        # Paid on an earlier attempt whose answer write failed; no second charge
        if await self._store.joker_charged_for_day(self.user_id, self.day):
            self.joker_consumed = True
            self.balance = await self._ledger.balance(self.user_id)
            self.state = "eligible"
            log_event("info", "missed_day.resume_paid", user_id=self.user_id, day=self.day, event_type="missed_day")
            return self._result()

        self.balance = await self._ledger.balance(self.user_id)
        if self.balance <= 0:
            self.state = "no_jokers"
            log_event("info", "missed_day.no_jokers", user_id=self.user_id, day=self.day, event_type="missed_day")
            return self._result()

        self.state = "eligible"
        return self._result()

    async def start_answering(self) -> FlowResult:
        """User accepted "use a joker"; load the question for that day."""
        self._require("eligible")
        try:
            question = await self._store.get_question(self.day, self.lang)
        except StoreError:
            logger.warning("missed_day.question_unavailable", extra={"user_id": self.user_id, "day": self.day})
            question = None
        self.question_text = question.text if question else ""
        self.attempt_key = uuid4().hex
        self.state = "answering"
        return self._result()

    async def submit(self, text: str) -> FlowResult:
        self._require("answering")
        cleaned = validate_answer_text(text, self._settings.ANSWER_MAX_LENGTH)

        self.state = "submitting"
        self.error = None

        if not self.joker_consumed:
            try:
                await self._ledger.use_one_joker(self.user_id, idempotency_key=self.attempt_key, day=self.day)
            except InsufficientBalanceError:
                return self._fail("insufficient_balance")
            except StoreError:
                return self._fail("save_failed")
            self.joker_consumed = True

        try:
            await self._store.upsert_answer(self.user_id, self.day, cleaned, is_joker=True)
        except StoreError:
            # Fail-forward: the joker stays spent, the retry reuses it
            return self._fail("save_failed")

        self._cache.set_answer_for_day(
            self.day,
            CalendarAnswerEntry(question_text=self.question_text, answer_text=cleaned, is_joker=True),
            self.user_id,
        )
        self.state = "saved"
        log_event("info", "missed_day.saved", user_id=self.user_id, day=self.day, event_type="missed_day")

        milestone = None
        if self._streaks is not None:
            milestone = await self._streaks.on_answer_saved(self.user_id, self.day, self.today)
        return self._result(milestone=milestone)

    def _fail(self, error: str) -> FlowResult:
        self.state = "answering"
        self.error = error
        log_event(
            "warning",
            "missed_day.failed",
            user_id=self.user_id,
            day=self.day,
            error_code=error,
            extra={"joker_consumed": self.joker_consumed},
        )
        return self._result(outcome="failed")
