"""
Joker ledger: monthly grants, atomic consumption and balance reads.

Consumption is fail-forward. Once the store confirms a joker was charged it
stays charged even if the answer write that follows fails; callers pass an
idempotency key so a retry of the same attempt is not charged twice.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from dailyq.core.config import Settings, settings as default_settings
from dailyq.core.errors import InsufficientBalanceError, StoreError
from dailyq.core.logging import log_event
from dailyq.features.calendar.days import Instant, TimezoneLike, local_day_key
from dailyq.features.store.base import AnswerStore
from dailyq.models.answer import DayKey, YearMonth
from dailyq.models.joker import Profile

logger = logging.getLogger("dailyq")


def current_year_month(now: Instant, tz: TimezoneLike = None) -> YearMonth:
    return local_day_key(now, tz)[:7]


class JokerLedger:
    def __init__(self, store: AnswerStore, *, settings: Optional[Settings] = None, clock=None):
        self._store = store
        self._settings = settings or default_settings
        self._clock = clock or (lambda: datetime.now().astimezone())

    @property
    def monthly_grant(self) -> int:
        return self._settings.JOKER_MONTHLY_GRANT

    async def grant_monthly_jokers(self, user_id: str, now: Optional[Instant] = None) -> bool:
        """Apply this month's grant once. Safe to call on every profile load."""
        year_month = current_year_month(now or self._clock(), self._settings.LOCAL_TIMEZONE)
        current = await self._store.get_joker_balance(user_id)
        if current.last_grant_month == year_month:
            return False

        granted = await self._store.grant_monthly_jokers(user_id, year_month, self.monthly_grant)
        if granted:
            log_event(
                "info",
                "jokers.monthly_grant",
                user_id=user_id,
                event_type="joker_grant",
                extra={"year_month": year_month, "amount": self.monthly_grant},
            )
        return granted

    async def use_one_joker(
        self,
        user_id: str,
        *,
        idempotency_key: Optional[str] = None,
        day: Optional[DayKey] = None,
    ) -> bool:
        """
        Charge one joker.

        Returns True when charged now, False when ``idempotency_key`` was
        already charged. Raises InsufficientBalanceError (nothing mutated) or
        StoreError.
        """
        try:
            charged = await self._store.consume_one_joker(user_id, idempotency_key=idempotency_key, day=day)
        except InsufficientBalanceError:
            log_event("warning", "jokers.insufficient", user_id=user_id, day=day, error_code="insufficient_balance")
            raise
        except StoreError:
            log_event("error", "jokers.consume_failed", user_id=user_id, day=day, error_code="store_unavailable")
            raise

        log_event(
            "info",
            "jokers.consumed" if charged else "jokers.consume_replayed",
            user_id=user_id,
            day=day,
            event_type="joker_consume",
        )
        return charged

    async def balance(self, user_id: str) -> int:
        joker = await self._store.get_joker_balance(user_id)
        return joker.balance

    async def profile(self, user_id: str, now: Optional[Instant] = None) -> Profile:
        """Profile load: apply the monthly grant when due, then read fresh."""
        try:
            await self.grant_monthly_jokers(user_id, now)
        except StoreError:
            # The grant is retried on the next profile load
            logger.warning("jokers.grant_failed", extra={"user_id": user_id, "error_code": "store_unavailable"})
        return await self._store.get_profile(user_id)
