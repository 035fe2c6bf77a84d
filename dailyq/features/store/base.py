"""
Answer store interface.

The engine talks to persistence only through this contract. Every method is a
coroutine; implementations raise ``StoreError`` for transport or database
failures and ``InsufficientBalanceError`` when a joker cannot be consumed.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from dailyq.models.answer import Answer, DayKey, Lang, Question, YearMonth
from dailyq.models.joker import JokerBalance, Profile
from dailyq.models.streak import StreakState


class AnswerStore(ABC):
    # Answers ----------------------------------------------------------
    @abstractmethod
    async def get_answer(self, user_id: str, day: DayKey) -> Optional[Answer]:
        ...

    @abstractmethod
    async def upsert_answer(self, user_id: str, day: DayKey, text: str, is_joker: bool = False) -> Answer:
        """Insert or replace the single answer keyed by (user_id, day)."""

    @abstractmethod
    async def list_answers_in_range(self, user_id: str, start: DayKey, end: DayKey) -> List[Answer]:
        ...

    # Questions --------------------------------------------------------
    @abstractmethod
    async def get_question(self, day: DayKey, lang: Lang) -> Optional[Question]:
        ...

    @abstractmethod
    async def list_questions_in_range(self, start: DayKey, end: DayKey, lang: Lang) -> List[Question]:
        ...

    # Profile and jokers -----------------------------------------------
    @abstractmethod
    async def get_profile(self, user_id: str) -> Profile:
        """
        Read the profile, creating an empty one on first sight.

        An auto-created profile has ``created_at=None``: the account start is
        unknown, so no day is treated as before it.
        """

    async def get_joker_balance(self, user_id: str) -> JokerBalance:
        profile = await self.get_profile(user_id)
        return profile.joker

    @abstractmethod
    async def grant_monthly_jokers(self, user_id: str, year_month: YearMonth, amount: int) -> bool:
        """
        Add ``amount`` jokers and stamp ``year_month`` in one atomic step,
        unless the last grant already happened in ``year_month``.

        Returns True when the grant was applied.
        """

    @abstractmethod
    async def consume_one_joker(
        self,
        user_id: str,
        idempotency_key: Optional[str] = None,
        day: Optional[DayKey] = None,
    ) -> bool:
        """
        Decrement the balance by one if and only if it is positive.

        Returns True when a joker was charged by this call and False when
        ``idempotency_key`` was already charged earlier. Raises
        ``InsufficientBalanceError`` (balance untouched) when empty.
        """

    @abstractmethod
    async def joker_charged_for_day(self, user_id: str, day: DayKey) -> bool:
        """True when a joker was already consumed for ``day``, whatever the key."""

    @abstractmethod
    async def add_jokers(self, user_id: str, amount: int, reason: str) -> JokerBalance:
        """External bonus grants (referrals, streak rewards)."""

    # Streaks and flags ------------------------------------------------
    @abstractmethod
    async def get_streaks(self, user_id: str, today: DayKey) -> StreakState:
        ...

    @abstractmethod
    async def mark_flag_if_absent(self, user_id: str, kind: str, day: DayKey) -> bool:
        """Record ``{user_id, kind, day}``; True only for the first writer."""
