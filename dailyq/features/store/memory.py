"""
In-process answer store.

Used for local development (no DATABASE_URL) and throughout the tests. Each
read-modify-write runs under one asyncio.Lock, which gives the same
atomicity guarantees the SQL store gets from single UPDATE statements.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4

from dailyq.core.errors import InsufficientBalanceError, ValidationError
from dailyq.features.store.base import AnswerStore
from dailyq.features.streaks.aggregate import compute_streaks
from dailyq.models.answer import Answer, DayKey, Lang, Question, YearMonth
from dailyq.models.joker import JokerBalance, Profile
from dailyq.models.streak import StreakState


class MemoryAnswerStore(AnswerStore):
    def __init__(self):
        self._answers: Dict[Tuple[str, DayKey], Answer] = {}
        self._questions: Dict[Tuple[DayKey, str], Question] = {}
        self._profiles: Dict[str, Profile] = {}
        self._consumed_keys: Set[str] = set()
        self._charged_days: Set[Tuple[str, DayKey]] = set()
        self._flags: Set[Tuple[str, str, DayKey]] = set()
        self._lock = asyncio.Lock()

    # Seeding helpers (not part of the store contract) ------------------
    def add_question(self, day: DayKey, text: str, lang: Lang = "nl", question_id: Optional[str] = None) -> Question:
        question = Question(id=question_id or str(uuid4()), text=text, day=day, lang=lang)
        self._questions[(day, lang)] = question
        return question

    def create_profile(
        self,
        user_id: str,
        *,
        balance: int = 0,
        last_grant_month: Optional[YearMonth] = None,
        created_at: Optional[datetime] = None,
    ) -> Profile:
        if balance < 0:
            raise ValidationError("Joker balance cannot be negative")
        profile = Profile(
            user_id=user_id,
            joker=JokerBalance(user_id=user_id, balance=balance, last_grant_month=last_grant_month),
            created_at=created_at,
        )
        self._profiles[user_id] = profile
        return profile

    def _ensure_profile(self, user_id: str) -> Profile:
        if user_id not in self._profiles:
            return self.create_profile(user_id)
        return self._profiles[user_id]

    def _set_joker(self, profile: Profile, balance: int, last_grant_month: Optional[YearMonth]) -> Profile:
        updated = Profile(
            user_id=profile.user_id,
            joker=JokerBalance(user_id=profile.user_id, balance=balance, last_grant_month=last_grant_month),
            created_at=profile.created_at,
        )
        self._profiles[profile.user_id] = updated
        return updated

    # Answers ----------------------------------------------------------
    async def get_answer(self, user_id: str, day: DayKey) -> Optional[Answer]:
        return self._answers.get((user_id, day))

    async def upsert_answer(self, user_id: str, day: DayKey, text: str, is_joker: bool = False) -> Answer:
        answer = Answer(user_id=user_id, day=day, text=text, is_joker=is_joker)
        async with self._lock:
            self._answers[(user_id, day)] = answer
        return answer

    async def list_answers_in_range(self, user_id: str, start: DayKey, end: DayKey) -> List[Answer]:
        return sorted(
            (a for (uid, day), a in self._answers.items() if uid == user_id and start <= day <= end),
            key=lambda a: a.day,
        )

    # Questions --------------------------------------------------------
    async def get_question(self, day: DayKey, lang: Lang) -> Optional[Question]:
        return self._questions.get((day, lang))

    async def list_questions_in_range(self, start: DayKey, end: DayKey, lang: Lang) -> List[Question]:
        return sorted(
            (q for (day, q_lang), q in self._questions.items() if q_lang == lang and start <= day <= end),
            key=lambda q: q.day,
        )

    # Profile and jokers -----------------------------------------------
    async def get_profile(self, user_id: str) -> Profile:
        return self._ensure_profile(user_id)

    async def grant_monthly_jokers(self, user_id: str, year_month: YearMonth, amount: int) -> bool:
        async with self._lock:
            profile = self._ensure_profile(user_id)
            if profile.joker.last_grant_month == year_month:
                return False
            self._set_joker(profile, profile.joker.balance + amount, year_month)
            return True

    async def consume_one_joker(
        self,
        user_id: str,
        idempotency_key: Optional[str] = None,
        day: Optional[DayKey] = None,
    ) -> bool:
        async with self._lock:
            if idempotency_key and idempotency_key in self._consumed_keys:
                return False
            profile = self._ensure_profile(user_id)
            if profile.joker.balance <= 0:
                raise InsufficientBalanceError("No jokers left")
            self._set_joker(profile, profile.joker.balance - 1, profile.joker.last_grant_month)
            if idempotency_key:
                self._consumed_keys.add(idempotency_key)
            if day:
                self._charged_days.add((user_id, day))
            return True

    async def joker_charged_for_day(self, user_id: str, day: DayKey) -> bool:
        return (user_id, day) in self._charged_days

    async def add_jokers(self, user_id: str, amount: int, reason: str) -> JokerBalance:
        if amount < 0:
            raise ValidationError("Bonus grants must be positive")
        async with self._lock:
            profile = self._ensure_profile(user_id)
            updated = self._set_joker(profile, profile.joker.balance + amount, profile.joker.last_grant_month)
            return updated.joker

    # Streaks and flags ------------------------------------------------
    async def get_streaks(self, user_id: str, today: DayKey) -> StreakState:
        answers = [a for (uid, _), a in self._answers.items() if uid == user_id]
        return compute_streaks(answers, today)

    async def mark_flag_if_absent(self, user_id: str, kind: str, day: DayKey) -> bool:
        key = (user_id, kind, day)
        async with self._lock:
            if key in self._flags:
                return False
            self._flags.add(key)
            return True
