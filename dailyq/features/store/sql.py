"""
SQLAlchemy-backed answer store (PostgreSQL in production, SQLite in tests).

Queries run on a worker thread through ``asyncio.to_thread`` so the event
loop never blocks on the driver. Every SQLAlchemy failure is mapped to
``StoreError`` before it leaves this module.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import func

from dailyq.core.database import answers, engagement_flags, joker_consumptions, profiles, questions
from dailyq.core.errors import AppError, InsufficientBalanceError, StoreError, ValidationError
from dailyq.features.store.base import AnswerStore
from dailyq.features.streaks.aggregate import compute_streaks
from dailyq.models.answer import Answer, DayKey, Lang, Question, YearMonth
from dailyq.models.joker import JokerBalance, Profile
from dailyq.models.streak import StreakState

logger = logging.getLogger("dailyq")

T = TypeVar("T")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAnswerStore(AnswerStore):
    def __init__(self, engine):
        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def _session(self):
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with self._session() as session:
                return fn(session)

        try:
            return await asyncio.to_thread(work)
        except AppError:
            raise
        except SQLAlchemyError as exc:
            logger.error("store.error", extra={"event_type": operation, "error_code": type(exc).__name__})
            raise StoreError(f"Store operation failed: {operation}") from exc

    def _insert(self, table):
        if self.dialect == "postgresql":
            return postgresql.insert(table)
        if self.dialect == "sqlite":
            return sqlite.insert(table)
        return None

    def _ensure_profile(self, session: Session, user_id: str) -> None:
        values = {"user_id": user_id, "joker_balance": 0}
        stmt = self._insert(profiles)
        if stmt is not None:
            session.execute(stmt.values(**values).on_conflict_do_nothing(index_elements=["user_id"]))
            return
        exists = session.execute(select(profiles.c.user_id).where(profiles.c.user_id == user_id)).first()
        if exists:
            return
        try:
            with session.begin_nested():
                session.execute(insert(profiles).values(**values))
        except IntegrityError:
            # Created concurrently by another request
            pass

    # Seeding helpers --------------------------------------------------
    async def add_question(self, day: DayKey, text: str, lang: Lang = "nl", question_id: Optional[str] = None) -> Question:
        question_id = question_id or f"{lang}-{day}"

        def fn(session: Session) -> Question:
            session.execute(insert(questions).values(id=question_id, day=day, lang=lang, text=text))
            return Question(id=question_id, text=text, day=day, lang=lang)

        return await self._run("add_question", fn)

    async def create_profile(
        self,
        user_id: str,
        *,
        balance: int = 0,
        last_grant_month: Optional[YearMonth] = None,
        created_at: Optional[datetime] = None,
    ) -> Profile:
        if balance < 0:
            raise ValidationError("Joker balance cannot be negative")

        def fn(session: Session) -> Profile:
            session.execute(
                insert(profiles).values(
                    user_id=user_id,
                    joker_balance=balance,
                    last_joker_grant_month=last_grant_month,
                    created_at=created_at,
                )
            )
            return Profile(
                user_id=user_id,
                joker=JokerBalance(user_id=user_id, balance=balance, last_grant_month=last_grant_month),
                created_at=created_at,
            )

        return await self._run("create_profile", fn)

    # Answers ----------------------------------------------------------
    async def get_answer(self, user_id: str, day: DayKey) -> Optional[Answer]:
        def fn(session: Session) -> Optional[Answer]:
            row = session.execute(
                select(answers.c.answer_text, answers.c.is_joker).where(
                    and_(answers.c.user_id == user_id, answers.c.question_date == day)
                )
            ).first()
            if not row:
                return None
            return Answer(user_id=user_id, day=day, text=row[0] or "", is_joker=bool(row[1]))

        return await self._run("get_answer", fn)

    async def upsert_answer(self, user_id: str, day: DayKey, text: str, is_joker: bool = False) -> Answer:
        def fn(session: Session) -> Answer:
            stmt = self._insert(answers)
            values = {"user_id": user_id, "question_date": day, "answer_text": text, "is_joker": is_joker}
            if stmt is not None:
                stmt = stmt.values(**values).on_conflict_do_update(
                    index_elements=["user_id", "question_date"],
                    set_={"answer_text": text, "is_joker": is_joker, "updated_at": func.now()},
                )
                session.execute(stmt)
            else:
                result = session.execute(
                    update(answers)
                    .where(and_(answers.c.user_id == user_id, answers.c.question_date == day))
                    .values(answer_text=text, is_joker=is_joker, updated_at=func.now())
                )
                if result.rowcount == 0:
                    session.execute(insert(answers).values(**values))
            return Answer(user_id=user_id, day=day, text=text, is_joker=is_joker)

        return await self._run("upsert_answer", fn)

    async def list_answers_in_range(self, user_id: str, start: DayKey, end: DayKey) -> List[Answer]:
        def fn(session: Session) -> List[Answer]:
            rows = session.execute(
                select(answers.c.question_date, answers.c.answer_text, answers.c.is_joker)
                .where(
                    and_(
                        answers.c.user_id == user_id,
                        answers.c.question_date >= start,
                        answers.c.question_date <= end,
                    )
                )
                .order_by(answers.c.question_date)
            ).fetchall()
            return [Answer(user_id=user_id, day=r[0], text=r[1] or "", is_joker=bool(r[2])) for r in rows]

        return await self._run("list_answers_in_range", fn)

    # Questions --------------------------------------------------------
    async def get_question(self, day: DayKey, lang: Lang) -> Optional[Question]:
        def fn(session: Session) -> Optional[Question]:
            row = session.execute(
                select(questions.c.id, questions.c.text).where(
                    and_(questions.c.day == day, questions.c.lang == lang)
                )
            ).first()
            if not row:
                return None
            return Question(id=row[0], text=row[1] or "", day=day, lang=lang)

        return await self._run("get_question", fn)

    async def list_questions_in_range(self, start: DayKey, end: DayKey, lang: Lang) -> List[Question]:
        def fn(session: Session) -> List[Question]:
            rows = session.execute(
                select(questions.c.id, questions.c.day, questions.c.text)
                .where(and_(questions.c.lang == lang, questions.c.day >= start, questions.c.day <= end))
                .order_by(questions.c.day)
            ).fetchall()
            return [Question(id=r[0], day=r[1], text=r[2] or "", lang=lang) for r in rows]

        return await self._run("list_questions_in_range", fn)

    # Profile and jokers -----------------------------------------------
    async def get_profile(self, user_id: str) -> Profile:
        def fn(session: Session) -> Profile:
            self._ensure_profile(session, user_id)
            row = session.execute(
                select(profiles.c.joker_balance, profiles.c.last_joker_grant_month, profiles.c.created_at).where(
                    profiles.c.user_id == user_id
                )
            ).first()
            return Profile(
                user_id=user_id,
                joker=JokerBalance(user_id=user_id, balance=int(row[0] or 0), last_grant_month=row[1]),
                created_at=_aware(row[2]),
            )

        return await self._run("get_profile", fn)

    async def grant_monthly_jokers(self, user_id: str, year_month: YearMonth, amount: int) -> bool:
        def fn(session: Session) -> bool:
            self._ensure_profile(session, user_id)
            result = session.execute(
                update(profiles)
                .where(
                    and_(
                        profiles.c.user_id == user_id,
                        or_(
                            profiles.c.last_joker_grant_month.is_(None),
                            profiles.c.last_joker_grant_month != year_month,
                        ),
                    )
                )
                .values(
                    joker_balance=profiles.c.joker_balance + amount,
                    last_joker_grant_month=year_month,
                )
            )
            return result.rowcount == 1

        return await self._run("grant_monthly_jokers", fn)

    async def consume_one_joker(
        self,
        user_id: str,
        idempotency_key: Optional[str] = None,
        day: Optional[DayKey] = None,
    ) -> bool:
        def fn(session: Session) -> bool:
            if idempotency_key:
                seen = session.execute(
                    select(joker_consumptions.c.id).where(joker_consumptions.c.idempotency_key == idempotency_key)
                ).first()
                if seen:
                    return False
            result = session.execute(
                update(profiles)
                .where(and_(profiles.c.user_id == user_id, profiles.c.joker_balance > 0))
                .values(joker_balance=profiles.c.joker_balance - 1)
            )
            if result.rowcount != 1:
                raise InsufficientBalanceError("No jokers left")
            session.execute(
                insert(joker_consumptions).values(
                    user_id=user_id,
                    idempotency_key=idempotency_key,
                    day=day,
                    created_at=datetime.now(timezone.utc),
                )
            )
            return True

        try:
            return await self._run("consume_one_joker", fn)
        except StoreError as exc:
            # A concurrent retry inserted the same key first; our decrement was rolled back
            if idempotency_key and isinstance(exc.__cause__, IntegrityError):
                return False
            raise

    async def joker_charged_for_day(self, user_id: str, day: DayKey) -> bool:
        def fn(session: Session) -> bool:
            row = session.execute(
                select(joker_consumptions.c.id)
                .where(and_(joker_consumptions.c.user_id == user_id, joker_consumptions.c.day == day))
                .limit(1)
            ).first()
            return row is not None

        return await self._run("joker_charged_for_day", fn)

    async def add_jokers(self, user_id: str, amount: int, reason: str) -> JokerBalance:
        if amount < 0:
            raise ValidationError("Bonus grants must be positive")

        def fn(session: Session) -> JokerBalance:
            self._ensure_profile(session, user_id)
            session.execute(
                update(profiles)
                .where(profiles.c.user_id == user_id)
                .values(joker_balance=profiles.c.joker_balance + amount)
            )
            row = session.execute(
                select(profiles.c.joker_balance, profiles.c.last_joker_grant_month).where(profiles.c.user_id == user_id)
            ).first()
            return JokerBalance(user_id=user_id, balance=int(row[0]), last_grant_month=row[1])

        logger.info("jokers.bonus", extra={"user_id": user_id, "event_type": reason})
        return await self._run("add_jokers", fn)

    # Streaks and flags ------------------------------------------------
    async def get_streaks(self, user_id: str, today: DayKey) -> StreakState:
        def fn(session: Session) -> List[Answer]:
            rows = session.execute(
                select(answers.c.question_date, answers.c.is_joker)
                .where(and_(answers.c.user_id == user_id, answers.c.question_date <= today))
                .order_by(answers.c.question_date.desc())
            ).fetchall()
            return [Answer(user_id=user_id, day=r[0], text="", is_joker=bool(r[1])) for r in rows]

        rows = await self._run("get_streaks", fn)
        return compute_streaks(rows, today)

    async def mark_flag_if_absent(self, user_id: str, kind: str, day: DayKey) -> bool:
        def fn(session: Session) -> bool:
            stmt = self._insert(engagement_flags)
            values = {"user_id": user_id, "kind": kind, "day": day, "created_at": datetime.now(timezone.utc)}
            if stmt is not None:
                result = session.execute(
                    stmt.values(**values).on_conflict_do_nothing(index_elements=["user_id", "kind", "day"])
                )
                return result.rowcount == 1
            try:
                with session.begin_nested():
                    session.execute(insert(engagement_flags).values(**values))
                return True
            except IntegrityError:
                return False

        return await self._run("mark_flag_if_absent", fn)
