"""
One signed-in user's engagement state.

The session owns the month cache, joker ledger, streak calculator and any
open missed-day flows. Signing out calls ``close()``, which drops cached
months and abandons open flows; nothing is shared between users.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from dailyq.core.config import Settings, settings as default_settings
from dailyq.core.errors import NotFoundError
from dailyq.features.answers.service import TodayAnswerService
from dailyq.features.calendar.cache import ReconciliationCache
from dailyq.features.calendar.view import CalendarNavigator
from dailyq.features.jokers.ledger import JokerLedger
from dailyq.features.missed_day.flow import MissedDayFlow
from dailyq.features.store.base import AnswerStore
from dailyq.features.streaks.service import StreakCalculator
from dailyq.models.answer import DayKey, Lang
from dailyq.models.joker import Profile

logger = logging.getLogger("dailyq")


class EngagementSession:
    def __init__(
        self,
        user_id: str,
        store: AnswerStore,
        settings: Optional[Settings] = None,
        clock=None,
    ):
        self.user_id = user_id
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock or (lambda: datetime.now().astimezone())

        self.cache = ReconciliationCache(store, user_id=user_id, default_lang=self.settings.DEFAULT_LANG)
        self.ledger = JokerLedger(store, settings=self.settings, clock=self.clock)
        self.streaks = StreakCalculator(store, settings=self.settings, clock=self.clock)
        self.answers = TodayAnswerService(store, self.cache, self.streaks, settings=self.settings, clock=self.clock)
        self.profile: Optional[Profile] = None
        self._flows: Dict[DayKey, MissedDayFlow] = {}
        self.closed = False

    async def load_profile(self) -> Profile:
        """Profile load applies the monthly joker grant when due."""
        self.profile = await self.ledger.profile(self.user_id, self.clock())
        return self.profile

    async def account_created_at(self):
        if self.profile is None:
            await self.load_profile()
        return self.profile.created_at if self.profile else None

    async def calendar(self, lang: Optional[Lang] = None) -> CalendarNavigator:
        return CalendarNavigator(
            self.cache,
            self.user_id,
            account_created_at=await self.account_created_at(),
            lang=lang,
            settings=self.settings,
            clock=self.clock,
        )

    async def open_missed_day(self, day: DayKey, lang: Optional[Lang] = None, today: Optional[DayKey] = None) -> MissedDayFlow:
        """Start a fresh flow for ``day``, replacing any earlier one."""
        flow = MissedDayFlow(
            user_id=self.user_id,
            day=day,
            store=self.store,
            ledger=self.ledger,
            cache=self.cache,
            streaks=self.streaks,
            lang=lang or self.settings.DEFAULT_LANG,
            account_created_at=await self.account_created_at(),
            settings=self.settings,
            clock=self.clock,
        )
        await flow.open(today)
        if not flow.is_terminal:
            self._flows[day] = flow
        return flow

    def flow_for(self, day: DayKey) -> MissedDayFlow:
        flow = self._flows.get(day)
        if flow is None:
            raise NotFoundError(f"No open missed-day flow for {day}", code="flow_not_found")
        return flow

    def finish_flow(self, day: DayKey) -> None:
        self._flows.pop(day, None)

    def close(self) -> None:
        self.cache.close()
        self._flows.clear()
        self.closed = True
        logger.info("session.closed", extra={"user_id": self.user_id})


class SessionRegistry:
    """
    Maps user ids to live sessions for the HTTP surface.

    A session lives until sign-out (``close``) or until it has gone
    ``SESSION_IDLE_SECONDS`` without a request. Idle sessions are swept on
    each lookup. Evicting one only drops cached months and open flows: the
    store still holds every answer and every joker charge.
    """

    def __init__(
        self,
        store: AnswerStore,
        settings: Optional[Settings] = None,
        clock=None,
        *,
        idle_seconds: Optional[float] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock
        self.idle_seconds = self.settings.SESSION_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self._timer = timer
        self._sessions: Dict[str, EngagementSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> EngagementSession:
        now = self._timer()
        self.evict_idle(now)
        session = self._sessions.get(user_id)
        if session is None or session.closed:
            session = EngagementSession(user_id, self.store, self.settings, self.clock)
            self._sessions[user_id] = session
        self._last_seen[user_id] = now
        return session

    def evict_idle(self, now: Optional[float] = None) -> int:
        if not self.idle_seconds:
            return 0
        now = self._timer() if now is None else now
        stale = [uid for uid, seen in self._last_seen.items() if now - seen > self.idle_seconds]
        for uid in stale:
            self.close(uid)
            logger.info("session.evicted", extra={"user_id": uid})
        return len(stale)

    def close(self, user_id: str) -> bool:
        self._last_seen.pop(user_id, None)
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for user_id in list(self._sessions):
            self.close(user_id)
