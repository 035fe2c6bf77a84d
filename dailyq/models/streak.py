from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from dailyq.models.answer import DayKey

CellState = Literal["today", "answered", "joker", "missed", "future", "before"]
Milestone = Literal[7, 30, 100]


@dataclass(frozen=True)
class StreakState:
    """
    Derived streak pair. Every real-streak day is also a visual-streak day,
    so real_streak <= visual_streak.
    """

    visual_streak: int = 0
    real_streak: int = 0
    ends_on: Optional[DayKey] = None

    @property
    def milestone_value(self) -> int:
        return max(self.visual_streak, self.real_streak)


@dataclass(frozen=True)
class MilestoneEvent:
    milestone: int
    streak: int
    day: DayKey


@dataclass(frozen=True)
class MilestoneProgress:
    next_milestone: Optional[int]
    days_left: int
    percent: float


@dataclass(frozen=True)
class WeeklyRecap:
    start: DayKey
    end: DayKey
    count: int
    total: int
