from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

# YYYY-MM-DD in the user's local calendar
DayKey = str
# YYYY-MM
YearMonth = str

Lang = Literal["nl", "en"]


@dataclass(frozen=True)
class Question:
    """A published daily question. Read-only to the engine."""

    id: str
    text: str
    day: DayKey
    lang: Lang = "nl"


@dataclass(frozen=True)
class Answer:
    """
    A user's answer for one day. Unique per (user_id, day); always written via upsert.
    """

    user_id: str
    day: DayKey
    text: str
    is_joker: bool = False


@dataclass(frozen=True)
class CalendarAnswerEntry:
    question_text: str
    answer_text: str
    is_joker: bool = False
