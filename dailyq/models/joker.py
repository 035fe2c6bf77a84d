from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dailyq.models.answer import YearMonth


@dataclass(frozen=True)
class JokerBalance:
    """Per-user joker tokens. Balance never goes negative."""

    user_id: str
    balance: int = 0
    last_grant_month: Optional[YearMonth] = None


@dataclass(frozen=True)
class Profile:
    user_id: str
    joker: JokerBalance
    created_at: Optional[datetime] = None

    @property
    def joker_balance(self) -> int:
        return self.joker.balance
