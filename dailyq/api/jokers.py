from __future__ import annotations

from fastapi import APIRouter

from dailyq.api.deps import SessionDep

router = APIRouter(prefix="/v1/jokers", tags=["jokers"])


@router.get("")
async def get_jokers(session: SessionDep):
    """Balance after applying this month's grant when it is due."""
    profile = await session.load_profile()
    return {
        "user_id": profile.user_id,
        "balance": profile.joker.balance,
        "last_grant_month": profile.joker.last_grant_month,
        "monthly_grant": session.ledger.monthly_grant,
    }
