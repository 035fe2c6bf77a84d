from __future__ import annotations

from fastapi import APIRouter

from dailyq.api.deps import SessionDep

router = APIRouter(prefix="/v1/streaks", tags=["streaks"])


@router.get("/current")
async def get_current_streak(session: SessionDep):
    """Visual and real streak plus distance to the next milestone."""
    state = await session.streaks.current(session.user_id)
    progress = session.streaks.progress(state)
    return {
        "visual_streak": state.visual_streak,
        "real_streak": state.real_streak,
        "ends_on": state.ends_on,
        "next_milestone": progress.next_milestone,
        "days_left": progress.days_left,
        "percent": progress.percent,
    }
