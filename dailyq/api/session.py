from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from dailyq.api.deps import get_registry, get_user_id
from dailyq.features.session import SessionRegistry

router = APIRouter(prefix="/v1/session", tags=["session"])


@router.post("/close")
def close_session(
    user_id: Annotated[str, Depends(get_user_id)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
):
    """Sign-out: drop cached months and abandon open missed-day flows."""
    return {"closed": registry.close(user_id)}
