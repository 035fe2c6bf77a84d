from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request

from dailyq.features.session import EngagementSession, SessionRegistry
from dailyq.features.store.factory import build_store


def ensure_registry(app) -> SessionRegistry:
    registry: Optional[SessionRegistry] = getattr(app.state, "registry", None)
    if registry is None:
        registry = SessionRegistry(build_store(), getattr(app.state, "settings", None), getattr(app.state, "clock", None))
        app.state.registry = registry
    return registry


def get_user_id(x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_registry(request: Request) -> SessionRegistry:
    return ensure_registry(request.app)


def get_session(
    user_id: Annotated[str, Depends(get_user_id)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> EngagementSession:
    return registry.get(user_id)


SessionDep = Annotated[EngagementSession, Depends(get_session)]
