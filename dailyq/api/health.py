"""Liveness and readiness endpoints."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from dailyq.api.deps import ensure_registry
from dailyq.core.errors import StoreError
from dailyq.core.logging import get_request_id
from dailyq.features.store.sql import SqlAnswerStore

logger = logging.getLogger("dailyq")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness: the store answers a trivial read."""
    store = ensure_registry(request.app).store
    backend = "sql" if isinstance(store, SqlAnswerStore) else "memory"
    try:
        await store.list_questions_in_range("2000-01-01", "2000-01-01", "nl")
    except StoreError:
        logger.warning("readyz.store_unavailable", extra={"request_id": get_request_id(), "error_code": "store_unavailable"})
        return JSONResponse(status_code=503, content={"ready": False, "store": backend})
    return {"ready": True, "store": backend}
