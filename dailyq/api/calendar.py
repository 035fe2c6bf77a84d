from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Query

from dailyq.api.deps import SessionDep
from dailyq.features.calendar.view import MonthView
from dailyq.models.answer import Lang

router = APIRouter(prefix="/v1/calendar", tags=["calendar"])


def serialize_month(view: MonthView) -> dict:
    return {
        "year_month": view.year_month,
        "today": view.today,
        "loading": view.loading,
        "error": view.error,
        "progress": {
            "answered": view.progress.answered,
            "answerable": view.progress.answerable,
            "percent": view.progress.percent,
        },
        "weeks": [[asdict(cell) if cell else None for cell in week] for week in view.weeks],
    }


@router.get("/{year_month}")
async def get_month(year_month: str, session: SessionDep, lang: Optional[Lang] = Query(None)):
    """Month grid with cell states; served from cache when already loaded."""
    navigator = await session.calendar(lang)
    navigator.go_to(year_month)
    view = await navigator.load()
    return serialize_month(view or navigator.current())


@router.post("/{year_month}/refetch")
async def refetch_month(year_month: str, session: SessionDep, lang: Optional[Lang] = Query(None)):
    navigator = await session.calendar(lang)
    navigator.go_to(year_month)
    view = await navigator.refresh()
    return serialize_month(view or navigator.current())
