from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from dailyq.api.deps import SessionDep
from dailyq.models.answer import Lang

router = APIRouter(prefix="/v1/answers", tags=["answers"])


class TodayAnswerRequest(BaseModel):
    text: str = Field(..., description="Answer text; trimmed, 1..ANSWER_MAX_LENGTH characters")
    lang: Optional[Lang] = None


@router.get("/today")
async def get_today(session: SessionDep, lang: Optional[Lang] = Query(None)):
    question, answer = await session.answers.load(session.user_id, lang)
    return {"question": asdict(question), "answer": asdict(answer) if answer else None}


@router.post("/today")
async def submit_today(payload: TodayAnswerRequest, session: SessionDep):
    outcome = await session.answers.submit(session.user_id, payload.text, payload.lang)
    return {
        "answer": asdict(outcome.answer),
        "was_update": outcome.was_update,
        "recap": asdict(outcome.recap) if outcome.recap else None,
        "milestone": asdict(outcome.milestone) if outcome.milestone else None,
    }
