"""
Missed-day endpoints.

    POST /v1/missed/{day}/open    -> closed_window | no_jokers | eligible
    POST /v1/missed/{day}/answer  -> saved | failed (retry with the same call)
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from dailyq.api.deps import SessionDep
from dailyq.features.missed_day.flow import FlowResult, MissedDayFlow
from dailyq.models.answer import Lang

router = APIRouter(prefix="/v1/missed", tags=["missed-day"])


class OpenRequest(BaseModel):
    lang: Optional[Lang] = None


class MissedAnswerRequest(BaseModel):
    text: str


def _serialize(flow: MissedDayFlow, result: FlowResult) -> dict:
    return {
        "day": flow.day,
        "state": result.state,
        "outcome": result.outcome,
        "error": result.error,
        "joker_consumed": result.joker_consumed,
        "balance": flow.balance,
        "question_text": flow.question_text,
        "milestone": asdict(result.milestone) if result.milestone else None,
    }


@router.post("/{day}/open")
async def open_missed_day(day: str, session: SessionDep, payload: Optional[OpenRequest] = None):
    flow = await session.open_missed_day(day, payload.lang if payload else None)
    if flow.state == "eligible":
        result = await flow.start_answering()
    else:
        result = flow.snapshot()
    return _serialize(flow, result)


@router.post("/{day}/answer")
async def answer_missed_day(day: str, payload: MissedAnswerRequest, session: SessionDep):
    flow = session.flow_for(day)
    result = await flow.submit(payload.text)
    if result.outcome == "saved":
        session.finish_flow(day)
    return _serialize(flow, result)
