"""调试专用API路由 - 模拟时钟推进与手动评估"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from application.clock import ManualClock
from domain.errors import InvalidStateError
from interfaces import deps
from interfaces.serializers import session_to_dict

router = APIRouter(prefix="/debug", tags=["debug"])


class AdvanceClockRequest(BaseModel):
    minutes: float = Field(0, ge=0)
    seconds: float = Field(0, ge=0)
    evaluate: bool = Field(True, description="推进后立即执行一次定时评估")


class SetClockRequest(BaseModel):
    now: datetime


def _manual_clock() -> ManualClock:
    clock = deps.engine.clock
    if not isinstance(clock, ManualClock):
        raise InvalidStateError("Debug clock is only available with clock.mode = manual")
    return clock


@router.get("/clock")
def read_clock() -> Dict[str, Any]:
    clock = deps.engine.clock
    return {
        "mode": "manual" if isinstance(clock, ManualClock) else "system",
        "now": clock.now().isoformat(),
    }


@router.post("/clock/advance")
async def advance_clock(payload: AdvanceClockRequest) -> Dict[str, Any]:
    """
    推进模拟时钟

    ⚠️ 仅用于调试和场景回放
    """
    now = _manual_clock().advance(minutes=payload.minutes, seconds=payload.seconds)
    fired = []
    if payload.evaluate:
        fired = await run_in_threadpool(deps.engine.evaluate_active)
    return {
        "success": True,
        "now": now.isoformat(),
        "events": [event.to_dict() for event in fired],
    }


@router.post("/clock/set")
def set_clock(payload: SetClockRequest) -> Dict[str, Any]:
    clock = _manual_clock()
    clock.set(payload.now)
    return {"success": True, "now": clock.now().isoformat()}


@router.post("/evaluate")
async def evaluate_now(sessionId: Optional[str] = None) -> Dict[str, Any]:
    """立即执行一次定时器 / 消费上限评估"""
    if sessionId:
        fired = await run_in_threadpool(deps.engine.evaluate, sessionId)
        session = deps.engine.get_session(sessionId)
        return {
            "success": True,
            "session": session_to_dict(session),
            "events": [event.to_dict() for event in fired],
        }
    fired = await run_in_threadpool(deps.engine.evaluate_active)
    return {"success": True, "events": [event.to_dict() for event in fired]}
