"""Session mutation and read endpoints for the front desk."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field, StrictInt

from interfaces import deps
from interfaces.serializers import (
    charge_to_dict,
    live_cost_to_dict,
    order_to_dict,
    segment_to_dict,
    session_to_dict,
    timer_alert_to_dict,
    transfer_to_dict,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


class StartSessionRequest(BaseModel):
    stationId: str = Field(..., min_length=1, max_length=64)
    startedBy: str = Field("manual", description="manual | auto")
    timerMinutes: Optional[StrictInt] = Field(None, description="可选：定时提醒（分钟）")
    costLimit: Optional[StrictInt] = Field(None, description="可选：消费上限（piaster）")
    notes: Optional[str] = None


class EndSessionRequest(BaseModel):
    customTotalCost: Optional[StrictInt] = Field(None, description="人工议价，直接作为游戏费用")
    notes: Optional[str] = None


class SwitchModeRequest(BaseModel):
    mode: str = Field(..., description="single | multi")


class ChargeRequest(BaseModel):
    amount: StrictInt = Field(..., description="piaster，负数为折扣")
    reason: Optional[str] = None


class OrderRequest(BaseModel):
    menuItemId: str = Field(..., min_length=1)
    quantity: StrictInt = Field(1)


class TimerRequest(BaseModel):
    minutes: Optional[StrictInt] = None


class CostLimitRequest(BaseModel):
    piasters: Optional[StrictInt] = None


class TransferRequest(BaseModel):
    targetSessionId: str = Field(..., min_length=1)
    includeOrders: bool = False


class SwitchStationRequest(BaseModel):
    stationId: str = Field(..., min_length=1, max_length=64)


class StartTimeRequest(BaseModel):
    startedAt: datetime


def _session_response(session) -> Dict[str, Any]:
    return {"success": True, "session": session_to_dict(session)}


# ================== 读取 ==================
@router.get("/active")
def list_active_sessions() -> Dict[str, Any]:
    sessions = deps.engine.list_active_sessions()
    return {"sessions": [session_to_dict(s) for s in sessions]}


@router.get("/history")
def list_history(
    stationId: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    sessions = deps.engine.list_history(station_id=stationId, limit=limit)
    return {"sessions": [session_to_dict(s) for s in sessions]}


@router.get("/timer-alerts")
def timer_alerts() -> Dict[str, Any]:
    return {"alerts": [timer_alert_to_dict(alert) for alert in deps.engine.timer_alerts()]}


@router.get("/transfers/{transfer_id}")
def get_transfer(transfer_id: str) -> Dict[str, Any]:
    return {"transfer": transfer_to_dict(deps.engine.get_transfer(transfer_id))}


@router.get("/{session_id}")
def get_session(session_id: str) -> Dict[str, Any]:
    engine = deps.engine
    live = engine.get_live_cost(session_id)
    return {
        "session": session_to_dict(live.session),
        "liveCost": live_cost_to_dict(live),
        "segments": [segment_to_dict(s) for s in engine.list_segments(session_id)],
        "charges": [charge_to_dict(c) for c in engine.list_charges(session_id)],
        "orders": [order_to_dict(o) for o in engine.list_orders(session_id)],
        "transfers": [transfer_to_dict(t) for t in engine.list_transfers(session_id)],
    }


# ================== 生命周期 ==================
@router.post("")
def start_session(payload: StartSessionRequest) -> Dict[str, Any]:
    session = deps.engine.start_session(
        payload.stationId,
        started_by=payload.startedBy,
        timer_minutes=payload.timerMinutes,
        cost_limit_piasters=payload.costLimit,
        notes=payload.notes,
    )
    return _session_response(session)


@router.post("/{session_id}/end")
def end_session(session_id: str, payload: Optional[EndSessionRequest] = None) -> Dict[str, Any]:
    payload = payload or EndSessionRequest()
    session = deps.engine.end_session(session_id, custom_total_cost=payload.customTotalCost, notes=payload.notes)
    return _session_response(session)


@router.post("/{session_id}/pause")
def pause_session(session_id: str) -> Dict[str, Any]:
    return _session_response(deps.engine.pause_session(session_id))


@router.post("/{session_id}/resume")
def resume_session(session_id: str) -> Dict[str, Any]:
    return _session_response(deps.engine.resume_session(session_id))


@router.post("/{session_id}/mode")
def switch_mode(session_id: str, payload: SwitchModeRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.switch_mode(session_id, payload.mode))


# ================== 附加费用 / 点单 ==================
@router.post("/{session_id}/charges")
def add_charge(session_id: str, payload: ChargeRequest) -> Dict[str, Any]:
    session = deps.engine.add_charge(session_id, payload.amount, payload.reason)
    body = _session_response(session)
    body["charges"] = [charge_to_dict(c) for c in deps.engine.list_charges(session_id)]
    return body


@router.patch("/charges/{charge_id}")
def update_charge(charge_id: str, payload: ChargeRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.update_charge(charge_id, payload.amount, payload.reason))


@router.delete("/charges/{charge_id}")
def remove_charge(charge_id: str) -> Dict[str, Any]:
    return _session_response(deps.engine.remove_charge(charge_id))


@router.post("/{session_id}/orders")
def add_order(session_id: str, payload: OrderRequest) -> Dict[str, Any]:
    session = deps.engine.add_order(session_id, payload.menuItemId, payload.quantity)
    body = _session_response(session)
    body["orders"] = [order_to_dict(o) for o in deps.engine.list_orders(session_id)]
    return body


@router.delete("/orders/{order_id}")
def remove_order(order_id: str) -> Dict[str, Any]:
    return _session_response(deps.engine.remove_order(order_id))


# ================== 定时器 / 消费上限 ==================
@router.put("/{session_id}/timer")
def set_timer(session_id: str, payload: TimerRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.set_timer(session_id, payload.minutes))


@router.put("/{session_id}/cost-limit")
def set_cost_limit(session_id: str, payload: CostLimitRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.set_cost_limit(session_id, payload.piasters))


# ================== 转台 / 换机 / 更正 ==================
@router.post("/{session_id}/transfer")
def transfer_session(session_id: str, payload: TransferRequest) -> Dict[str, Any]:
    target = deps.engine.transfer_session(session_id, payload.targetSessionId, payload.includeOrders)
    source = deps.engine.get_session(session_id)
    return {
        "success": True,
        "source": session_to_dict(source),
        "target": session_to_dict(target),
        "transfers": [transfer_to_dict(t) for t in deps.engine.list_transfers(session_id)],
    }


@router.post("/{session_id}/station")
def switch_station(session_id: str, payload: SwitchStationRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.switch_station(session_id, payload.stationId))


@router.post("/{session_id}/start-time")
def correct_start_time(session_id: str, payload: StartTimeRequest) -> Dict[str, Any]:
    return _session_response(deps.engine.correct_start_time(session_id, payload.startedAt))
