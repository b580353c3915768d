"""Connectivity webhook called by the router's monitor script."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from domain.errors import ValidationError
from interfaces import deps

router = APIRouter(prefix="/playstation", tags=["playstation"])


async def _signal_payload(request: Request) -> Dict[str, Any]:
    """Merge query params with a JSON or form body; body fields win."""
    data: Dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError("Malformed JSON body") from exc
        if not isinstance(body, dict):
            raise ValidationError("Webhook body must be a JSON object")
        data.update(body)
    elif "form" in content_type:
        form = await request.form()
        data.update({key: value for key, value in form.items()})
    return data


@router.post("/webhook")
async def connectivity_webhook(request: Request) -> Dict[str, Any]:
    """
    {mac, action}: action 取 connect / up / disconnect / down

    重复投递、维护中的站点等情况返回 success 和说明信息，不视为错误
    """
    data = await _signal_payload(request)
    result = await run_in_threadpool(deps.monitor.handle_signal, data.get("mac"), data.get("action"))
    return result.to_dict()


@router.get("/webhook")
def connectivity_status() -> Dict[str, Any]:
    states = deps.monitor.snapshot()
    stations = []
    for station in deps.registry.list_stations():
        stations.append(
            {
                "stationId": station.station_id,
                "macAddress": station.mac_address,
                "isOnline": station.is_online,
                "lastState": states.get(station.mac_address, "unknown"),
                "inCooldown": deps.engine.in_manual_end_cooldown(station.station_id),
            }
        )
    return {"success": True, "states": states, "stations": stations}
