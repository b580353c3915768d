"""Station board and menu catalogue endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field, StrictInt

from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.station import MenuItem, Station
from interfaces import deps
from interfaces.serializers import (
    menu_item_to_dict,
    station_to_dict,
    station_view_to_dict,
)

router = APIRouter(prefix="/stations", tags=["stations"])


class StationRequest(BaseModel):
    stationId: str = Field(..., min_length=1, max_length=64)
    macAddress: str = Field(..., min_length=1, max_length=32)
    rateSingle: StrictInt = Field(..., description="piaster / 小时")
    rateMulti: Optional[StrictInt] = None
    name: str = ""
    sortOrder: int = 0


class StationStatusRequest(BaseModel):
    status: str = Field(..., description="available | occupied | maintenance")


class MenuItemRequest(BaseModel):
    itemId: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1)
    price: StrictInt
    category: str = "drinks"
    isAvailable: bool = True


def station_board() -> list:
    """当前所有站点的状态 + 实时费用（前台面板 / Socket.IO 快照共用）"""
    return [station_view_to_dict(view) for view in deps.engine.list_station_statuses()]


@router.get("")
def list_stations() -> Dict[str, Any]:
    return {"stations": station_board()}


@router.post("")
def register_station(payload: StationRequest) -> Dict[str, Any]:
    if payload.rateSingle < 0 or (payload.rateMulti is not None and payload.rateMulti < 0):
        raise ValidationError("Hourly rates cannot be negative")
    registry = deps.registry
    if registry.get_station(payload.stationId) is not None:
        raise ConflictError(f"Station {payload.stationId} already exists")
    station = Station(
        station_id=payload.stationId,
        mac_address=payload.macAddress,
        hourly_rate_single=payload.rateSingle,
        hourly_rate_multi=payload.rateMulti,
        name=payload.name,
        sort_order=payload.sortOrder,
    )
    if registry.get_station_by_mac(station.mac_address) is not None:
        raise ConflictError(f"MAC {station.mac_address} is already registered")
    registry.save_station(station)
    return {"success": True, "station": station_to_dict(station)}


@router.get("/menu")
def list_menu() -> Dict[str, Any]:
    return {"items": [menu_item_to_dict(item) for item in deps.registry.list_menu_items()]}


@router.post("/menu")
def save_menu_item(payload: MenuItemRequest) -> Dict[str, Any]:
    if payload.price < 0:
        raise ValidationError("Price cannot be negative")
    item = MenuItem(
        item_id=payload.itemId,
        name=payload.name,
        price=payload.price,
        category=payload.category,
        is_available=payload.isAvailable,
    )
    deps.registry.save_menu_item(item)
    return {"success": True, "item": menu_item_to_dict(item)}


@router.get("/{station_id}")
def get_station(station_id: str) -> Dict[str, Any]:
    for view in deps.engine.list_station_statuses():
        if view.station.station_id == station_id:
            return station_view_to_dict(view)
    raise NotFoundError(f"Station {station_id} not found")


@router.put("/{station_id}/status")
def update_station_status(station_id: str, payload: StationStatusRequest) -> Dict[str, Any]:
    station = deps.engine.update_station_status(station_id, payload.status)
    return {"success": True, "station": station_to_dict(station)}
