"""SQLModel ORM tables mirroring the domain entities."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field


class StationModel(SQLModel, table=True):
    station_id: str = Field(primary_key=True)
    mac_address: str = Field(index=True)
    hourly_rate_single: int
    hourly_rate_multi: Optional[int] = Field(default=None)
    status: str = Field(default="available")
    name: str = Field(default="")
    sort_order: int = Field(default=0)
    is_online: bool = Field(default=False)


class MenuItemModel(SQLModel, table=True):
    item_id: str = Field(primary_key=True)
    name: str
    price: int
    category: str = Field(default="drinks")
    is_available: bool = Field(default=True)


class SessionModel(SQLModel, table=True):
    session_id: str = Field(primary_key=True)
    station_id: str = Field(index=True)
    started_at: datetime
    hourly_rate_snapshot: int
    current_mode: str = Field(default="single")
    started_by: str = Field(default="manual")
    state: str = Field(default="ACTIVE", index=True)
    paused_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    total_cost: Optional[int] = None
    orders_cost: int = 0
    extra_charges: int = 0
    transferred_cost: int = 0
    timer_minutes: Optional[int] = None
    timer_notified: bool = False
    timer_warning_notified: bool = False
    cost_limit_piasters: Optional[int] = None
    cost_limit_notified: bool = False
    total_paused_ms: int = 0
    notes: Optional[str] = None


class SegmentModel(SQLModel, table=True):
    segment_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    mode: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    hourly_rate_snapshot: int
    paused_ms: int = Field(default=0)


class ChargeModel(SQLModel, table=True):
    charge_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    amount: int
    reason: Optional[str] = None
    created_at: datetime
    transfer_id: Optional[str] = Field(default=None)  # 由转台产生的费用


class OrderModel(SQLModel, table=True):
    order_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    menu_item_id: str
    quantity: int
    price_snapshot: int
    created_at: datetime


class TransferModel(SQLModel, table=True):
    transfer_id: str = Field(primary_key=True)
    from_session_id: str = Field(index=True)
    to_session_id: str = Field(index=True)
    from_station_id: str
    gaming_amount: int
    orders_amount: int
    total_amount: int
    created_at: datetime
