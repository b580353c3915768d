"""领域对象 → 前端 JSON（camelCase）"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from application.billing_engine import LiveCost, StationView, TimerAlert
from domain.charge import Charge
from domain.order import SessionOrder
from domain.segment import Segment
from domain.session import Session
from domain.station import MenuItem, Station
from domain.transfer import Transfer


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def session_to_dict(session: Session) -> Dict[str, Any]:
    return {
        "sessionId": session.session_id,
        "stationId": session.station_id,
        "state": session.state.value,
        "startedAt": _iso(session.started_at),
        "endedAt": _iso(session.ended_at),
        "pausedAt": _iso(session.paused_at),
        "hourlyRate": session.hourly_rate_snapshot,
        "currentMode": session.current_mode.value,
        "startedBy": session.started_by.value,
        "totalCost": session.total_cost,
        "ordersCost": session.orders_cost,
        "extraCharges": session.extra_charges,
        "transferredCost": session.transferred_cost,
        "netBill": session.net_bill,
        "timerMinutes": session.timer_minutes,
        "timerNotified": session.timer_notified,
        "costLimit": session.cost_limit_piasters,
        "costLimitNotified": session.cost_limit_notified,
        "totalPausedMs": session.total_paused_ms,
        "notes": session.notes,
    }


def live_cost_to_dict(live: LiveCost) -> Dict[str, Any]:
    return {
        "asOf": _iso(live.as_of),
        "gamingCost": live.gaming_cost,
        "ordersCost": live.orders_cost,
        "transferredCost": live.transferred_cost,
        "netTotal": live.net_total,
        "elapsedMinutes": live.elapsed_minutes,
        "segments": [
            {
                "segmentId": item.segment_id,
                "mode": item.mode,
                "hourlyRate": item.hourly_rate,
                "minutes": item.minutes,
                "cost": item.cost,
            }
            for item in live.breakdown.segments
        ],
    }


def segment_to_dict(segment: Segment) -> Dict[str, Any]:
    return {
        "segmentId": segment.segment_id,
        "mode": segment.mode,
        "startedAt": _iso(segment.started_at),
        "endedAt": _iso(segment.ended_at),
        "hourlyRate": segment.hourly_rate_snapshot,
        "pausedMs": segment.paused_ms,
    }


def charge_to_dict(charge: Charge) -> Dict[str, Any]:
    return {
        "chargeId": charge.charge_id,
        "amount": charge.amount,
        "reason": charge.reason,
        "createdAt": _iso(charge.created_at),
        "transferId": charge.transfer_id,
    }


def order_to_dict(order: SessionOrder) -> Dict[str, Any]:
    return {
        "orderId": order.order_id,
        "menuItemId": order.menu_item_id,
        "quantity": order.quantity,
        "price": order.price_snapshot,
        "lineTotal": order.line_total,
        "createdAt": _iso(order.created_at),
    }


def transfer_to_dict(transfer: Transfer) -> Dict[str, Any]:
    return {
        "transferId": transfer.transfer_id,
        "fromSessionId": transfer.from_session_id,
        "toSessionId": transfer.to_session_id,
        "fromStationId": transfer.from_station_id,
        "gamingAmount": transfer.gaming_amount,
        "ordersAmount": transfer.orders_amount,
        "totalAmount": transfer.total_amount,
        "createdAt": _iso(transfer.created_at),
    }


def station_to_dict(station: Station) -> Dict[str, Any]:
    return {
        "stationId": station.station_id,
        "name": station.name,
        "macAddress": station.mac_address,
        "rateSingle": station.hourly_rate_single,
        "rateMulti": station.hourly_rate_multi,
        "status": station.status.value,
        "sortOrder": station.sort_order,
        "isOnline": station.is_online,
    }


def station_view_to_dict(view: StationView) -> Dict[str, Any]:
    body = station_to_dict(view.station)
    body["state"] = view.state.value
    body["inCooldown"] = view.in_cooldown
    body["session"] = session_to_dict(view.session) if view.session else None
    body["liveCost"] = live_cost_to_dict(view.live_cost) if view.live_cost else None
    return body


def timer_alert_to_dict(alert: TimerAlert) -> Dict[str, Any]:
    return {
        "sessionId": alert.session.session_id,
        "stationId": alert.session.station_id,
        "timerMinutes": alert.timer_minutes,
        "elapsedMinutes": alert.elapsed_minutes,
        "remainingMinutes": alert.remaining_minutes,
        "expired": alert.expired,
    }


def menu_item_to_dict(item: MenuItem) -> Dict[str, Any]:
    return {
        "itemId": item.item_id,
        "name": item.name,
        "price": item.price,
        "category": item.category,
        "isAvailable": item.is_available,
    }
