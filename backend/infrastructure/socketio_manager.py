"""Socket.IO 管理器 - 向前台面板推送 PlayStation 站点事件

架构：
    BillingEngine → NotificationBus → SocketIONotificationDispatcher → 前端
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import socketio
import structlog

from application.events import NotificationDispatcher, NotificationEvent

logger = structlog.get_logger()

# 创建 AsyncServer 实例
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins="*",
    logger=False,
    engineio_logger=False,
)

# 订阅映射：sid -> station_id
_subscriptions: Dict[str, str] = {}
_state_provider: Optional[Callable[[], List[Dict[str, Any]]]] = None


def set_state_provider(provider: Callable[[], List[Dict[str, Any]]]) -> None:
    """设置站点快照来源（返回前端格式的站点列表）"""
    global _state_provider
    _state_provider = provider


# ========== Socket.IO 事件处理 ==========

@sio.event
async def connect(sid: str, environ: dict) -> None:
    logger.debug("socketio_connected", sid=sid)


@sio.event
async def disconnect(sid: str) -> None:
    logger.debug("socketio_disconnected", sid=sid)
    if sid in _subscriptions:
        station_id = _subscriptions.pop(sid)
        await sio.leave_room(sid, f"station:{station_id}")


@sio.event
async def subscribe_station(sid: str, data: dict) -> None:
    """客户端（站点显示屏）订阅单个站点的事件"""
    station_id = (data or {}).get("stationId")
    if not station_id:
        return
    if sid in _subscriptions:
        await sio.leave_room(sid, f"station:{_subscriptions[sid]}")
    _subscriptions[sid] = station_id
    await sio.enter_room(sid, f"station:{station_id}")
    logger.debug("socketio_subscribed", sid=sid, station_id=station_id)


@sio.event
async def subscribe_monitor(sid: str, data: dict = None) -> None:
    """前台面板订阅全局更新，并立即收到当前站点快照"""
    await sio.enter_room(sid, "monitor")
    await push_all_stations()


@sio.event
async def unsubscribe_monitor(sid: str, data: dict = None) -> None:
    await sio.leave_room(sid, "monitor")


# ========== 推送函数 ==========

async def push_all_stations() -> None:
    if _state_provider is None:
        return
    await sio.emit("monitor_update", {"stations": _state_provider()}, room="monitor")


class SocketIONotificationDispatcher(NotificationDispatcher):
    """Pushes ``ps_event`` to the station's room and to the monitor room."""

    name = "socketio"

    def __init__(self, server: socketio.AsyncServer = sio):
        self.server = server

    async def dispatch(self, event: NotificationEvent) -> None:
        body = event.to_dict()
        await self.server.emit("ps_event", body, room=f"station:{event.station_id}")
        await self.server.emit("ps_event", body, room="monitor")
