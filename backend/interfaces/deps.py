"""Shared singletons for settings, stores, the billing engine and background tasks.

根据 app_config.yaml 中的 storage / clock / notifications 配置，自动选择各组件的实现。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import structlog

from app.config import AppConfig, get_settings
from application.billing_engine import BillingEngine
from application.clock import ManualClock, SystemClock
from application.connectivity_monitor import ConnectivityMonitor
from application.evaluation_loop import EvaluationLoop
from application.events import LoggingNotificationDispatcher, NotificationBus, NotificationDispatcher
from domain.station import MenuItem, Station

# 存储实现
from infrastructure.database import create_db_engine
from infrastructure.memory_store import InMemorySessionStore, InMemoryStationRegistry
from infrastructure.repository import SessionStore, StationRegistry
from infrastructure.socketio_manager import SocketIONotificationDispatcher
from infrastructure.sqlite_repo import SQLiteSessionStore, SQLiteStationRegistry

logger = structlog.get_logger()

settings = get_settings()


def _create_stores(config: AppConfig) -> Tuple[StationRegistry, SessionStore]:
    """根据配置创建站点注册表和会话存储"""
    backend = config.database_backend
    if backend == "memory":
        return InMemoryStationRegistry(), InMemorySessionStore()
    elif backend == "sqlite":
        db_engine = create_db_engine(config.sqlite_path)
        return SQLiteStationRegistry(db_engine), SQLiteSessionStore(db_engine)
    else:
        raise ValueError(f"Unknown database backend: {backend}. Supported: sqlite, memory")


def _create_clock(config: AppConfig):
    if config.clock_mode == "manual":
        return ManualClock(datetime.now(timezone.utc).replace(microsecond=0))
    return SystemClock()


def _create_dispatchers(names: List[str]) -> List[NotificationDispatcher]:
    dispatchers: List[NotificationDispatcher] = []
    for name in names:
        if name == "logging":
            dispatchers.append(LoggingNotificationDispatcher())
        elif name == "socketio":
            dispatchers.append(SocketIONotificationDispatcher())
        else:
            raise ValueError(f"Unknown notification dispatcher: {name}. Supported: logging, socketio")
    return dispatchers


def station_from_config(entry: Dict[str, Any]) -> Station:
    rate_multi = entry.get("rate_multi")
    return Station(
        station_id=str(entry["id"]),
        mac_address=str(entry["mac"]),
        hourly_rate_single=int(entry["rate_single"]),
        hourly_rate_multi=int(rate_multi) if rate_multi is not None else None,
        name=str(entry.get("name", "")),
        sort_order=int(entry.get("sort_order", 0)),
    )


def menu_item_from_config(entry: Dict[str, Any]) -> MenuItem:
    return MenuItem(
        item_id=str(entry["id"]),
        name=str(entry["name"]),
        price=int(entry["price"]),
        category=str(entry.get("category", "drinks")),
        is_available=bool(entry.get("available", True)),
    )


def seed_registry(target: StationRegistry, config: AppConfig) -> None:
    """Insert configured stations / menu items that the registry does not know yet."""
    for entry in config.stations:
        station = station_from_config(entry)
        if target.get_station(station.station_id) is None:
            target.save_station(station)
    for entry in config.menu:
        item = menu_item_from_config(entry)
        if target.get_menu_item(item.item_id) is None:
            target.save_menu_item(item)


registry, store = _create_stores(settings)
seed_registry(registry, settings)

clock = _create_clock(settings)
notification_bus = NotificationBus(
    _create_dispatchers(settings.notification_dispatchers),
    maxsize=settings.notification_queue_size,
)
engine = BillingEngine(
    registry,
    store,
    clock=clock,
    notifier=notification_bus,
    timer_warning_minutes=settings.timer_warning_minutes,
    manual_end_cooldown_seconds=settings.manual_end_cooldown_seconds,
)
monitor = ConnectivityMonitor(engine)
evaluation_loop = EvaluationLoop(engine, interval=settings.evaluation_interval_seconds)

logger.info(
    "deps_initialized",
    database_backend=settings.database_backend,
    clock_mode=settings.clock_mode,
    dispatchers=settings.notification_dispatchers,
)


def apply_settings(new_settings: AppConfig) -> None:
    """Update global settings reference and refresh dependent singletons."""
    global settings
    settings = new_settings
    engine.timer_warning_minutes = new_settings.timer_warning_minutes
    engine.manual_end_cooldown = timedelta(seconds=new_settings.manual_end_cooldown_seconds)
    evaluation_loop.interval = new_settings.evaluation_interval_seconds
    seed_registry(registry, new_settings)


def reload_settings_from_disk() -> AppConfig:
    """Force re-read of app_config.yaml and propagate changes."""
    get_settings.cache_clear()
    fresh = get_settings()
    apply_settings(fresh)
    return fresh
