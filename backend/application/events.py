"""计费引擎对外发布的通知事件 + 异步通知总线"""
from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

logger = structlog.get_logger()


class EventType(str, Enum):
    """事件类型枚举"""
    SESSION_STARTED = "sessionStarted"
    SESSION_ENDED = "sessionEnded"
    TIMER_WARNING = "timerWarning"        # payload: minutesRemaining
    TIMER_EXPIRED = "timerExpired"
    COST_LIMIT_REACHED = "costLimitReached"


@dataclass
class NotificationEvent:
    """BillingEngine 发出的事件，内容仅供展示"""
    event_type: EventType
    station_id: str
    session_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "type": self.event_type.value,
            "stationId": self.station_id,
            "sessionId": self.session_id,
            "payload": dict(self.payload),
            "createdAt": self.created_at.isoformat(),
        }


class NotificationDispatcher(ABC):
    """External collaborator that delivers events (displays, dashboards, logs)."""

    name = "dispatcher"

    @abstractmethod
    async def dispatch(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    name = "logging"

    async def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            "notification",
            event_type=event.event_type.value,
            station_id=event.station_id,
            session_id=event.session_id,
            **event.payload,
        )


class NotificationBus:
    """
    异步通知总线

    ``publish`` is synchronous and callable from any thread (the engine runs
    in request threads and in the executor). While the bus runs, events are
    handed to its loop with ``call_soon_threadsafe``; before ``start`` they are
    buffered, oldest dropped first once ``maxsize`` is reached. Dispatcher
    failures are logged and dropped, never retried.
    """

    def __init__(self, dispatchers: Sequence[NotificationDispatcher] = (), maxsize: int = 1000):
        self._dispatchers: List[NotificationDispatcher] = list(dispatchers)
        self._maxsize = maxsize
        self._pending: Deque[NotificationEvent] = deque(maxlen=maxsize)
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._running: bool = False
        self._lock = threading.Lock()

    def add_dispatcher(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatchers.append(dispatcher)

    @property
    def dispatchers(self) -> List[NotificationDispatcher]:
        return list(self._dispatchers)

    def publish(self, event: NotificationEvent) -> None:
        """Fire-and-forget; never raises into the caller."""
        with self._lock:
            loop = self._loop if self._running else None
            if loop is None:
                self._pending.append(event)
                return
        try:
            loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # loop already closed
            logger.warning("notification_dropped", event_type=event.event_type.value, reason="loop_closed")

    def _enqueue(self, event: NotificationEvent) -> None:
        assert self._queue is not None
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # 队列满时丢弃最旧的事件
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            self._queue.put_nowait(event)
            logger.warning("notification_dropped", event_type=dropped.event_type.value, reason="queue_full")

    async def _deliver(self, event: NotificationEvent) -> None:
        for dispatcher in self._dispatchers:
            try:
                await dispatcher.dispatch(event)
            except Exception as exc:
                logger.warning(
                    "notification_failed",
                    dispatcher=dispatcher.name,
                    event_type=event.event_type.value,
                    session_id=event.session_id,
                    error=str(exc),
                )

    async def _consume_loop(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """启动事件消费循环，并补发启动前缓存的事件"""
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._running = True
            buffered = list(self._pending)
            self._pending.clear()
        for event in buffered:
            self._enqueue(event)
        self._consumer_task = asyncio.create_task(self._consume_loop())
        logger.info("notification_bus_started", dispatchers=[d.name for d in self._dispatchers])

    async def join(self) -> None:
        """Wait until every queued event has been handed to the dispatchers."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """停止事件消费循环"""
        with self._lock:
            self._running = False
            self._loop = None
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        logger.info("notification_bus_stopped")

    def pending_count(self) -> int:
        """待处理事件数量"""
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + len(self._pending)

    @property
    def is_running(self) -> bool:
        return self._running
