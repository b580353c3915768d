"""Edge-triggered presence tracking that drives auto start / auto end."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import structlog

from domain.errors import BillingError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from domain.session import StartedBy
from domain.station import normalize_mac
from .billing_engine import BillingEngine

logger = structlog.get_logger()


class PresenceState(str, Enum):
    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


_ACTION_ALIASES = {
    "connect": PresenceState.UP,
    "connected": PresenceState.UP,
    "up": PresenceState.UP,
    "disconnect": PresenceState.DOWN,
    "disconnected": PresenceState.DOWN,
    "down": PresenceState.DOWN,
}


def normalize_action(action) -> PresenceState:
    if not isinstance(action, str) or not action.strip():
        raise ValidationError("action is required")
    state = _ACTION_ALIASES.get(action.strip().lower())
    if state is None:
        raise ValidationError(f"Unknown action '{action}'")
    return state


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    action: Optional[str] = None  # "started" | "ended"
    session_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        body: Dict[str, object] = {"success": self.success}
        if self.action:
            body["action"] = self.action
        if self.session_id:
            body["sessionId"] = self.session_id
        if self.message:
            body["message"] = self.message
        return body


class ConnectivityMonitor:
    """
    连接状态监听器

    ``last_state`` maps a normalized MAC to its last seen presence. The entry
    is written under the lock before any billing call, so a duplicate delivery
    that races an in-flight one sees the new state and becomes a no-op.
    """

    def __init__(self, engine: BillingEngine):
        self.engine = engine
        self._last_state: Dict[str, PresenceState] = {}
        self._lock = threading.Lock()

    def last_state(self, mac: str) -> PresenceState:
        with self._lock:
            return self._last_state.get(normalize_mac(mac), PresenceState.UNKNOWN)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return {mac: state.value for mac, state in self._last_state.items()}

    def handle_signal(self, mac, action) -> WebhookResult:
        if not isinstance(mac, str) or not mac.strip():
            raise ValidationError("mac is required")
        state = normalize_action(action)
        mac = normalize_mac(mac)

        station = self.engine.registry.get_station_by_mac(mac)
        if station is None:
            raise NotFoundError(f"No station registered for MAC {mac}")
        if station.in_maintenance:
            return WebhookResult(success=True, message=f"Station {station.station_id} is in maintenance")

        with self._lock:
            previous = self._last_state.get(mac, PresenceState.UNKNOWN)
            self._last_state[mac] = state
        if previous == state:
            return WebhookResult(success=True, message=f"State unchanged ({state.value})")

        logger.info("presence_changed", mac=mac, station_id=station.station_id, previous=previous.value, state=state.value)
        self._mark_online(station.station_id, state == PresenceState.UP)
        if state == PresenceState.UP:
            return self._on_up(station.station_id)
        return self._on_down(station.station_id)

    def _mark_online(self, station_id: str, online: bool) -> None:
        try:
            self.engine.registry.set_online(station_id, online)
        except BillingError as exc:
            logger.warning("station_online_update_failed", station_id=station_id, error=str(exc))

    def _on_up(self, station_id: str) -> WebhookResult:
        if self.engine.get_active_session(station_id) is not None:
            return WebhookResult(success=True, message="Session already active")
        if self.engine.in_manual_end_cooldown(station_id):
            return WebhookResult(success=True, message="Station recently ended manually, not auto-starting")
        try:
            session = self.engine.start_session(station_id, started_by=StartedBy.AUTO.value)
        except ConflictError:
            return WebhookResult(success=True, message="Session already active")
        return WebhookResult(success=True, action="started", session_id=session.session_id)

    def _on_down(self, station_id: str) -> WebhookResult:
        self.engine.clear_manual_end_cooldown(station_id)
        session = self.engine.get_active_session(station_id)
        if session is None:
            return WebhookResult(success=True, message="No active session")
        if session.started_by != StartedBy.AUTO:
            return WebhookResult(success=True, session_id=session.session_id, message="Manual session kept running")
        try:
            ended = self.engine.end_session(session.session_id)
        except InvalidStateError:
            return WebhookResult(success=True, message="Session already ended")
        return WebhookResult(success=True, action="ended", session_id=ended.session_id)
