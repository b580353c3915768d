"""PlayStation session model with an explicit lifecycle state."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import InvalidStateError
from .pricing import elapsed_ms


class SessionState(str, Enum):
    IDLE = "IDLE"  # only reported for a station without a session
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class SessionMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class StartedBy(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


@dataclass
class Session:
    """
    A billed play session on one station.

    ``state`` is the source of truth; ``paused_at`` is payload of ``PAUSED`` and
    ``ended_at`` / ``total_cost`` are payload of ``ENDED``. Inconsistent
    combinations are rejected at construction time, and transitions go through
    the ``mark_*`` methods only.
    """

    session_id: str
    station_id: str
    started_at: datetime
    hourly_rate_snapshot: int
    current_mode: SessionMode = SessionMode.SINGLE
    started_by: StartedBy = StartedBy.MANUAL
    state: SessionState = SessionState.ACTIVE
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

    def __post_init__(self) -> None:
        self.current_mode = SessionMode(self.current_mode)
        self.started_by = StartedBy(self.started_by)
        self.state = SessionState(self.state)
        if self.state == SessionState.IDLE:
            raise ValueError("a stored session cannot be IDLE")
        if (self.state == SessionState.PAUSED) != (self.paused_at is not None):
            raise ValueError("paused_at must be set exactly when the session is PAUSED")
        if (self.state == SessionState.ENDED) != (self.ended_at is not None):
            raise ValueError("ended_at must be set exactly when the session is ENDED")
        if self.total_paused_ms < 0:
            raise ValueError("total_paused_ms cannot be negative")

    # ================== 状态查询 ==================
    @property
    def is_active(self) -> bool:
        """Active in the billing sense: not ended (running or paused)."""
        return self.state != SessionState.ENDED

    @property
    def is_paused(self) -> bool:
        return self.state == SessionState.PAUSED

    @property
    def is_ended(self) -> bool:
        return self.state == SessionState.ENDED

    def current_pause_ms(self, now: datetime) -> int:
        if not self.is_paused or self.paused_at is None:
            return 0
        return max(0, elapsed_ms(self.paused_at, now))

    # ================== 状态迁移 ==================
    def mark_paused(self, now: datetime) -> None:
        if self.state != SessionState.ACTIVE:
            raise InvalidStateError(f"Session {self.session_id} is {self.state.value}, cannot pause")
        self.state = SessionState.PAUSED
        self.paused_at = now

    def mark_resumed(self, now: datetime) -> int:
        """Leave ``PAUSED``; returns the pause interval folded into ``total_paused_ms``."""
        if self.state != SessionState.PAUSED:
            raise InvalidStateError(f"Session {self.session_id} is not paused")
        delta = self.current_pause_ms(now)
        self.total_paused_ms += delta
        self.paused_at = None
        self.state = SessionState.ACTIVE
        return delta

    def fold_pause(self, now: datetime) -> int:
        """Bank the running pause up to ``now`` and keep the session paused from ``now``."""
        if self.state != SessionState.PAUSED:
            return 0
        delta = self.current_pause_ms(now)
        self.total_paused_ms += delta
        self.paused_at = now
        return delta

    def mark_ended(self, now: datetime, total_cost: int) -> int:
        """Enter ``ENDED``; a running pause is folded in first and its length returned."""
        if self.state == SessionState.ENDED:
            raise InvalidStateError(f"Session {self.session_id} already ended")
        folded = self.mark_resumed(now) if self.is_paused else 0
        self.state = SessionState.ENDED
        self.ended_at = now
        self.total_cost = total_cost
        return folded

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    @property
    def net_bill(self) -> Optional[int]:
        """Amount the customer pays at this station once ended."""
        if self.total_cost is None:
            return None
        return self.total_cost + self.orders_cost - self.transferred_cost
