"""Billing segment: a contiguous span of session time at one mode and rate."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Segment:
    segment_id: str
    session_id: str
    mode: str
    started_at: datetime
    hourly_rate_snapshot: int
    ended_at: Optional[datetime] = None
    paused_ms: int = 0  # pause intervals that fell inside this segment

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def close(self, now: datetime) -> None:
        if self.ended_at is None:
            self.ended_at = now
