"""Balance transfer between two sessions (immutable once created)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Transfer:
    transfer_id: str
    from_session_id: str
    to_session_id: str
    from_station_id: str
    gaming_amount: int
    orders_amount: int
    total_amount: int
    created_at: datetime
