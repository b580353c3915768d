"""Extra charges (or discounts) booked onto a session."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Charge:
    charge_id: str
    session_id: str
    amount: int  # signed piasters, negative for discounts
    created_at: datetime
    reason: Optional[str] = None
    transfer_id: Optional[str] = None

    @property
    def from_transfer(self) -> bool:
        return self.transfer_id is not None
