"""Food / drink order lines attached to a session."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class SessionOrder:
    order_id: str
    session_id: str
    menu_item_id: str
    quantity: int
    price_snapshot: int
    created_at: datetime

    @property
    def line_total(self) -> int:
        return self.price_snapshot * self.quantity
