"""PlayStation station and menu catalogue models."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StationStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


def normalize_mac(mac: str) -> str:
    """Upper-case the address and use ``:`` separators (``aa-bb`` -> ``AA:BB``)."""
    return mac.strip().upper().replace("-", ":")


@dataclass
class Station:
    station_id: str
    mac_address: str
    hourly_rate_single: int
    hourly_rate_multi: Optional[int] = None
    status: StationStatus = StationStatus.AVAILABLE
    name: str = ""
    sort_order: int = 0
    is_online: bool = False

    def __post_init__(self) -> None:
        self.mac_address = normalize_mac(self.mac_address)
        if not self.name:
            self.name = self.station_id

    def rate_for_mode(self, mode: str) -> int:
        """多人模式只有在站点配置了 multi 费率时才生效，否则回落到单人费率。"""
        if mode == "multi" and self.hourly_rate_multi is not None:
            return self.hourly_rate_multi
        return self.hourly_rate_single

    @property
    def in_maintenance(self) -> bool:
        return self.status == StationStatus.MAINTENANCE


@dataclass
class MenuItem:
    """Food / drink item that can be ordered onto a running session."""

    item_id: str
    name: str
    price: int
    category: str = "drinks"
    is_available: bool = True
