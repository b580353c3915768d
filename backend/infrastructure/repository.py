"""Abstract persistence interfaces for stations and session ledgers."""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from domain.charge import Charge
    from domain.order import SessionOrder
    from domain.segment import Segment
    from domain.session import Session
    from domain.station import MenuItem, Station, StationStatus
    from domain.transfer import Transfer


class StationRegistry(ABC):
    """Station configuration and menu catalogue. Read-mostly for the engine."""

    @abstractmethod
    def get_station(self, station_id: str) -> Optional["Station"]:
        raise NotImplementedError

    @abstractmethod
    def get_station_by_mac(self, mac_address: str) -> Optional["Station"]:
        raise NotImplementedError

    @abstractmethod
    def list_stations(self) -> Iterable["Station"]:
        """Stations ordered by ``sort_order``."""
        raise NotImplementedError

    @abstractmethod
    def save_station(self, station: "Station") -> None:
        raise NotImplementedError

    @abstractmethod
    def update_status(self, station_id: str, status: "StationStatus") -> None:
        raise NotImplementedError

    @abstractmethod
    def set_online(self, station_id: str, is_online: bool) -> None:
        raise NotImplementedError

    # Menu catalogue ------------------------------------------------------
    @abstractmethod
    def get_menu_item(self, item_id: str) -> Optional["MenuItem"]:
        raise NotImplementedError

    @abstractmethod
    def list_menu_items(self) -> Iterable["MenuItem"]:
        raise NotImplementedError

    @abstractmethod
    def save_menu_item(self, item: "MenuItem") -> None:
        raise NotImplementedError


class SessionStore(ABC):
    """Unified gateway so the memory store and SQLite share the same API.

    Every method returns detached copies; mutating a returned object has no
    effect until it is saved back. Failures of the backing store surface as
    ``StorageError``.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """All writes inside the block commit together or not at all."""
        raise NotImplementedError

    # Sessions ------------------------------------------------------------
    @abstractmethod
    def get_session(self, session_id: str) -> Optional["Session"]:
        raise NotImplementedError

    @abstractmethod
    def save_session(self, session: "Session") -> None:
        """Insert or update."""
        raise NotImplementedError

    @abstractmethod
    def get_active_session(self, station_id: str) -> Optional["Session"]:
        raise NotImplementedError

    @abstractmethod
    def list_active_sessions(self) -> Iterable["Session"]:
        raise NotImplementedError

    @abstractmethod
    def list_sessions(
        self,
        station_id: Optional[str] = None,
        ended_only: bool = False,
        limit: Optional[int] = None,
    ) -> Iterable["Session"]:
        """Most recent first."""
        raise NotImplementedError

    # Segments ------------------------------------------------------------
    @abstractmethod
    def add_segment(self, segment: "Segment") -> None:
        raise NotImplementedError

    @abstractmethod
    def update_segment(self, segment: "Segment") -> None:
        raise NotImplementedError

    @abstractmethod
    def list_segments(self, session_id: str) -> Iterable["Segment"]:
        """Ordered by ``started_at``."""
        raise NotImplementedError

    # Charges -------------------------------------------------------------
    @abstractmethod
    def add_charge(self, charge: "Charge") -> None:
        raise NotImplementedError

    @abstractmethod
    def get_charge(self, charge_id: str) -> Optional["Charge"]:
        raise NotImplementedError

    @abstractmethod
    def update_charge(self, charge: "Charge") -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_charge(self, charge_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_charges(self, session_id: str) -> Iterable["Charge"]:
        raise NotImplementedError

    # Orders --------------------------------------------------------------
    @abstractmethod
    def add_order(self, order: "SessionOrder") -> None:
        raise NotImplementedError

    @abstractmethod
    def get_order(self, order_id: str) -> Optional["SessionOrder"]:
        raise NotImplementedError

    @abstractmethod
    def update_order(self, order: "SessionOrder") -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_order(self, order_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_orders(self, session_id: str) -> Iterable["SessionOrder"]:
        raise NotImplementedError

    # Transfers -----------------------------------------------------------
    @abstractmethod
    def add_transfer(self, transfer: "Transfer") -> None:
        raise NotImplementedError

    @abstractmethod
    def get_transfer(self, transfer_id: str) -> Optional["Transfer"]:
        raise NotImplementedError

    @abstractmethod
    def list_transfers(self, session_id: str) -> Iterable["Transfer"]:
        """Transfers into or out of the session."""
        raise NotImplementedError
