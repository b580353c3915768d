"""In-memory data store intended for tests and the prototype stage."""
from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from domain.charge import Charge
from domain.order import SessionOrder
from domain.segment import Segment
from domain.session import Session
from domain.station import MenuItem, Station, StationStatus, normalize_mac
from domain.transfer import Transfer
from .repository import SessionStore, StationRegistry


class InMemoryStationRegistry(StationRegistry):
    def __init__(self):
        self._stations: Dict[str, Station] = {}
        self._menu: Dict[str, MenuItem] = {}
        self._lock = threading.RLock()

    def get_station(self, station_id: str) -> Optional[Station]:
        with self._lock:
            station = self._stations.get(station_id)
            return copy.copy(station) if station else None

    def get_station_by_mac(self, mac_address: str) -> Optional[Station]:
        mac = normalize_mac(mac_address)
        with self._lock:
            for station in self._stations.values():
                if station.mac_address == mac:
                    return copy.copy(station)
        return None

    def list_stations(self) -> List[Station]:
        with self._lock:
            stations = [copy.copy(s) for s in self._stations.values()]
        return sorted(stations, key=lambda s: (s.sort_order, s.station_id))

    def save_station(self, station: Station) -> None:
        with self._lock:
            self._stations[station.station_id] = copy.copy(station)

    def update_status(self, station_id: str, status: StationStatus) -> None:
        with self._lock:
            station = self._stations.get(station_id)
            if station:
                station.status = StationStatus(status)

    def set_online(self, station_id: str, is_online: bool) -> None:
        with self._lock:
            station = self._stations.get(station_id)
            if station:
                station.is_online = is_online

    def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        with self._lock:
            item = self._menu.get(item_id)
            return copy.copy(item) if item else None

    def list_menu_items(self) -> List[MenuItem]:
        with self._lock:
            return [copy.copy(item) for item in self._menu.values()]

    def save_menu_item(self, item: MenuItem) -> None:
        with self._lock:
            self._menu[item.item_id] = copy.copy(item)


class InMemorySessionStore(SessionStore):
    """Dict-backed ledger; a transaction snapshots the tables and restores on error."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._segments: Dict[str, Segment] = {}
        self._charges: Dict[str, Charge] = {}
        self._orders: Dict[str, SessionOrder] = {}
        self._transfers: Dict[str, Transfer] = {}
        self._lock = threading.RLock()
        self._depth = 0

    def _tables(self) -> tuple:
        return (self._sessions, self._segments, self._charges, self._orders, self._transfers)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            snapshot = tuple(copy.deepcopy(table) for table in self._tables())
            self._depth = 1
            try:
                yield
            except BaseException:
                (
                    self._sessions,
                    self._segments,
                    self._charges,
                    self._orders,
                    self._transfers,
                ) = snapshot
                raise
            finally:
                self._depth = 0

    # Sessions ------------------------------------------------------------
    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.copy(session) if session else None

    def save_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = copy.copy(session)

    def get_active_session(self, station_id: str) -> Optional[Session]:
        with self._lock:
            for session in self._sessions.values():
                if session.station_id == station_id and session.is_active:
                    return copy.copy(session)
        return None

    def list_active_sessions(self) -> List[Session]:
        with self._lock:
            return [copy.copy(s) for s in self._sessions.values() if s.is_active]

    def list_sessions(
        self,
        station_id: Optional[str] = None,
        ended_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Session]:
        with self._lock:
            sessions = [copy.copy(s) for s in self._sessions.values()]
        if station_id is not None:
            sessions = [s for s in sessions if s.station_id == station_id]
        if ended_only:
            sessions = [s for s in sessions if s.is_ended]
        sessions.sort(key=lambda s: s.ended_at or s.started_at, reverse=True)
        return sessions[:limit] if limit is not None else sessions

    # Segments ------------------------------------------------------------
    def add_segment(self, segment: Segment) -> None:
        with self._lock:
            self._segments[segment.segment_id] = copy.copy(segment)

    def update_segment(self, segment: Segment) -> None:
        self.add_segment(segment)

    def list_segments(self, session_id: str) -> List[Segment]:
        with self._lock:
            segments = [copy.copy(s) for s in self._segments.values() if s.session_id == session_id]
        return sorted(segments, key=lambda s: (s.started_at, s.is_open))

    # Charges -------------------------------------------------------------
    def add_charge(self, charge: Charge) -> None:
        with self._lock:
            self._charges[charge.charge_id] = copy.copy(charge)

    def get_charge(self, charge_id: str) -> Optional[Charge]:
        with self._lock:
            charge = self._charges.get(charge_id)
            return copy.copy(charge) if charge else None

    def update_charge(self, charge: Charge) -> None:
        self.add_charge(charge)

    def delete_charge(self, charge_id: str) -> None:
        with self._lock:
            self._charges.pop(charge_id, None)

    def list_charges(self, session_id: str) -> List[Charge]:
        with self._lock:
            charges = [copy.copy(c) for c in self._charges.values() if c.session_id == session_id]
        return sorted(charges, key=lambda c: c.created_at)

    # Orders --------------------------------------------------------------
    def add_order(self, order: SessionOrder) -> None:
        with self._lock:
            self._orders[order.order_id] = copy.copy(order)

    def get_order(self, order_id: str) -> Optional[SessionOrder]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.copy(order) if order else None

    def update_order(self, order: SessionOrder) -> None:
        self.add_order(order)

    def delete_order(self, order_id: str) -> None:
        with self._lock:
            self._orders.pop(order_id, None)

    def list_orders(self, session_id: str) -> List[SessionOrder]:
        with self._lock:
            orders = [copy.copy(o) for o in self._orders.values() if o.session_id == session_id]
        return sorted(orders, key=lambda o: o.created_at)

    # Transfers -----------------------------------------------------------
    def add_transfer(self, transfer: Transfer) -> None:
        with self._lock:
            self._transfers[transfer.transfer_id] = transfer

    def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        with self._lock:
            return self._transfers.get(transfer_id)

    def list_transfers(self, session_id: str) -> List[Transfer]:
        with self._lock:
            transfers = [
                t
                for t in self._transfers.values()
                if session_id in (t.from_session_id, t.to_session_id)
            ]
        return sorted(transfers, key=lambda t: t.created_at)
