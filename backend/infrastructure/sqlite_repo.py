"""SQLite-backed registry and session store implementations."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session as DbSession, or_, select

from domain.charge import Charge
from domain.errors import StorageError
from domain.order import SessionOrder
from domain.segment import Segment
from domain.session import Session, SessionState
from domain.station import MenuItem, Station, StationStatus, normalize_mac
from domain.transfer import Transfer
from .database import create_db_engine, init_db
from .models import (
    ChargeModel,
    MenuItemModel,
    OrderModel,
    SegmentModel,
    SessionModel,
    StationModel,
    TransferModel,
)
from .repository import SessionStore, StationRegistry


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything is stored and read back as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _SQLiteBase:
    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or create_db_engine()
        init_db(self.engine)
        self._local = threading.local()

    @contextmanager
    def _session_scope(self) -> Iterator[DbSession]:
        current = getattr(self._local, "session", None)
        if current is not None:
            yield current
            return
        try:
            with DbSession(self.engine) as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"database error: {exc}") from exc


class SQLiteStationRegistry(_SQLiteBase, StationRegistry):
    def get_station(self, station_id: str) -> Optional[Station]:
        with self._session_scope() as session:
            model = session.get(StationModel, station_id)
            return self._station_from_model(model) if model else None

    def get_station_by_mac(self, mac_address: str) -> Optional[Station]:
        with self._session_scope() as session:
            statement = select(StationModel).where(StationModel.mac_address == normalize_mac(mac_address))
            model = session.exec(statement).first()
            return self._station_from_model(model) if model else None

    def list_stations(self) -> List[Station]:
        with self._session_scope() as session:
            statement = select(StationModel).order_by(StationModel.sort_order, StationModel.station_id)
            return [self._station_from_model(model) for model in session.exec(statement).all()]

    def save_station(self, station: Station) -> None:
        with self._session_scope() as session:
            model = session.get(StationModel, station.station_id)
            if not model:
                model = StationModel(
                    station_id=station.station_id,
                    mac_address=station.mac_address,
                    hourly_rate_single=station.hourly_rate_single,
                )
            model.mac_address = station.mac_address
            model.hourly_rate_single = station.hourly_rate_single
            model.hourly_rate_multi = station.hourly_rate_multi
            model.status = StationStatus(station.status).value
            model.name = station.name
            model.sort_order = station.sort_order
            model.is_online = station.is_online
            session.add(model)

    def update_status(self, station_id: str, status: StationStatus) -> None:
        with self._session_scope() as session:
            model = session.get(StationModel, station_id)
            if model:
                model.status = StationStatus(status).value
                session.add(model)

    def set_online(self, station_id: str, is_online: bool) -> None:
        with self._session_scope() as session:
            model = session.get(StationModel, station_id)
            if model:
                model.is_online = is_online
                session.add(model)

    # Menu catalogue ------------------------------------------------------
    def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        with self._session_scope() as session:
            model = session.get(MenuItemModel, item_id)
            return self._menu_from_model(model) if model else None

    def list_menu_items(self) -> List[MenuItem]:
        with self._session_scope() as session:
            statement = select(MenuItemModel).order_by(MenuItemModel.category, MenuItemModel.name)
            return [self._menu_from_model(model) for model in session.exec(statement).all()]

    def save_menu_item(self, item: MenuItem) -> None:
        with self._session_scope() as session:
            session.merge(
                MenuItemModel(
                    item_id=item.item_id,
                    name=item.name,
                    price=item.price,
                    category=item.category,
                    is_available=item.is_available,
                )
            )

    # Helpers --------------------------------------------------------------
    def _station_from_model(self, model: StationModel) -> Station:
        return Station(
            station_id=model.station_id,
            mac_address=model.mac_address,
            hourly_rate_single=model.hourly_rate_single,
            hourly_rate_multi=model.hourly_rate_multi,
            status=StationStatus(model.status),
            name=model.name,
            sort_order=model.sort_order,
            is_online=model.is_online,
        )

    def _menu_from_model(self, model: MenuItemModel) -> MenuItem:
        return MenuItem(
            item_id=model.item_id,
            name=model.name,
            price=model.price,
            category=model.category,
            is_available=model.is_available,
        )


class SQLiteSessionStore(_SQLiteBase, SessionStore):
    """Session ledger on SQLite; ``transaction()`` binds one DB session per thread."""

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return
        try:
            with DbSession(self.engine) as session, session.begin():
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None
        except SQLAlchemyError as exc:
            raise StorageError(f"database error: {exc}") from exc

    # Sessions ------------------------------------------------------------
    def get_session(self, session_id: str) -> Optional[Session]:
        with self._session_scope() as session:
            model = session.get(SessionModel, session_id)
            return self._session_from_model(model) if model else None

    def save_session(self, record: Session) -> None:
        with self._session_scope() as session:
            session.merge(self._session_to_model(record))

    def get_active_session(self, station_id: str) -> Optional[Session]:
        with self._session_scope() as session:
            statement = (
                select(SessionModel)
                .where(SessionModel.station_id == station_id)
                .where(SessionModel.state != SessionState.ENDED.value)
            )
            model = session.exec(statement).first()
            return self._session_from_model(model) if model else None

    def list_active_sessions(self) -> List[Session]:
        with self._session_scope() as session:
            statement = select(SessionModel).where(SessionModel.state != SessionState.ENDED.value)
            return [self._session_from_model(model) for model in session.exec(statement).all()]

    def list_sessions(
        self,
        station_id: Optional[str] = None,
        ended_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Session]:
        with self._session_scope() as session:
            statement = select(SessionModel)
            if station_id is not None:
                statement = statement.where(SessionModel.station_id == station_id)
            if ended_only:
                statement = statement.where(SessionModel.state == SessionState.ENDED.value)
            statement = statement.order_by(SessionModel.ended_at.desc(), SessionModel.started_at.desc())
            if limit is not None:
                statement = statement.limit(limit)
            return [self._session_from_model(model) for model in session.exec(statement).all()]

    # Segments ------------------------------------------------------------
    def add_segment(self, segment: Segment) -> None:
        with self._session_scope() as session:
            session.add(self._segment_to_model(segment))

    def update_segment(self, segment: Segment) -> None:
        with self._session_scope() as session:
            session.merge(self._segment_to_model(segment))

    def list_segments(self, session_id: str) -> List[Segment]:
        with self._session_scope() as session:
            statement = (
                select(SegmentModel)
                .where(SegmentModel.session_id == session_id)
                .order_by(SegmentModel.started_at, SegmentModel.ended_at.is_(None))
            )
            return [self._segment_from_model(model) for model in session.exec(statement).all()]

    # Charges -------------------------------------------------------------
    def add_charge(self, charge: Charge) -> None:
        with self._session_scope() as session:
            session.add(self._charge_to_model(charge))

    def get_charge(self, charge_id: str) -> Optional[Charge]:
        with self._session_scope() as session:
            model = session.get(ChargeModel, charge_id)
            return self._charge_from_model(model) if model else None

    def update_charge(self, charge: Charge) -> None:
        with self._session_scope() as session:
            session.merge(self._charge_to_model(charge))

    def delete_charge(self, charge_id: str) -> None:
        with self._session_scope() as session:
            model = session.get(ChargeModel, charge_id)
            if model:
                session.delete(model)

    def list_charges(self, session_id: str) -> List[Charge]:
        with self._session_scope() as session:
            statement = (
                select(ChargeModel)
                .where(ChargeModel.session_id == session_id)
                .order_by(ChargeModel.created_at)
            )
            return [self._charge_from_model(model) for model in session.exec(statement).all()]

    # Orders --------------------------------------------------------------
    def add_order(self, order: SessionOrder) -> None:
        with self._session_scope() as session:
            session.add(self._order_to_model(order))

    def get_order(self, order_id: str) -> Optional[SessionOrder]:
        with self._session_scope() as session:
            model = session.get(OrderModel, order_id)
            return self._order_from_model(model) if model else None

    def update_order(self, order: SessionOrder) -> None:
        with self._session_scope() as session:
            session.merge(self._order_to_model(order))

    def delete_order(self, order_id: str) -> None:
        with self._session_scope() as session:
            model = session.get(OrderModel, order_id)
            if model:
                session.delete(model)

    def list_orders(self, session_id: str) -> List[SessionOrder]:
        with self._session_scope() as session:
            statement = (
                select(OrderModel)
                .where(OrderModel.session_id == session_id)
                .order_by(OrderModel.created_at)
            )
            return [self._order_from_model(model) for model in session.exec(statement).all()]

    # Transfers -----------------------------------------------------------
    def add_transfer(self, transfer: Transfer) -> None:
        with self._session_scope() as session:
            session.add(
                TransferModel(
                    transfer_id=transfer.transfer_id,
                    from_session_id=transfer.from_session_id,
                    to_session_id=transfer.to_session_id,
                    from_station_id=transfer.from_station_id,
                    gaming_amount=transfer.gaming_amount,
                    orders_amount=transfer.orders_amount,
                    total_amount=transfer.total_amount,
                    created_at=transfer.created_at,
                )
            )

    def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        with self._session_scope() as session:
            model = session.get(TransferModel, transfer_id)
            return self._transfer_from_model(model) if model else None

    def list_transfers(self, session_id: str) -> List[Transfer]:
        with self._session_scope() as session:
            statement = (
                select(TransferModel)
                .where(
                    or_(
                        TransferModel.from_session_id == session_id,
                        TransferModel.to_session_id == session_id,
                    )
                )
                .order_by(TransferModel.created_at)
            )
            return [self._transfer_from_model(model) for model in session.exec(statement).all()]

    # Helpers --------------------------------------------------------------
    def _session_to_model(self, record: Session) -> SessionModel:
        return SessionModel(
            session_id=record.session_id,
            station_id=record.station_id,
            started_at=record.started_at,
            hourly_rate_snapshot=record.hourly_rate_snapshot,
            current_mode=record.current_mode.value,
            started_by=record.started_by.value,
            state=record.state.value,
            paused_at=record.paused_at,
            ended_at=record.ended_at,
            total_cost=record.total_cost,
            orders_cost=record.orders_cost,
            extra_charges=record.extra_charges,
            transferred_cost=record.transferred_cost,
            timer_minutes=record.timer_minutes,
            timer_notified=record.timer_notified,
            timer_warning_notified=record.timer_warning_notified,
            cost_limit_piasters=record.cost_limit_piasters,
            cost_limit_notified=record.cost_limit_notified,
            total_paused_ms=record.total_paused_ms,
            notes=record.notes,
        )

    def _session_from_model(self, model: SessionModel) -> Session:
        return Session(
            session_id=model.session_id,
            station_id=model.station_id,
            started_at=_utc(model.started_at),
            hourly_rate_snapshot=model.hourly_rate_snapshot,
            current_mode=model.current_mode,
            started_by=model.started_by,
            state=model.state,
            paused_at=_utc(model.paused_at),
            ended_at=_utc(model.ended_at),
            total_cost=model.total_cost,
            orders_cost=model.orders_cost,
            extra_charges=model.extra_charges,
            transferred_cost=model.transferred_cost,
            timer_minutes=model.timer_minutes,
            timer_notified=model.timer_notified,
            timer_warning_notified=model.timer_warning_notified,
            cost_limit_piasters=model.cost_limit_piasters,
            cost_limit_notified=model.cost_limit_notified,
            total_paused_ms=model.total_paused_ms,
            notes=model.notes,
        )

    def _segment_to_model(self, segment: Segment) -> SegmentModel:
        return SegmentModel(
            segment_id=segment.segment_id,
            session_id=segment.session_id,
            mode=str(getattr(segment.mode, "value", segment.mode)),
            started_at=segment.started_at,
            ended_at=segment.ended_at,
            hourly_rate_snapshot=segment.hourly_rate_snapshot,
            paused_ms=segment.paused_ms,
        )

    def _segment_from_model(self, model: SegmentModel) -> Segment:
        return Segment(
            segment_id=model.segment_id,
            session_id=model.session_id,
            mode=model.mode,
            started_at=_utc(model.started_at),
            ended_at=_utc(model.ended_at),
            hourly_rate_snapshot=model.hourly_rate_snapshot,
            paused_ms=model.paused_ms or 0,
        )

    def _charge_to_model(self, charge: Charge) -> ChargeModel:
        return ChargeModel(
            charge_id=charge.charge_id,
            session_id=charge.session_id,
            amount=charge.amount,
            reason=charge.reason,
            created_at=charge.created_at,
            transfer_id=charge.transfer_id,
        )

    def _charge_from_model(self, model: ChargeModel) -> Charge:
        return Charge(
            charge_id=model.charge_id,
            session_id=model.session_id,
            amount=model.amount,
            reason=model.reason,
            created_at=_utc(model.created_at),
            transfer_id=model.transfer_id,
        )

    def _order_to_model(self, order: SessionOrder) -> OrderModel:
        return OrderModel(
            order_id=order.order_id,
            session_id=order.session_id,
            menu_item_id=order.menu_item_id,
            quantity=order.quantity,
            price_snapshot=order.price_snapshot,
            created_at=order.created_at,
        )

    def _order_from_model(self, model: OrderModel) -> SessionOrder:
        return SessionOrder(
            order_id=model.order_id,
            session_id=model.session_id,
            menu_item_id=model.menu_item_id,
            quantity=model.quantity,
            price_snapshot=model.price_snapshot,
            created_at=_utc(model.created_at),
        )

    def _transfer_from_model(self, model: TransferModel) -> Transfer:
        return Transfer(
            transfer_id=model.transfer_id,
            from_session_id=model.from_session_id,
            to_session_id=model.to_session_id,
            from_station_id=model.from_station_id,
            gaming_amount=model.gaming_amount,
            orders_amount=model.orders_amount,
            total_amount=model.total_amount,
            created_at=_utc(model.created_at),
        )
