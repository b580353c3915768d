"""PlayStation 计费引擎：会话状态机、分段计费、转台、定时器与消费上限"""
from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

import structlog

from domain.charge import Charge
from domain.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from domain.order import SessionOrder
from domain.pricing import CostBreakdown, compute_cost
from domain.segment import Segment
from domain.session import Session, SessionMode, SessionState, StartedBy
from domain.station import Station, StationStatus
from domain.transfer import Transfer
from infrastructure.repository import SessionStore, StationRegistry
from .clock import SystemClock
from .events import EventType, NotificationEvent

logger = structlog.get_logger()


def _new_id() -> str:
    return str(uuid4())


def _require_amount(value, name: str, *, allow_negative: bool = False, allow_zero: bool = True) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of piasters")
    if value < 0 and not allow_negative:
        raise ValidationError(f"{name} cannot be negative")
    if value == 0 and not allow_zero:
        raise ValidationError(f"{name} cannot be zero")
    return value


def _optional_amount(value, name: str) -> Optional[int]:
    if value is None:
        return None
    return _require_amount(value, name)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class LiveCost:
    """Point-in-time cost view; never persisted."""

    session: Session
    breakdown: CostBreakdown
    gaming_cost: int
    as_of: datetime

    @property
    def orders_cost(self) -> int:
        return self.session.orders_cost

    @property
    def transferred_cost(self) -> int:
        return self.session.transferred_cost

    @property
    def net_total(self) -> int:
        return self.gaming_cost + self.orders_cost - self.transferred_cost

    @property
    def elapsed_minutes(self) -> int:
        return self.breakdown.elapsed_minutes


@dataclass(frozen=True)
class StationView:
    station: Station
    state: SessionState
    session: Optional[Session] = None
    live_cost: Optional[LiveCost] = None
    in_cooldown: bool = False


@dataclass(frozen=True)
class TimerAlert:
    session: Session
    timer_minutes: int
    elapsed_minutes: int

    @property
    def remaining_minutes(self) -> int:
        return self.timer_minutes - self.elapsed_minutes

    @property
    def expired(self) -> bool:
        return self.remaining_minutes <= 0


class BillingEngine:
    """
    计费引擎

    All mutations on one station are serialized by a per-station re-entrant
    lock and every multi-record write runs inside ``store.transaction()``, so
    a failed operation leaves nothing behind. Reads take no station lock.
    Notifications go to ``notifier.publish`` after the write; a failing
    notifier is logged and ignored.
    """

    def __init__(
        self,
        registry: StationRegistry,
        store: SessionStore,
        clock=None,
        notifier=None,
        *,
        timer_warning_minutes: int = 5,
        manual_end_cooldown_seconds: int = 300,
    ):
        self.registry = registry
        self.store = store
        self.clock = clock or SystemClock()
        self.notifier = notifier
        self.timer_warning_minutes = timer_warning_minutes
        self.manual_end_cooldown = timedelta(seconds=manual_end_cooldown_seconds)
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        self._cooldowns: Dict[str, datetime] = {}

    # ================== 锁 ==================
    def _station_lock(self, station_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(station_id)
            if lock is None:
                lock = self._locks[station_id] = threading.RLock()
            return lock

    @contextmanager
    def _locked_stations(self, *station_ids: str) -> Iterator[None]:
        with ExitStack() as stack:
            for station_id in sorted(set(station_ids)):
                stack.enter_context(self._station_lock(station_id))
            yield

    @contextmanager
    def _locked_session(self, session_id: str) -> Iterator[Session]:
        """Lock the session's station; retry if a station switch moved it meanwhile."""
        while True:
            station_id = self._require_session(session_id).station_id
            with self._station_lock(station_id):
                session = self._require_session(session_id)
                if session.station_id != station_id:
                    continue
                yield session
                return

    # ================== 查找辅助 ==================
    def _require_session(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def _require_station(self, station_id: str) -> Station:
        station = self.registry.get_station(station_id)
        if station is None:
            raise NotFoundError(f"Station {station_id} not found")
        return station

    def _open_segment(self, session: Session) -> Tuple[List[Segment], Segment]:
        segments = list(self.store.list_segments(session.session_id))
        for segment in segments:
            if segment.is_open:
                return segments, segment
        raise InvalidStateError(f"Session {session.session_id} has no open segment")

    @staticmethod
    def _require_open(session: Session) -> None:
        if session.is_ended:
            raise InvalidStateError(f"Session {session.session_id} already ended")

    def _set_station_status(self, station_id: str, status: StationStatus) -> None:
        try:
            self.registry.update_status(station_id, status)
        except Exception as exc:
            logger.warning("station_status_update_failed", station_id=station_id, status=status.value, error=str(exc))

    def _notify(self, event_type: EventType, session: Session, **payload) -> NotificationEvent:
        event = NotificationEvent(
            event_type=event_type,
            station_id=session.station_id,
            session_id=session.session_id,
            payload=payload,
        )
        if self.notifier is None:
            return event
        try:
            self.notifier.publish(event)
        except Exception as exc:
            logger.error("notification_publish_failed", event_type=event_type.value, session_id=session.session_id, error=str(exc))
        return event

    # ================== 手动结束冷却 ==================
    def _start_cooldown(self, station_id: str, now: datetime) -> None:
        with self._guard:
            self._cooldowns[station_id] = now + self.manual_end_cooldown

    def in_manual_end_cooldown(self, station_id: str) -> bool:
        now = self.clock.now()
        with self._guard:
            until = self._cooldowns.get(station_id)
            if until is None:
                return False
            if now >= until:
                del self._cooldowns[station_id]
                return False
            return True

    def clear_manual_end_cooldown(self, station_id: str) -> None:
        with self._guard:
            self._cooldowns.pop(station_id, None)

    # ================== 会话生命周期 ==================
    def start_session(
        self,
        station_id: str,
        started_by: str = "manual",
        timer_minutes: Optional[int] = None,
        cost_limit_piasters: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Session:
        try:
            origin = StartedBy(started_by)
        except ValueError as exc:
            raise ValidationError(f"Unknown startedBy '{started_by}'") from exc
        timer_minutes = _optional_amount(timer_minutes, "timer_minutes")
        cost_limit_piasters = _optional_amount(cost_limit_piasters, "cost_limit_piasters")

        with self._station_lock(station_id):
            station = self._require_station(station_id)
            if station.in_maintenance:
                raise InvalidStateError(f"Station {station_id} is in maintenance")
            active = self.store.get_active_session(station_id)
            if active is not None:
                raise ConflictError(f"Station {station_id} already has active session {active.session_id}")

            now = self.clock.now()
            session = Session(
                session_id=_new_id(),
                station_id=station_id,
                started_at=now,
                hourly_rate_snapshot=station.hourly_rate_single,
                current_mode=SessionMode.SINGLE,
                started_by=origin,
                timer_minutes=timer_minutes,
                cost_limit_piasters=cost_limit_piasters,
                notes=notes,
            )
            segment = Segment(
                segment_id=_new_id(),
                session_id=session.session_id,
                mode=SessionMode.SINGLE.value,
                started_at=now,
                hourly_rate_snapshot=station.hourly_rate_single,
            )
            with self.store.transaction():
                self.store.save_session(session)
                self.store.add_segment(segment)

            self._set_station_status(station_id, StationStatus.OCCUPIED)
            logger.info("session_started", session_id=session.session_id, station_id=station_id, started_by=origin.value)
            self._notify(
                EventType.SESSION_STARTED,
                session,
                startedBy=origin.value,
                hourlyRate=session.hourly_rate_snapshot,
            )
            return session

    def pause_session(self, session_id: str) -> Session:
        with self._locked_session(session_id) as session:
            session.mark_paused(self.clock.now())
            self.store.save_session(session)
            logger.info("session_paused", session_id=session_id, station_id=session.station_id)
            return session

    def resume_session(self, session_id: str) -> Session:
        with self._locked_session(session_id) as session:
            _, segment = self._open_segment(session)
            delta = session.mark_resumed(self.clock.now())
            segment.paused_ms += delta
            with self.store.transaction():
                self.store.update_segment(segment)
                self.store.save_session(session)
            logger.info("session_resumed", session_id=session_id, paused_ms=delta)
            return session

    def switch_mode(self, session_id: str, new_mode: str) -> Session:
        try:
            mode = SessionMode(new_mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown mode '{new_mode}'") from exc

        with self._locked_session(session_id) as session:
            self._require_open(session)
            if session.current_mode == mode:
                raise InvalidStateError(f"Session {session_id} is already in {mode.value} mode")
            station = self._require_station(session.station_id)
            _, current = self._open_segment(session)

            now = self.clock.now()
            # 暂停中切换：已暂停的时长记在旧分段上，新分段从 now 起继续暂停
            current.paused_ms += session.fold_pause(now)
            current.close(now)
            rate = station.rate_for_mode(mode.value)
            segment = Segment(
                segment_id=_new_id(),
                session_id=session_id,
                mode=mode.value,
                started_at=now,
                hourly_rate_snapshot=rate,
            )
            session.current_mode = mode
            with self.store.transaction():
                self.store.update_segment(current)
                self.store.add_segment(segment)
                self.store.save_session(session)
            logger.info("session_mode_switched", session_id=session_id, mode=mode.value, hourly_rate=rate)
            return session

    def _close_for_end(self, session: Session, now: datetime) -> CostBreakdown:
        """Fold a running pause into the open segment, close it, and price the session."""
        segments, segment = self._open_segment(session)
        if session.is_paused:
            segment.paused_ms += session.mark_resumed(now)
        segment.close(now)
        self.store.update_segment(segment)
        return compute_cost(session, segments, now)

    def end_session(
        self,
        session_id: str,
        custom_total_cost: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Session:
        custom_total_cost = _optional_amount(custom_total_cost, "custom_total_cost")

        with self._locked_session(session_id) as session:
            self._require_open(session)
            now = self.clock.now()
            with self.store.transaction():
                breakdown = self._close_for_end(session, now)
                total = custom_total_cost if custom_total_cost is not None else breakdown.gaming_cost
                session.mark_ended(now, total)
                if notes:
                    session.append_note(notes)
                self.store.save_session(session)

            if session.started_by == StartedBy.MANUAL or custom_total_cost is not None:
                self._start_cooldown(session.station_id, now)
            self._set_station_status(session.station_id, StationStatus.AVAILABLE)
            logger.info(
                "session_ended",
                session_id=session_id,
                station_id=session.station_id,
                total_cost=total,
                computed_cost=breakdown.gaming_cost,
                elapsed_minutes=breakdown.elapsed_minutes,
            )
            self._notify(
                EventType.SESSION_ENDED,
                session,
                totalCost=total,
                ordersCost=session.orders_cost,
                elapsedMinutes=breakdown.elapsed_minutes,
            )
            return session

    # ================== 附加费用 ==================
    def add_charge(self, session_id: str, amount: int, reason: Optional[str] = None) -> Session:
        amount = _require_amount(amount, "amount", allow_negative=True, allow_zero=False)
        with self._locked_session(session_id) as session:
            self._require_open(session)
            charge = Charge(
                charge_id=_new_id(),
                session_id=session_id,
                amount=amount,
                created_at=self.clock.now(),
                reason=reason,
            )
            session.extra_charges += amount
            with self.store.transaction():
                self.store.add_charge(charge)
                self.store.save_session(session)
            logger.info("charge_added", session_id=session_id, charge_id=charge.charge_id, amount=amount)
            return session

    def _editable_charge(self, charge_id: str):
        charge = self.store.get_charge(charge_id)
        if charge is None:
            raise NotFoundError(f"Charge {charge_id} not found")
        if charge.from_transfer:
            raise InvalidStateError(f"Charge {charge_id} comes from a transfer and cannot be changed")
        return charge

    def update_charge(self, charge_id: str, amount: int, reason: Optional[str] = None) -> Session:
        amount = _require_amount(amount, "amount", allow_negative=True, allow_zero=False)
        charge = self._editable_charge(charge_id)
        with self._locked_session(charge.session_id) as session:
            self._require_open(session)
            charge = self._editable_charge(charge_id)
            session.extra_charges += amount - charge.amount
            charge.amount = amount
            if reason is not None:
                charge.reason = reason
            with self.store.transaction():
                self.store.update_charge(charge)
                self.store.save_session(session)
            logger.info("charge_updated", session_id=session.session_id, charge_id=charge_id, amount=amount)
            return session

    def remove_charge(self, charge_id: str) -> Session:
        charge = self._editable_charge(charge_id)
        with self._locked_session(charge.session_id) as session:
            self._require_open(session)
            charge = self._editable_charge(charge_id)
            session.extra_charges -= charge.amount
            with self.store.transaction():
                self.store.delete_charge(charge_id)
                self.store.save_session(session)
            logger.info("charge_removed", session_id=session.session_id, charge_id=charge_id, amount=charge.amount)
            return session

    # ================== 点单 ==================
    def add_order(self, session_id: str, menu_item_id: str, quantity: int = 1) -> Session:
        quantity = _require_amount(quantity, "quantity", allow_zero=False)
        item = self.registry.get_menu_item(menu_item_id)
        if item is None:
            raise NotFoundError(f"Menu item {menu_item_id} not found")
        if not item.is_available:
            raise InvalidStateError(f"Menu item {menu_item_id} is not available")

        with self._locked_session(session_id) as session:
            self._require_open(session)
            existing = next(
                (
                    order
                    for order in self.store.list_orders(session_id)
                    if order.menu_item_id == menu_item_id and order.price_snapshot == item.price
                ),
                None,
            )
            session.orders_cost += item.price * quantity
            with self.store.transaction():
                if existing is not None:
                    existing.quantity += quantity
                    self.store.update_order(existing)
                else:
                    self.store.add_order(
                        SessionOrder(
                            order_id=_new_id(),
                            session_id=session_id,
                            menu_item_id=menu_item_id,
                            quantity=quantity,
                            price_snapshot=item.price,
                            created_at=self.clock.now(),
                        )
                    )
                self.store.save_session(session)
            logger.info("order_added", session_id=session_id, menu_item_id=menu_item_id, quantity=quantity)
            return session

    def remove_order(self, order_id: str) -> Session:
        order = self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        with self._locked_session(order.session_id) as session:
            self._require_open(session)
            order = self.store.get_order(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            session.orders_cost -= order.line_total
            with self.store.transaction():
                self.store.delete_order(order_id)
                self.store.save_session(session)
            logger.info("order_removed", session_id=session.session_id, order_id=order_id)
            return session

    # ================== 定时器 / 消费上限 ==================
    def set_timer(self, session_id: str, minutes: Optional[int]) -> Session:
        minutes = _optional_amount(minutes, "minutes")
        with self._locked_session(session_id) as session:
            self._require_open(session)
            if minutes != session.timer_minutes:
                session.timer_minutes = minutes
                session.timer_notified = False
                session.timer_warning_notified = False
                self.store.save_session(session)
                logger.info("timer_set", session_id=session_id, minutes=minutes)
            return session

    def set_cost_limit(self, session_id: str, piasters: Optional[int]) -> Session:
        piasters = _optional_amount(piasters, "piasters")
        with self._locked_session(session_id) as session:
            self._require_open(session)
            if piasters != session.cost_limit_piasters:
                session.cost_limit_piasters = piasters
                session.cost_limit_notified = False
                self.store.save_session(session)
                logger.info("cost_limit_set", session_id=session_id, piasters=piasters)
            return session

    # ================== 转台 / 换机 ==================
    def transfer_session(self, from_session_id: str, to_session_id: str, include_orders: bool = False) -> Session:
        """Close ``from`` and carry its balance onto ``to`` as a transfer charge.

        Returns the updated target session.
        """
        if from_session_id == to_session_id:
            raise ValidationError("Cannot transfer a session into itself")

        while True:
            source = self._require_session(from_session_id)
            target = self._require_session(to_session_id)
            with self._locked_stations(source.station_id, target.station_id):
                source_now = self._require_session(from_session_id)
                target_now = self._require_session(to_session_id)
                if (source_now.station_id, target_now.station_id) != (source.station_id, target.station_id):
                    continue
                return self._transfer_locked(source_now, target_now, include_orders)

    def _transfer_locked(self, source: Session, target: Session, include_orders: bool) -> Session:
        if source.is_ended:
            raise InvalidStateError(f"Session {source.session_id} already ended")
        if target.is_ended:
            raise InvalidStateError(f"Target session {target.session_id} already ended")

        now = self.clock.now()
        with self.store.transaction():
            breakdown = self._close_for_end(source, now)
            gaming = breakdown.gaming_cost
            orders = source.orders_cost if include_orders else 0
            transfer = Transfer(
                transfer_id=_new_id(),
                from_session_id=source.session_id,
                to_session_id=target.session_id,
                from_station_id=source.station_id,
                gaming_amount=gaming,
                orders_amount=orders,
                total_amount=gaming + orders,
                created_at=now,
            )
            source.mark_ended(now, gaming)
            source.transferred_cost = transfer.total_amount
            source.append_note(f"Transferred {transfer.total_amount} to station {target.station_id}")
            self.store.add_transfer(transfer)
            self.store.save_session(source)

            if transfer.total_amount:
                self.store.add_charge(
                    Charge(
                        charge_id=_new_id(),
                        session_id=target.session_id,
                        amount=transfer.total_amount,
                        created_at=now,
                        reason=f"Transfer from station {source.station_id}",
                        transfer_id=transfer.transfer_id,
                    )
                )
                target.extra_charges += transfer.total_amount
            target.append_note(f"Received {transfer.total_amount} from station {source.station_id}")
            self.store.save_session(target)

        self._start_cooldown(source.station_id, now)
        if source.station_id != target.station_id:
            self._set_station_status(source.station_id, StationStatus.AVAILABLE)
        logger.info(
            "session_transferred",
            transfer_id=transfer.transfer_id,
            from_session_id=source.session_id,
            to_session_id=target.session_id,
            gaming_amount=gaming,
            orders_amount=orders,
        )
        self._notify(
            EventType.SESSION_ENDED,
            source,
            totalCost=gaming,
            ordersCost=source.orders_cost,
            elapsedMinutes=breakdown.elapsed_minutes,
            transferredTo=target.session_id,
        )
        return target

    def switch_station(self, session_id: str, new_station_id: str) -> Session:
        destination = self._require_station(new_station_id)
        while True:
            old_station_id = self._require_session(session_id).station_id
            if old_station_id == new_station_id:
                raise ValidationError(f"Session {session_id} is already on station {new_station_id}")
            with self._locked_stations(old_station_id, new_station_id):
                session = self._require_session(session_id)
                if session.station_id != old_station_id:
                    continue
                self._require_open(session)
                destination = self._require_station(new_station_id)
                if destination.in_maintenance:
                    raise InvalidStateError(f"Station {new_station_id} is in maintenance")
                occupant = self.store.get_active_session(new_station_id)
                if occupant is not None:
                    raise ConflictError(f"Station {new_station_id} already has active session {occupant.session_id}")

                session.station_id = new_station_id
                session.append_note(f"Moved from station {old_station_id} to {new_station_id}")
                self.store.save_session(session)
                self._set_station_status(old_station_id, StationStatus.AVAILABLE)
                self._set_station_status(new_station_id, StationStatus.OCCUPIED)
                logger.info("session_station_switched", session_id=session_id, from_station=old_station_id, to_station=new_station_id)
                return session

    def correct_start_time(self, session_id: str, new_start: datetime) -> Session:
        """Staff correction of when play actually began (moves the first segment too)."""
        new_start = _as_utc(new_start)
        with self._locked_session(session_id) as session:
            self._require_open(session)
            now = self.clock.now()
            if new_start > now:
                raise ValidationError("Start time cannot be in the future")
            segments = list(self.store.list_segments(session_id))
            first = segments[0]
            if new_start >= (first.ended_at or now):
                raise ValidationError("Start time must be before the end of the first segment")
            if session.paused_at is not None and new_start > session.paused_at:
                raise ValidationError("Start time must be before the current pause")
            # 暂停记录不含起点，已有暂停时只能往前改
            if new_start > first.started_at and first.paused_ms > 0:
                raise ValidationError("Start time cannot move past a recorded pause")
            session.started_at = new_start
            first.started_at = new_start
            with self.store.transaction():
                self.store.update_segment(first)
                self.store.save_session(session)
            logger.info("session_start_corrected", session_id=session_id, started_at=new_start.isoformat())
            return session

    # ================== 站点 ==================
    def update_station_status(self, station_id: str, status: str) -> Station:
        try:
            value = StationStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown station status '{status}'") from exc
        with self._station_lock(station_id):
            station = self._require_station(station_id)
            active = self.store.get_active_session(station_id)
            if active is not None and value != StationStatus.OCCUPIED:
                raise ConflictError(f"Station {station_id} has active session {active.session_id}")
            self.registry.update_status(station_id, value)
            station.status = value
            logger.info("station_status_updated", station_id=station_id, status=value.value)
            return station

    # ================== 读取（无锁） ==================
    def get_session(self, session_id: str) -> Session:
        return self._require_session(session_id)

    def get_active_session(self, station_id: str) -> Optional[Session]:
        self._require_station(station_id)
        return self.store.get_active_session(station_id)

    def list_active_sessions(self) -> List[Session]:
        return list(self.store.list_active_sessions())

    def list_segments(self, session_id: str) -> List[Segment]:
        self._require_session(session_id)
        return list(self.store.list_segments(session_id))

    def list_charges(self, session_id: str) -> List[Charge]:
        self._require_session(session_id)
        return list(self.store.list_charges(session_id))

    def list_orders(self, session_id: str) -> List[SessionOrder]:
        self._require_session(session_id)
        return list(self.store.list_orders(session_id))

    def list_transfers(self, session_id: str) -> List[Transfer]:
        self._require_session(session_id)
        return list(self.store.list_transfers(session_id))

    def get_transfer(self, transfer_id: str) -> Transfer:
        transfer = self.store.get_transfer(transfer_id)
        if transfer is None:
            raise NotFoundError(f"Transfer {transfer_id} not found")
        return transfer

    def _live_cost(self, session: Session) -> LiveCost:
        as_of = session.ended_at if session.is_ended else self.clock.now()
        breakdown = compute_cost(session, self.store.list_segments(session.session_id), as_of)
        gaming = session.total_cost if session.total_cost is not None else breakdown.gaming_cost
        return LiveCost(session=session, breakdown=breakdown, gaming_cost=gaming, as_of=as_of)

    def get_live_cost(self, session_id: str) -> LiveCost:
        return self._live_cost(self._require_session(session_id))

    def station_state(self, station_id: str) -> SessionState:
        session = self.get_active_session(station_id)
        return session.state if session is not None else SessionState.IDLE

    def list_station_statuses(self) -> List[StationView]:
        views: List[StationView] = []
        for station in self.registry.list_stations():
            session = self.store.get_active_session(station.station_id)
            views.append(
                StationView(
                    station=station,
                    state=session.state if session else SessionState.IDLE,
                    session=session,
                    live_cost=self._live_cost(session) if session else None,
                    in_cooldown=self.in_manual_end_cooldown(station.station_id),
                )
            )
        return views

    def list_history(self, station_id: Optional[str] = None, limit: int = 50) -> List[Session]:
        return list(self.store.list_sessions(station_id=station_id, ended_only=True, limit=limit))

    def timer_alerts(self) -> List[TimerAlert]:
        """Running sessions whose timer is within the warning window or past it."""
        alerts: List[TimerAlert] = []
        for session in self.store.list_active_sessions():
            if session.timer_minutes is None:
                continue
            live = self._live_cost(session)
            alert = TimerAlert(session=session, timer_minutes=session.timer_minutes, elapsed_minutes=live.elapsed_minutes)
            if alert.remaining_minutes <= self.timer_warning_minutes:
                alerts.append(alert)
        alerts.sort(key=lambda a: a.remaining_minutes)
        return alerts

    # ================== 定时评估 ==================
    def evaluate(self, session_id: str) -> List[NotificationEvent]:
        """Fire timer / cost-limit events at most once per threshold."""
        with self._locked_session(session_id) as session:
            if session.is_ended:
                return []
            live = self._live_cost(session)
            pending: List[Tuple[EventType, Dict[str, int]]] = []

            if session.timer_minutes is not None:
                remaining = session.timer_minutes - live.elapsed_minutes
                if remaining <= 0 and not session.timer_notified:
                    session.timer_notified = True
                    session.timer_warning_notified = True
                    pending.append(
                        (EventType.TIMER_EXPIRED, {"timerMinutes": session.timer_minutes, "elapsedMinutes": live.elapsed_minutes})
                    )
                elif 0 < remaining <= self.timer_warning_minutes and not session.timer_warning_notified:
                    session.timer_warning_notified = True
                    pending.append((EventType.TIMER_WARNING, {"minutesRemaining": remaining}))

            if (
                session.cost_limit_piasters is not None
                and live.gaming_cost >= session.cost_limit_piasters
                and not session.cost_limit_notified
            ):
                session.cost_limit_notified = True
                pending.append(
                    (EventType.COST_LIMIT_REACHED, {"costLimit": session.cost_limit_piasters, "gamingCost": live.gaming_cost})
                )

            if not pending:
                return []
            self.store.save_session(session)
            events = [self._notify(event_type, session, **payload) for event_type, payload in pending]
            for event in events:
                logger.info("session_threshold_reached", session_id=session_id, event_type=event.event_type.value)
            return events

    def evaluate_active(self) -> List[NotificationEvent]:
        fired: List[NotificationEvent] = []
        for session in self.store.list_active_sessions():
            try:
                fired.extend(self.evaluate(session.session_id))
            except (NotFoundError, InvalidStateError) as exc:
                logger.warning("evaluation_skipped", session_id=session.session_id, error=str(exc))
        return fired
