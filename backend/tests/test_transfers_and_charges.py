"""
Tests for charges, orders and balance transfers.
"""

import pytest

from domain.errors import InvalidStateError, NotFoundError, ValidationError
from domain.session import SessionState
from domain.station import StationStatus


class TestCharges:

    def test_signed_charges_adjust_extra(self, engine, clock):
        session = engine.start_session("PS-1")
        engine.add_charge(session.session_id, 500, "controller rental")
        engine.add_charge(session.session_id, -200, "loyalty discount")
        clock.advance(minutes=60)

        assert engine.get_session(session.session_id).extra_charges == 300
        assert engine.end_session(session.session_id).total_cost == 2300

    @pytest.mark.parametrize("amount", [0, True, 12.5, "100"])
    def test_invalid_amounts(self, engine, amount):
        session = engine.start_session("PS-1")

        with pytest.raises(ValidationError):
            engine.add_charge(session.session_id, amount)

    def test_update_and_remove(self, engine):
        session = engine.start_session("PS-1")
        engine.add_charge(session.session_id, 500)
        charge = engine.list_charges(session.session_id)[0]

        engine.update_charge(charge.charge_id, 800, "two controllers")
        assert engine.get_session(session.session_id).extra_charges == 800
        assert engine.list_charges(session.session_id)[0].reason == "two controllers"

        engine.remove_charge(charge.charge_id)
        assert engine.get_session(session.session_id).extra_charges == 0
        assert engine.list_charges(session.session_id) == []

    def test_missing_charge(self, engine):
        with pytest.raises(NotFoundError):
            engine.remove_charge("nope")

    def test_ended_session_is_closed_for_charges(self, engine):
        session = engine.start_session("PS-1")
        engine.end_session(session.session_id)

        with pytest.raises(InvalidStateError):
            engine.add_charge(session.session_id, 100)


class TestOrders:

    def test_same_item_merges_quantity(self, engine):
        session = engine.start_session("PS-1")
        engine.add_order(session.session_id, "tea")
        engine.add_order(session.session_id, "tea", 2)
        engine.add_order(session.session_id, "cola")

        orders = engine.list_orders(session.session_id)

        assert sorted((o.menu_item_id, o.quantity) for o in orders) == [("cola", 1), ("tea", 3)]
        assert engine.get_session(session.session_id).orders_cost == 4500

    def test_remove_order(self, engine):
        session = engine.start_session("PS-1")
        engine.add_order(session.session_id, "cola", 2)
        order = engine.list_orders(session.session_id)[0]

        updated = engine.remove_order(order.order_id)

        assert updated.orders_cost == 0

    def test_unavailable_and_unknown_items(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(InvalidStateError):
            engine.add_order(session.session_id, "cake")
        with pytest.raises(NotFoundError):
            engine.add_order(session.session_id, "pizza")
        with pytest.raises(ValidationError):
            engine.add_order(session.session_id, "tea", 0)


class TestTransfer:

    def test_gaming_balance_moves_to_target(self, engine, registry, clock):
        source = engine.start_session("PS-1")
        clock.advance(minutes=30)
        target = engine.start_session("PS-2")
        clock.advance(minutes=30)

        updated_target = engine.transfer_session(source.session_id, target.session_id, include_orders=False)

        ended = engine.get_session(source.session_id)
        transfer = engine.list_transfers(source.session_id)[0]
        assert ended.state == SessionState.ENDED
        assert ended.total_cost == 2000
        assert ended.transferred_cost == 2000
        assert ended.net_bill == 0
        assert transfer.gaming_amount == 2000
        assert transfer.orders_amount == 0
        assert transfer.from_station_id == "PS-1"
        assert updated_target.extra_charges == 2000
        assert engine.get_live_cost(target.session_id).gaming_cost == 3000
        assert registry.get_station("PS-1").status == StationStatus.AVAILABLE

    def test_orders_move_only_when_requested(self, engine, clock):
        source = engine.start_session("PS-1")
        engine.add_order(source.session_id, "tea")
        target = engine.start_session("PS-2")
        clock.advance(minutes=60)

        engine.transfer_session(source.session_id, target.session_id, include_orders=True)

        ended = engine.get_session(source.session_id)
        assert ended.transferred_cost == 3000
        assert ended.net_bill == 0
        assert engine.get_session(target.session_id).extra_charges == 3000

    def test_orders_left_behind_stay_on_source_bill(self, engine, clock):
        source = engine.start_session("PS-1")
        engine.add_order(source.session_id, "tea")
        target = engine.start_session("PS-2")
        clock.advance(minutes=60)

        engine.transfer_session(source.session_id, target.session_id)

        assert engine.get_session(source.session_id).net_bill == 1000

    def test_transfer_charge_is_locked(self, engine, clock):
        source = engine.start_session("PS-1")
        target = engine.start_session("PS-2")
        clock.advance(minutes=10)
        engine.transfer_session(source.session_id, target.session_id)
        charge = engine.list_charges(target.session_id)[0]

        assert charge.from_transfer
        with pytest.raises(InvalidStateError):
            engine.remove_charge(charge.charge_id)

    def test_chained_transfers_accumulate(self, engine, clock):
        a = engine.start_session("PS-1")
        b = engine.start_session("PS-2")
        c = engine.start_session("PS-3")
        clock.advance(minutes=30)

        engine.transfer_session(a.session_id, b.session_id)
        engine.transfer_session(b.session_id, c.session_id)

        assert engine.get_session(b.session_id).transferred_cost == 2000
        assert engine.get_session(c.session_id).extra_charges == 2000
        assert engine.get_live_cost(c.session_id).gaming_cost == 2750

    def test_transfer_lookup_by_id(self, engine, clock):
        source = engine.start_session("PS-1")
        target = engine.start_session("PS-2")
        clock.advance(minutes=15)
        engine.transfer_session(source.session_id, target.session_id)
        charge = engine.list_charges(target.session_id)[0]

        transfer = engine.get_transfer(charge.transfer_id)

        assert transfer.to_session_id == target.session_id
        assert transfer.total_amount == 500
        with pytest.raises(NotFoundError):
            engine.get_transfer("missing")

    def test_invalid_transfers(self, engine):
        source = engine.start_session("PS-1")
        target = engine.start_session("PS-2")

        with pytest.raises(ValidationError):
            engine.transfer_session(source.session_id, source.session_id)
        engine.end_session(target.session_id)
        with pytest.raises(InvalidStateError):
            engine.transfer_session(source.session_id, target.session_id)
        with pytest.raises(InvalidStateError):
            engine.transfer_session(target.session_id, source.session_id)
        assert engine.get_session(source.session_id).is_active
        assert engine.list_transfers(source.session_id) == []

    def test_source_emits_session_ended(self, engine, notifier, clock):
        source = engine.start_session("PS-1")
        target = engine.start_session("PS-2")
        clock.advance(minutes=5)

        engine.transfer_session(source.session_id, target.session_id)

        ended = [e for e in notifier.events if e.event_type.value == "sessionEnded"]
        assert [e.session_id for e in ended] == [source.session_id]
        assert ended[0].payload["transferredTo"] == target.session_id
