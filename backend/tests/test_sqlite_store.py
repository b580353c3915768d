"""
Tests for the SQLModel-backed registry and session store.
"""

import pytest

from application.billing_engine import BillingEngine
from domain.errors import StorageError
from domain.pricing import compute_cost
from domain.session import SessionState
from domain.station import MenuItem, Station, StationStatus
from infrastructure.database import create_db_engine
from infrastructure.models import SessionModel
from infrastructure.sqlite_repo import SQLiteSessionStore, SQLiteStationRegistry

from conftest import PS1_MAC, PS2_MAC


@pytest.fixture
def db_engine(tmp_path):
    return create_db_engine(str(tmp_path / "billing.db"))


@pytest.fixture
def sql_registry(db_engine):
    registry = SQLiteStationRegistry(db_engine)
    registry.save_station(Station("PS-1", PS1_MAC, 2000, 3500, sort_order=1))
    registry.save_station(Station("PS-2", PS2_MAC, 2000, None, sort_order=2))
    registry.save_menu_item(MenuItem("tea", "Tea", 1000))
    return registry


@pytest.fixture
def sql_store(db_engine):
    return SQLiteSessionStore(db_engine)


@pytest.fixture
def sql_engine(sql_registry, sql_store, clock, notifier):
    return BillingEngine(sql_registry, sql_store, clock=clock, notifier=notifier)


class TestRegistry:

    def test_station_lookup_by_mac_and_order(self, sql_registry):
        assert sql_registry.get_station_by_mac("aa-bb-cc-00-00-02").station_id == "PS-2"
        assert [s.station_id for s in sql_registry.list_stations()] == ["PS-1", "PS-2"]

    def test_status_and_online_updates(self, sql_registry):
        sql_registry.update_status("PS-1", StationStatus.MAINTENANCE)
        sql_registry.set_online("PS-1", True)

        station = sql_registry.get_station("PS-1")
        assert station.status == StationStatus.MAINTENANCE
        assert station.is_online
        assert station.hourly_rate_multi == 3500


class TestSessionStore:

    def test_full_lifecycle_round_trip(self, sql_engine, sql_store, clock):
        session = sql_engine.start_session("PS-1", timer_minutes=45)
        clock.advance(minutes=30)
        sql_engine.pause_session(session.session_id)
        clock.advance(minutes=10)
        sql_engine.resume_session(session.session_id)
        sql_engine.switch_mode(session.session_id, "multi")
        sql_engine.add_charge(session.session_id, -100, "promo")
        sql_engine.add_order(session.session_id, "tea", 2)
        clock.advance(minutes=20)

        ended = sql_engine.end_session(session.session_id)

        stored = sql_store.get_session(session.session_id)
        segments = sql_store.list_segments(session.session_id)
        assert stored.state == SessionState.ENDED
        assert stored.started_at.tzinfo is not None
        assert stored.total_cost == ended.total_cost == 1000 + 1167 - 100
        assert stored.orders_cost == 2000
        assert stored.total_paused_ms == 10 * 60_000
        assert [s.paused_ms for s in segments] == [10 * 60_000, 0]
        assert compute_cost(stored, segments, stored.ended_at).gaming_cost == stored.total_cost

    def test_active_lookup_and_history(self, sql_engine, sql_store, clock):
        first = sql_engine.start_session("PS-1")
        clock.advance(minutes=5)
        sql_engine.end_session(first.session_id)
        second = sql_engine.start_session("PS-1")

        assert sql_store.get_active_session("PS-1").session_id == second.session_id
        assert [s.session_id for s in sql_store.list_sessions(ended_only=True)] == [first.session_id]

    def test_transfer_is_persisted(self, sql_engine, sql_store, clock):
        source = sql_engine.start_session("PS-1")
        target = sql_engine.start_session("PS-2")
        clock.advance(minutes=15)

        sql_engine.transfer_session(source.session_id, target.session_id)

        transfers = sql_store.list_transfers(target.session_id)
        assert len(transfers) == 1
        assert transfers[0].total_amount == 500
        assert sql_store.list_charges(target.session_id)[0].transfer_id == transfers[0].transfer_id

    def test_transaction_rolls_back(self, sql_engine, sql_store):
        session = sql_engine.start_session("PS-1")
        stored = sql_store.get_session(session.session_id)

        with pytest.raises(RuntimeError):
            with sql_store.transaction():
                stored.extra_charges = 999
                sql_store.save_session(stored)
                raise RuntimeError("abort")

        assert sql_store.get_session(session.session_id).extra_charges == 0

    def test_sql_failures_surface_as_storage_error(self, db_engine, sql_store):
        SessionModel.__table__.drop(db_engine)

        with pytest.raises(StorageError):
            sql_store.get_session("x")

    def test_file_database_pragmas(self, db_engine):
        with db_engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
            assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar() == 5000

    def test_in_memory_database(self, clock):
        shared = create_db_engine(":memory:")
        registry = SQLiteStationRegistry(shared)
        registry.save_station(Station("PS-1", PS1_MAC, 2000))
        engine = BillingEngine(registry, SQLiteSessionStore(shared), clock=clock)

        session = engine.start_session("PS-1")
        clock.advance(minutes=60)

        assert engine.end_session(session.session_id).total_cost == 2000
        assert engine.get_live_cost(session.session_id).as_of == clock.now()
