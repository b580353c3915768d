"""
Tests for the session state machine.
"""

from datetime import timedelta

import pytest

from domain.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from domain.pricing import compute_cost, elapsed_ms
from domain.session import Session, SessionState
from domain.station import StationStatus

from conftest import START


def _conserved(engine, session):
    """sum(segment billable ms) + total_paused_ms == wall clock."""
    session = engine.get_session(session.session_id)
    end = session.ended_at or engine.clock.now()
    breakdown = compute_cost(session, engine.list_segments(session.session_id), end)
    paused = session.total_paused_ms + session.current_pause_ms(end)
    return sum(item.billable_ms for item in breakdown.segments) + paused == elapsed_ms(session.started_at, end)


class TestStartSession:

    def test_start_captures_single_rate_and_opens_segment(self, engine, registry):
        session = engine.start_session("PS-1")

        assert session.state == SessionState.ACTIVE
        assert session.hourly_rate_snapshot == 2000
        assert session.current_mode.value == "single"
        segments = engine.list_segments(session.session_id)
        assert len(segments) == 1
        assert segments[0].is_open
        assert segments[0].hourly_rate_snapshot == 2000
        assert registry.get_station("PS-1").status == StationStatus.OCCUPIED

    def test_second_start_conflicts(self, engine):
        engine.start_session("PS-1")

        with pytest.raises(ConflictError):
            engine.start_session("PS-1")

    def test_unknown_station(self, engine):
        with pytest.raises(NotFoundError):
            engine.start_session("PS-404")

    def test_maintenance_station(self, engine):
        with pytest.raises(InvalidStateError):
            engine.start_session("PS-9")

    def test_rejects_negative_timer_and_unknown_origin(self, engine, store):
        with pytest.raises(ValidationError):
            engine.start_session("PS-1", timer_minutes=-1)
        with pytest.raises(ValidationError):
            engine.start_session("PS-1", started_by="robot")
        assert store.list_active_sessions() == []

    def test_zero_timer_is_distinct_from_no_timer(self, engine):
        session = engine.start_session("PS-1", timer_minutes=0)

        assert session.timer_minutes == 0
        assert engine.start_session("PS-2").timer_minutes is None

    def test_emits_session_started(self, engine, notifier):
        session = engine.start_session("PS-1")

        assert notifier.types() == ["sessionStarted"]
        assert notifier.events[0].session_id == session.session_id


class TestPauseResume:

    def test_pause_then_resume_accumulates(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=10)
        engine.pause_session(session.session_id)
        clock.advance(minutes=5)

        resumed = engine.resume_session(session.session_id)

        assert resumed.state == SessionState.ACTIVE
        assert resumed.paused_at is None
        assert resumed.total_paused_ms == 5 * 60_000
        assert engine.list_segments(session.session_id)[0].paused_ms == 5 * 60_000

    def test_double_pause_rejected(self, engine):
        session = engine.start_session("PS-1")
        engine.pause_session(session.session_id)

        with pytest.raises(InvalidStateError):
            engine.pause_session(session.session_id)

    def test_resume_without_pause_rejected(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(InvalidStateError):
            engine.resume_session(session.session_id)

    def test_pause_freezes_live_cost(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=30)
        engine.pause_session(session.session_id)
        before = engine.get_live_cost(session.session_id).gaming_cost
        clock.advance(minutes=45)

        assert engine.get_live_cost(session.session_id).gaming_cost == before == 1000
        assert engine.station_state("PS-1") == SessionState.PAUSED


class TestSwitchMode:

    def test_switch_uses_multi_rate(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=30)

        updated = engine.switch_mode(session.session_id, "multi")

        segments = engine.list_segments(session.session_id)
        assert updated.current_mode.value == "multi"
        assert updated.hourly_rate_snapshot == 2000
        assert [s.hourly_rate_snapshot for s in segments] == [2000, 3500]
        assert segments[0].ended_at == segments[1].started_at

    def test_station_without_multi_rate_keeps_single(self, engine):
        session = engine.start_session("PS-3")

        engine.switch_mode(session.session_id, "multi")

        assert [s.hourly_rate_snapshot for s in engine.list_segments(session.session_id)] == [1500, 1500]

    def test_same_mode_rejected(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(InvalidStateError):
            engine.switch_mode(session.session_id, "single")

    def test_unknown_mode_rejected(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(ValidationError):
            engine.switch_mode(session.session_id, "co-op")

    def test_switch_while_paused_keeps_pause(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=10)
        engine.pause_session(session.session_id)
        clock.advance(minutes=5)

        switched = engine.switch_mode(session.session_id, "multi")

        assert switched.is_paused
        assert switched.paused_at == clock.now()
        assert switched.total_paused_ms == 5 * 60_000
        assert engine.get_live_cost(session.session_id).gaming_cost == 333
        assert _conserved(engine, session)

        clock.advance(minutes=5)
        assert engine.get_live_cost(session.session_id).gaming_cost == 333
        engine.resume_session(session.session_id)
        clock.advance(minutes=20)
        ended = engine.end_session(session.session_id)

        segments = engine.list_segments(session.session_id)
        assert [s.paused_ms for s in segments] == [5 * 60_000, 5 * 60_000]
        assert ended.total_paused_ms == 10 * 60_000
        assert ended.total_cost == 333 + 1458
        assert _conserved(engine, session)

    def test_double_switch_segments_are_contiguous(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=5)
        engine.switch_mode(session.session_id, "multi")
        engine.switch_mode(session.session_id, "single")
        clock.advance(minutes=5)

        segments = engine.list_segments(session.session_id)

        assert len(segments) == 3
        for earlier, later in zip(segments, segments[1:]):
            assert earlier.ended_at == later.started_at
        assert segments[-1].is_open


class TestEndSession:

    def test_scenario_a(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=90)

        ended = engine.end_session(session.session_id)

        assert ended.state == SessionState.ENDED
        assert ended.total_cost == 3000
        assert ended.ended_at == START + timedelta(minutes=90)

    def test_scenario_b(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=40)
        engine.pause_session(session.session_id)
        clock.advance(minutes=10)
        engine.resume_session(session.session_id)
        clock.advance(minutes=40)

        assert engine.end_session(session.session_id).total_cost == 2667

    def test_scenario_c(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=30)
        engine.switch_mode(session.session_id, "multi")
        clock.advance(minutes=20)

        assert engine.end_session(session.session_id).total_cost == 2167

    def test_end_while_paused_folds_pause(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=80)
        engine.pause_session(session.session_id)
        clock.advance(minutes=10)

        ended = engine.end_session(session.session_id)

        assert ended.total_cost == 2667
        assert ended.paused_at is None
        assert ended.total_paused_ms == 10 * 60_000
        assert all(not s.is_open for s in engine.list_segments(session.session_id))

    def test_double_end_rejected(self, engine):
        session = engine.start_session("PS-1")
        engine.end_session(session.session_id)

        with pytest.raises(InvalidStateError):
            engine.end_session(session.session_id)

    def test_custom_total_overrides(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=90)

        ended = engine.end_session(session.session_id, custom_total_cost=2500, notes="regular")

        assert ended.total_cost == 2500
        assert ended.notes == "regular"

    def test_negative_custom_total_rejected_without_side_effects(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(ValidationError):
            engine.end_session(session.session_id, custom_total_cost=-1)
        assert engine.get_session(session.session_id).is_active

    def test_orders_stay_out_of_total_cost(self, engine, clock):
        session = engine.start_session("PS-1")
        engine.add_order(session.session_id, "tea", 2)
        clock.advance(minutes=60)

        ended = engine.end_session(session.session_id)

        assert ended.total_cost == 2000
        assert ended.orders_cost == 2000
        assert ended.net_bill == 4000

    def test_frees_station_and_notifies(self, engine, registry, notifier, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=1)
        engine.end_session(session.session_id)

        assert registry.get_station("PS-1").status == StationStatus.AVAILABLE
        assert engine.station_state("PS-1") == SessionState.IDLE
        assert notifier.types() == ["sessionStarted", "sessionEnded"]
        assert notifier.events[-1].payload["totalCost"] == 33

    def test_round_trip_matches_stored_segments(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=7, seconds=13)
        engine.pause_session(session.session_id)
        clock.advance(minutes=3)
        engine.resume_session(session.session_id)
        engine.switch_mode(session.session_id, "multi")
        clock.advance(minutes=11, seconds=59)
        engine.add_charge(session.session_id, 150, "controller")
        ended = engine.end_session(session.session_id)

        stored = engine.get_session(session.session_id)
        recomputed = compute_cost(stored, engine.list_segments(session.session_id), stored.ended_at)

        assert recomputed.gaming_cost == ended.total_cost


class TestConservation:

    def test_holds_across_pause_switch_and_end(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=3, seconds=20)
        engine.pause_session(session.session_id)
        clock.advance(minutes=2)
        assert _conserved(engine, session)

        engine.resume_session(session.session_id)
        clock.advance(seconds=45)
        engine.switch_mode(session.session_id, "multi")
        clock.advance(minutes=4)
        engine.pause_session(session.session_id)
        clock.advance(minutes=1, milliseconds=250)
        assert _conserved(engine, session)

        engine.end_session(session.session_id)
        assert _conserved(engine, session)

    def test_session_model_rejects_illegal_states(self):
        with pytest.raises(ValueError):
            Session("x", "PS-1", START, 2000, state=SessionState.ENDED)
        with pytest.raises(ValueError):
            Session("x", "PS-1", START, 2000, paused_at=START)
        with pytest.raises(ValueError):
            Session("x", "PS-1", START, 2000, state=SessionState.IDLE)


class TestSwitchStation:

    def test_moves_without_cost_impact(self, engine, registry, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=30)

        moved = engine.switch_station(session.session_id, "PS-2")

        assert moved.station_id == "PS-2"
        assert "PS-1" in moved.notes
        assert engine.get_live_cost(session.session_id).gaming_cost == 1000
        assert registry.get_station("PS-1").status == StationStatus.AVAILABLE
        assert registry.get_station("PS-2").status == StationStatus.OCCUPIED
        assert engine.station_state("PS-1") == SessionState.IDLE

    def test_occupied_destination_conflicts(self, engine):
        session = engine.start_session("PS-1")
        engine.start_session("PS-2")

        with pytest.raises(ConflictError):
            engine.switch_station(session.session_id, "PS-2")

    def test_same_station_and_maintenance(self, engine):
        session = engine.start_session("PS-1")

        with pytest.raises(ValidationError):
            engine.switch_station(session.session_id, "PS-1")
        with pytest.raises(InvalidStateError):
            engine.switch_station(session.session_id, "PS-9")
        with pytest.raises(NotFoundError):
            engine.switch_station(session.session_id, "PS-404")


class TestCorrectStartTime:

    def test_earlier_start_bills_more(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=60)

        engine.correct_start_time(session.session_id, START - timedelta(minutes=30))

        assert engine.get_live_cost(session.session_id).gaming_cost == 3000
        assert _conserved(engine, session)

    def test_later_start_past_recorded_pause_rejected(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=1)
        engine.pause_session(session.session_id)
        clock.advance(minutes=10)
        engine.resume_session(session.session_id)
        clock.advance(minutes=9)

        with pytest.raises(ValidationError):
            engine.correct_start_time(session.session_id, START + timedelta(minutes=15))

        assert engine.get_live_cost(session.session_id).elapsed_minutes == 10
        assert _conserved(engine, session)

    def test_earlier_start_with_recorded_pause(self, engine, clock):
        session = engine.start_session("PS-1")
        clock.advance(minutes=1)
        engine.pause_session(session.session_id)
        clock.advance(minutes=10)
        engine.resume_session(session.session_id)
        clock.advance(minutes=9)

        engine.correct_start_time(session.session_id, START - timedelta(minutes=5))

        assert engine.get_live_cost(session.session_id).gaming_cost == 500
        assert _conserved(engine, session)

    def test_future_start_rejected(self, engine, clock):
        session = engine.start_session("PS-1")

        with pytest.raises(ValidationError):
            engine.correct_start_time(session.session_id, clock.now() + timedelta(minutes=1))


class TestReads:

    def test_station_statuses_include_live_cost(self, engine, clock):
        engine.start_session("PS-2")
        clock.advance(minutes=15)

        views = {view.station.station_id: view for view in engine.list_station_statuses()}

        assert [v.station.station_id for v in engine.list_station_statuses()] == ["PS-1", "PS-2", "PS-3", "PS-9"]
        assert views["PS-1"].state == SessionState.IDLE
        assert views["PS-2"].live_cost.gaming_cost == 500

    def test_history_lists_ended_sessions_newest_first(self, engine, clock):
        first = engine.start_session("PS-1")
        clock.advance(minutes=10)
        engine.end_session(first.session_id)
        second = engine.start_session("PS-1")
        clock.advance(minutes=10)
        engine.end_session(second.session_id)
        engine.start_session("PS-1")

        history = engine.list_history(station_id="PS-1")

        assert [s.session_id for s in history] == [second.session_id, first.session_id]

    def test_missing_session(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_live_cost("nope")
