"""
Tests for the pure cost arithmetic.
"""

from datetime import timedelta

import pytest

from domain.pricing import (
    billed_minutes,
    compute_cost,
    div_round_half_up,
    elapsed_ms,
    segment_cost,
)
from domain.segment import Segment
from domain.session import Session, SessionState

from conftest import START


def _session(**kwargs):
    defaults = dict(session_id="s1", station_id="PS-1", started_at=START, hourly_rate_snapshot=2000)
    defaults.update(kwargs)
    return Session(**defaults)


def _segment(segment_id, minutes_from, minutes_to=None, rate=2000, mode="single", paused_ms=0):
    return Segment(
        segment_id=segment_id,
        session_id="s1",
        mode=mode,
        started_at=START + timedelta(minutes=minutes_from),
        ended_at=START + timedelta(minutes=minutes_to) if minutes_to is not None else None,
        hourly_rate_snapshot=rate,
        paused_ms=paused_ms,
    )


class TestMinuteRounding:
    """Billing rounds every started minute up."""

    def test_zero_and_negative_bill_nothing(self):
        assert billed_minutes(0) == 0
        assert billed_minutes(-5_000) == 0

    def test_partial_minute_rounds_up(self):
        assert billed_minutes(1) == 1
        assert billed_minutes(60_000) == 1
        assert billed_minutes(60_001) == 2

    def test_elapsed_ms_is_exact(self):
        assert elapsed_ms(START, START + timedelta(minutes=1, milliseconds=7)) == 60_007
        assert elapsed_ms(START + timedelta(seconds=1), START) == -1_000


class TestRoundHalfUp:

    def test_half_rounds_up(self):
        assert div_round_half_up(30, 60) == 1
        assert div_round_half_up(29, 60) == 0
        assert div_round_half_up(90, 60) == 2

    def test_negative_is_symmetric(self):
        assert div_round_half_up(-30, 60) == -1

    def test_segment_cost_stays_integer(self):
        assert segment_cost(2000, 80) == 2667
        assert segment_cost(3500, 20) == 1167
        assert segment_cost(2000, 0) == 0
        assert isinstance(segment_cost(1999, 7), int)

    def test_rejects_non_positive_denominator(self):
        with pytest.raises(ValueError):
            div_round_half_up(1, 0)


class TestComputeCost:
    """Scenarios A-C on hand-built segments."""

    def test_scenario_a_uninterrupted_90_minutes(self):
        breakdown = compute_cost(_session(), [_segment("a", 0)], START + timedelta(minutes=90))

        assert breakdown.gaming_cost == 3000
        assert breakdown.elapsed_minutes == 90

    def test_scenario_b_open_segment_while_paused(self):
        now = START + timedelta(minutes=90)
        session = _session(state=SessionState.PAUSED, paused_at=now - timedelta(minutes=10))

        breakdown = compute_cost(session, [_segment("a", 0)], now)

        assert breakdown.elapsed_minutes == 80
        assert breakdown.gaming_cost == 2667

    def test_scenario_b_resumed_pause_recorded_on_segment(self):
        segment = _segment("a", 0, paused_ms=10 * 60_000)

        breakdown = compute_cost(_session(total_paused_ms=10 * 60_000), [segment], START + timedelta(minutes=90))

        assert breakdown.gaming_cost == 2667

    def test_scenario_c_mode_switch(self):
        segments = [
            _segment("multi", 30, 50, rate=3500, mode="multi"),
            _segment("single", 0, 30),
        ]

        breakdown = compute_cost(_session(), segments, START + timedelta(minutes=50))

        assert [item.cost for item in breakdown.segments] == [1000, 1167]
        assert breakdown.gaming_cost == 2167
        assert breakdown.elapsed_minutes == 50

    def test_extra_charges_are_added(self):
        breakdown = compute_cost(_session(extra_charges=-500), [_segment("a", 0)], START + timedelta(minutes=60))

        assert breakdown.segment_total == 2000
        assert breakdown.gaming_cost == 1500

    def test_is_deterministic_for_same_now(self):
        now = START + timedelta(minutes=33, seconds=12)
        segments = [_segment("a", 0)]

        assert compute_cost(_session(), segments, now) == compute_cost(_session(), segments, now)
