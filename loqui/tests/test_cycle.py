"""
Tests for signup-anchored usage cycles.
"""
from datetime import datetime, timedelta, timezone

import pytest

from loqui.features.usage.cycle import cycle_window


UTC = timezone.utc


def test_window_within_first_cycle():
    anchor = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
    cycle = cycle_window(anchor, datetime(2026, 2, 10, tzinfo=UTC))

    assert cycle.start == anchor
    assert cycle.end == datetime(2026, 2, 15, 12, 0, tzinfo=UTC)
    assert cycle.to_dict() == {"cycleStart": "2026-01-15T12:00:00Z", "cycleEnd": "2026-02-15T12:00:00Z"}


def test_boundary_instant_starts_next_cycle():
    anchor = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
    cycle = cycle_window(anchor, datetime(2026, 2, 15, 12, 0, tzinfo=UTC))

    assert cycle.start == datetime(2026, 2, 15, 12, 0, tzinfo=UTC)
    assert cycle.end == datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def test_month_end_anchor_clamps_without_drift():
    anchor = datetime(2026, 1, 31, 8, 0, tzinfo=UTC)

    feb = cycle_window(anchor, datetime(2026, 2, 28, 9, 0, tzinfo=UTC))
    assert feb.start == datetime(2026, 2, 28, 8, 0, tzinfo=UTC)
    assert feb.end == datetime(2026, 3, 31, 8, 0, tzinfo=UTC)

    apr = cycle_window(anchor, datetime(2026, 4, 30, 9, 0, tzinfo=UTC))
    assert apr.start == datetime(2026, 4, 30, 8, 0, tzinfo=UTC)
    assert apr.end == datetime(2026, 5, 31, 8, 0, tzinfo=UTC)


def test_leap_year_clamp():
    anchor = datetime(2027, 12, 31, tzinfo=UTC)
    cycle = cycle_window(anchor, datetime(2028, 2, 29, 1, 0, tzinfo=UTC))

    assert cycle.start == datetime(2028, 2, 29, tzinfo=UTC)
    assert cycle.end == datetime(2028, 3, 31, tzinfo=UTC)


def test_future_anchor_yields_first_cycle_not_containing_now():
    anchor = datetime(2026, 6, 1, tzinfo=UTC)
    now = datetime(2026, 5, 1, tzinfo=UTC)
    cycle = cycle_window(anchor, now)

    assert cycle.start == anchor
    assert cycle.end == datetime(2026, 7, 1, tzinfo=UTC)
    assert not cycle.contains(now)


def test_naive_inputs_are_treated_as_utc():
    cycle = cycle_window(datetime(2026, 1, 15, 12, 0), datetime(2026, 2, 10))

    assert cycle.start.tzinfo is not None
    assert cycle.end == datetime(2026, 2, 15, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize("anchor_day", [1, 15, 28, 29, 30, 31])
def test_cycle_always_contains_now_and_is_about_a_month(anchor_day):
    anchor = datetime(2025, 1, anchor_day, 10, 30, tzinfo=UTC)
    now = anchor
    for _ in range(40):
        now = now + timedelta(days=11, hours=7)
        cycle = cycle_window(anchor, now)
        assert cycle.start <= now < cycle.end
        assert 28 <= (cycle.end - cycle.start).days <= 31
        # Consecutive cycles tile
        assert cycle_window(anchor, cycle.end).start == cycle.end


@pytest.mark.parametrize(
    "anchor,now",
    [
        (datetime(2026, 1, 31, 8, 0, tzinfo=UTC), datetime(2026, 2, 10, tzinfo=UTC)),
        (datetime(2026, 1, 31, 8, 0, tzinfo=UTC), datetime(2026, 2, 28, 9, 0, tzinfo=UTC)),
        (datetime(2027, 12, 31, tzinfo=UTC), datetime(2028, 3, 10, tzinfo=UTC)),
    ],
)
def test_same_window_for_any_instant_inside_it(anchor, now):
    cycle = cycle_window(anchor, now)
    midpoint = cycle.start + (cycle.end - cycle.start) / 2

    for instant in (cycle.start, midpoint, cycle.end - timedelta(microseconds=1)):
        assert cycle_window(anchor, instant) == cycle
