"""Tests for lap-time summary, sector times and consistency."""

from __future__ import annotations

import pytest

from racing_delta.analysis import lap_summary, sector_times
from racing_delta.errors import ValidationError
from racing_delta.track import Sector
from tests.conftest import make_lap, make_point, straight_lap

THIRDS = [Sector(0.0, 300.0), Sector(300.0, 600.0), Sector(600.0, 900.0)]


def test_sector_times_sum_to_elapsed():
    lap = straight_lap(length_m=900.0, duration_ms=90_000.0)
    times = sector_times(lap, THIRDS)
    assert times == pytest.approx([30_000.0, 30_000.0, 30_000.0])
    assert sum(times) == pytest.approx(lap.elapsed_ms)


def test_sector_times_without_sectors():
    assert sector_times(straight_lap(), []) == []


def test_summary_ordering():
    laps = [
        straight_lap(length_m=900.0, duration_ms=d) for d in (92_000.0, 90_000.0, 95_500.0)
    ]
    summary = lap_summary(laps, THIRDS)
    assert summary.best_ms == 90_000
    assert summary.worst_ms == 95_500
    assert summary.best_ms <= summary.avg_ms <= summary.worst_ms
    assert summary.avg_ms == pytest.approx((92_000 + 90_000 + 95_500) / 3)
    assert summary.lap_count == 3
    assert set(summary.sector_times_ms) == {lap.id for lap in laps}


def test_single_lap_is_perfectly_consistent():
    summary = lap_summary([straight_lap()], THIRDS)
    assert summary.consistency_s == 0.0
    assert summary.best_ms == summary.worst_ms == summary.avg_ms


def test_consistency_is_mean_sector_spread_in_seconds():
    # Two laps differing by 2 s, all in the last sector.
    base = straight_lap(length_m=900.0, n=91, duration_ms=90_000.0)
    pts = [
        make_point(
            t_ms=p.t_ms + max(0.0, p.distance_m - 600.0) / 300.0 * 2000.0,
            distance_m=p.distance_m,
            x=p.x,
        )
        for p in base.points
    ]
    slower = make_lap(pts)
    summary = lap_summary([base, slower], THIRDS)
    # pstdev of (30, 32) = 1.0 in sector 3, zero elsewhere.
    assert summary.consistency_s == pytest.approx(1.0 / 3.0)
    assert summary.sector_times_ms[slower.id][2] == pytest.approx(32_000.0)


def test_no_sectors_gives_zero_consistency():
    laps = [straight_lap(duration_ms=90_000.0), straight_lap(duration_ms=99_000.0)]
    assert lap_summary(laps, []).consistency_s == 0.0


def test_empty_selection_rejected():
    with pytest.raises(ValidationError):
        lap_summary([], THIRDS)
