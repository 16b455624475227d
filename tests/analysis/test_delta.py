"""Tests for the distance-based rolling delta and resampling."""

from __future__ import annotations

import math

import pytest

from racing_delta.analysis import delta_series, rolling_delta_vs_reference
from racing_delta.analysis.resample import (
    channel_getter,
    distance_grid,
    elapsed_getter,
    resample,
    value_at,
)
from tests.conftest import make_lap, make_point, straight_lap

# ---------------------------------------------------------------------------
# Resampling
# ---------------------------------------------------------------------------


def test_distance_grid_rows():
    assert distance_grid(10.0, 2.5) == [0.0, 2.5, 5.0, 7.5, 10.0]
    assert distance_grid(9.9, 2.5) == [0.0, 2.5, 5.0, 7.5]
    assert distance_grid(0.0, 1.0) == [0.0]


def test_distance_grid_rejects_bad_step():
    with pytest.raises(ValueError):
        distance_grid(10.0, 0.0)


def test_resample_interpolates_linearly():
    pts = [
        make_point(t_ms=0, distance_m=0, speed_kmh=100),
        make_point(t_ms=1000, distance_m=10, speed_kmh=200),
    ]
    speed = channel_getter("speed_kmh")
    assert resample(pts, [0.0, 2.5, 5.0, 10.0], speed) == pytest.approx([100, 125, 150, 200])


def test_resample_holds_boundary_values():
    pts = [
        make_point(t_ms=0, distance_m=5, speed_kmh=80),
        make_point(t_ms=1000, distance_m=15, speed_kmh=120),
    ]
    speed = channel_getter("speed_kmh")
    assert resample(pts, [0.0, 20.0], speed) == [80.0, 120.0]


def test_resample_handles_repeated_distance():
    pts = [
        make_point(t_ms=0, distance_m=0, speed_kmh=10),
        make_point(t_ms=100, distance_m=5, speed_kmh=20),
        make_point(t_ms=200, distance_m=5, speed_kmh=30),
        make_point(t_ms=300, distance_m=10, speed_kmh=40),
    ]
    out = resample(pts, [2.5, 7.5], channel_getter("speed_kmh"))
    assert out[0] == pytest.approx(15.0)
    assert 20.0 <= out[1] <= 40.0


def test_channel_getter_reads_extra_channels():
    p = make_point(channels={"yaw": 0.25})
    assert channel_getter("yaw")(p) == 0.25
    assert math.isnan(channel_getter("missing")(p))


def test_value_at_and_elapsed():
    lap = straight_lap(length_m=100.0, n=11, duration_ms=10_000.0)
    assert value_at(lap.points, 55.0, elapsed_getter(lap)) == pytest.approx(5500.0)


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


def test_lap_against_itself_is_zero():
    lap = straight_lap()
    grid = distance_grid(lap.length_m, 1.0)
    assert all(s.delta_ms == 0.0 for s in delta_series(lap, lap, grid))


def test_slower_lap_accumulates_positive_delta():
    ref = straight_lap(duration_ms=100_000.0)
    slow = straight_lap(duration_ms=101_000.0)
    ribbon = rolling_delta_vs_reference(ref, [ref, slow], step_m=1.0)
    assert list(ribbon) == [slow.id]
    samples = ribbon[slow.id]
    assert len(samples) == 1001
    assert samples[0].delta_ms == 0.0
    assert samples[-1].delta_ms == pytest.approx(1000.0)
    assert samples[500].delta_ms == pytest.approx(500.0)
    assert all(s.delta_ms >= 0 for s in samples)


def test_faster_lap_negative_delta():
    ref = straight_lap(duration_ms=100_000.0)
    fast = straight_lap(duration_ms=98_000.0)
    samples = rolling_delta_vs_reference(ref, [fast], step_m=10.0)[fast.id]
    assert samples[-1].delta_ms == pytest.approx(-2000.0)


def test_delta_is_independent_of_session_time_offset():
    ref = straight_lap()
    shifted = make_lap(
        [make_point(t_ms=p.t_ms + 60_000.0, distance_m=p.distance_m, x=p.x) for p in ref.points]
    )
    grid = distance_grid(ref.length_m, 5.0)
    assert max(abs(s.delta_ms) for s in delta_series(shifted, ref, grid)) < 1e-6


def test_different_sample_rates():
    ref = straight_lap(n=101)
    dense = straight_lap(n=1001)
    grid = distance_grid(ref.length_m, 0.5)
    assert max(abs(s.delta_ms) for s in delta_series(dense, ref, grid)) < 1e-6
