"""Tests for per-corner metrics."""

from __future__ import annotations

import pytest

from racing_delta.analysis import per_corner_metrics
from racing_delta.track import CornerLabel
from tests.conftest import make_lap, make_point

APEX = CornerLabel(index=1, x=500.0, y=0.0, distance_m=500.0, direction="R")


def braking_lap():
    """Every 10 m: V-shaped speed around 500 m, brake 460-490, throttle from 520."""
    pts = []
    for i in range(101):
        d = i * 10.0
        pts.append(make_point(
            t_ms=i * 500.0,
            distance_m=d,
            x=d,
            speed_kmh=abs(d - 500.0) / 10.0 + 50.0,
            brake=1.0 if 460.0 <= d < 500.0 else 0.0,
            throttle=1.0 if d >= 520.0 or d < 440.0 else 0.3,
        ))
    return make_lap(pts)


def test_metrics_in_window():
    (m,) = per_corner_metrics(braking_lap(), [APEX])
    assert m.index == 1
    assert (m.start_m, m.apex_m, m.end_m) == (450.0, 500.0, 550.0)
    assert m.min_speed == pytest.approx(50.0)
    assert m.entry_speed == pytest.approx(53.0)
    assert m.exit_speed == pytest.approx(52.5)
    assert m.brake_point_m == 460.0
    assert m.throttle_on_m == 520.0


def test_pedal_points_none_when_thresholds_not_reached():
    (m,) = per_corner_metrics(
        braking_lap(), [APEX], brake_on_threshold=1.5, throttle_on_threshold=1.5
    )
    assert m.brake_point_m is None
    assert m.throttle_on_m is None


def test_narrow_window():
    (m,) = per_corner_metrics(braking_lap(), [APEX], window_m=20.0)
    assert (m.start_m, m.end_m) == (490.0, 510.0)
    assert m.entry_speed == pytest.approx(51.0)
    assert m.exit_speed == pytest.approx(50.5)


def test_empty_half_falls_back_to_boundary_speed():
    corner = CornerLabel(index=1, x=0.0, y=0.0, distance_m=0.0)
    (m,) = per_corner_metrics(braking_lap(), [corner])
    # no samples before 0 m: held first sample (100 km/h)
    assert m.entry_speed == pytest.approx(100.0)
    assert m.brake_point_m is None


def test_no_corners_no_metrics():
    assert per_corner_metrics(braking_lap(), []) == []
