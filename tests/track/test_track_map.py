"""Tests for TrackMapBuilder: outline, corners and sectors."""

from __future__ import annotations

import math

import pytest

from racing_delta.errors import GeometryError
from racing_delta.track import Sector, TrackMapBuilder
from racing_delta.track.builder import (
    _wrap_angle,
    curvature_profile,
    moving_average,
    signed_heading_changes,
)
from tests.conftest import make_lap, make_point, square_lap, straight_lap, wavy_lap


def assert_consecutive(sectors: list[Sector], length_m: float) -> None:
    assert sectors[0].start_m == 0.0
    assert sectors[-1].end_m == pytest.approx(length_m)
    for prev, cur in zip(sectors, sectors[1:]):
        assert cur.start_m == prev.end_m
        assert prev.length_m > 0


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def test_wrap_angle():
    assert _wrap_angle(3 * math.pi / 2) == pytest.approx(-math.pi / 2)
    assert _wrap_angle(-3 * math.pi / 2) == pytest.approx(math.pi / 2)
    assert _wrap_angle(math.pi) == pytest.approx(math.pi)


def test_left_turn_is_positive():
    pts = [make_point(x=0, y=0), make_point(x=1, y=0), make_point(x=1, y=1)]
    assert signed_heading_changes(pts)[1] == pytest.approx(math.pi / 2)


def test_curvature_needs_three_points():
    with pytest.raises(GeometryError):
        curvature_profile([make_point(), make_point(x=1)])


def test_curvature_of_straight_is_zero():
    assert max(curvature_profile(straight_lap().points)) == 0.0


def test_moving_average_clamps_edges():
    assert moving_average([0.0, 0.0, 3.0, 0.0, 0.0], 1) == pytest.approx([0.0, 1.0, 1.0, 1.0, 0.0])
    assert moving_average([1.0, 2.0], 0) == [1.0, 2.0]


# ---------------------------------------------------------------------------
# Corners
# ---------------------------------------------------------------------------


def test_square_has_four_left_corners():
    lap = square_lap()
    corners = TrackMapBuilder().detect_corners(lap.points)
    assert [c.index for c in corners] == [1, 2, 3, 4]
    for corner, vertex_d in zip(corners, (100.0, 300.0, 500.0, 700.0)):
        assert corner.distance_m == pytest.approx(vertex_d, abs=5.0)
        assert corner.direction == "L"


def test_reversed_square_turns_right():
    lap = square_lap()
    pts = [make_point(t_ms=p.t_ms, distance_m=p.distance_m, x=p.x, y=-p.y) for p in lap.points]
    corners = TrackMapBuilder().detect_corners(pts)
    assert len(corners) == 4
    assert {c.direction for c in corners} == {"R"}


def test_high_threshold_finds_nothing():
    assert TrackMapBuilder(curvature_threshold=0.2).detect_corners(square_lap().points) == []


def test_straight_has_no_corners():
    assert TrackMapBuilder().detect_corners(straight_lap().points) == []


def test_corner_count_monotone_in_threshold():
    points = wavy_lap().points
    counts = [
        len(TrackMapBuilder(curvature_threshold=t).detect_corners(points))
        for t in (0.0, 0.005, 0.01, 0.02, 0.04, 0.08, 0.16)
    ]
    assert counts[0] > 0
    assert counts == sorted(counts, reverse=True)


def test_close_candidates_merged():
    points = wavy_lap().points
    loose = TrackMapBuilder(min_corner_separation_m=0.0).detect_corners(points)
    merged = TrackMapBuilder(min_corner_separation_m=200.0).detect_corners(points)
    assert len(merged) < len(loose)
    for a, b in zip(merged, merged[1:]):
        assert b.distance_m - a.distance_m >= 200.0


# ---------------------------------------------------------------------------
# Full build
# ---------------------------------------------------------------------------


def test_three_point_lap():
    pts = [
        make_point(t_ms=0, distance_m=0, x=0, y=0),
        make_point(t_ms=1000, distance_m=50, x=50, y=0),
        make_point(t_ms=2000, distance_m=100, x=100, y=0),
    ]
    track = TrackMapBuilder().build(make_lap(pts))
    assert track.corners == []
    assert track.sectors == [Sector(0.0, 100.0)]
    assert len(track.polyline) == 3
    assert track.lap_length_m == 100.0


def test_square_build():
    lap = square_lap()
    track = TrackMapBuilder().build(lap)
    assert track.lap_id == lap.id
    assert track.bbox.width == pytest.approx(200.0)
    assert track.bbox.height == pytest.approx(200.0)
    assert len(track.corners) == 4
    assert len(track.sectors) == 3
    assert_consecutive(track.sectors, 800.0)
    # boundaries at the 2nd and 3rd corners
    assert track.sectors[0].end_m == track.corners[1].distance_m
    assert track.sectors[1].end_m == track.corners[2].distance_m


def test_even_sectors_without_enough_corners():
    lap = straight_lap(length_m=900.0)
    track = TrackMapBuilder(sector_count=3).build(lap)
    assert [(s.start_m, s.end_m) for s in track.sectors] == pytest.approx(
        [(0.0, 300.0), (300.0, 600.0), (600.0, 900.0)]
    )


def test_short_lap_single_sector():
    lap = straight_lap(length_m=50.0)
    track = TrackMapBuilder(min_sector_lap_m=100.0).build(lap)
    assert track.sectors == [Sector(0.0, 50.0)]


def test_zero_length_lap_has_no_sectors():
    pts = [make_point(t_ms=i * 100.0) for i in range(30)]
    track = TrackMapBuilder().build(make_lap(pts))
    assert track.sectors == []
    assert track.corners == []


def test_polyline_decimation_keeps_last_point():
    lap = square_lap()
    poly = TrackMapBuilder(max_polyline_points=100).polyline(lap.points)
    assert len(poly) <= 101
    assert len(poly) <= len(lap.points)
    last = lap.points[-1]
    assert (poly[-1].x, poly[-1].y) == (last.x, last.y)
    assert (poly[0].x, poly[0].y) == (lap.points[0].x, lap.points[0].y)


def test_polyline_small_lap_unchanged():
    lap = straight_lap(n=11)
    assert len(TrackMapBuilder().polyline(lap.points)) == 11


def test_sector_contains_is_half_open():
    s = Sector(100.0, 200.0)
    assert s.contains(100.0)
    assert not s.contains(200.0)
    assert s.length_m == 100.0


def test_invalid_builder_arguments():
    with pytest.raises(ValueError):
        TrackMapBuilder(sector_count=0)
