"""Track map construction: outline, curvature-based corners and auto-sectors.

Corners are found on a single lap's XY path.  Curvature is measured as the
heading change per metre at each sample, smoothed, and local maxima above a
threshold become corner candidates.  Candidates closer than a minimum arc
length to a stronger one are suppressed.
"""

from __future__ import annotations

import math

from racing_delta.errors import GeometryError
from racing_delta.telemetry.models import Lap, TelemetryPoint
from racing_delta.track.models import BBox, CornerLabel, Point2, Sector, TrackMap

_EPS = 1e-9

# ---------------------------------------------------------------------------
# Geometry primitives
# ---------------------------------------------------------------------------


def _wrap_angle(angle: float) -> float:
    """Wrap *angle* into ``(-pi, pi]``."""
    wrapped = math.fmod(angle + math.pi, 2.0 * math.pi)
    if wrapped <= 0.0:
        wrapped += 2.0 * math.pi
    return wrapped - math.pi


def signed_heading_changes(points: list[TelemetryPoint] | tuple[TelemetryPoint, ...]) -> list[float]:
    """Signed heading change (radians, positive = left) at each interior point.

    Endpoints and points adjacent to a zero-length segment get 0.0.
    """
    n = len(points)
    turns = [0.0] * n
    for i in range(1, n - 1):
        p0, p1, p2 = points[i - 1], points[i], points[i + 1]
        ax, ay = p1.x - p0.x, p1.y - p0.y
        bx, by = p2.x - p1.x, p2.y - p1.y
        if math.hypot(ax, ay) < _EPS or math.hypot(bx, by) < _EPS:
            continue
        turns[i] = _wrap_angle(math.atan2(by, bx) - math.atan2(ay, ax))
    return turns


def curvature_profile(points: list[TelemetryPoint] | tuple[TelemetryPoint, ...]) -> list[float]:
    """Unsigned curvature (rad/m) at each point.

    Curvature at an interior point is ``|heading change|`` divided by the mean
    length of its two adjacent segments; zero where a segment is degenerate.

    Raises:
        GeometryError: If fewer than 3 points are given.
    """
    n = len(points)
    if n < 3:
        raise GeometryError(f"Need at least 3 points for curvature, got {n}")
    turns = signed_heading_changes(points)
    curvature = [0.0] * n
    for i in range(1, n - 1):
        if turns[i] == 0.0:
            continue
        s1 = math.hypot(points[i].x - points[i - 1].x, points[i].y - points[i - 1].y)
        s2 = math.hypot(points[i + 1].x - points[i].x, points[i + 1].y - points[i].y)
        curvature[i] = abs(turns[i]) / ((s1 + s2) / 2.0)
    return curvature


def moving_average(values: list[float], half_window: int) -> list[float]:
    """Moving average with kernel ``2 * half_window + 1``, clamped at the ends."""
    n = len(values)
    if n == 0 or half_window <= 0:
        return list(values)
    prefix = [0.0]
    for v in values:
        prefix.append(prefix[-1] + v)
    result: list[float] = []
    for i in range(n):
        lo = max(0, i - half_window)
        hi = min(n, i + half_window + 1)
        result.append((prefix[hi] - prefix[lo]) / (hi - lo))
    return result


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class TrackMapBuilder:
    """Build a :class:`TrackMap` from a single lap.

    Args:
        curvature_threshold: Minimum smoothed curvature (rad/m) for a corner
            candidate.  Raising it never yields more corners.
        smooth_window: Half-window of the curvature moving average.
        peak_half_window: A candidate must be the maximum of the
            ``2 * peak_half_window + 1`` samples around it.  Laps with fewer
            samples than that window have no corners and a single sector.
        min_corner_separation_m: Candidates closer than this (arc length) to a
            stronger kept corner are suppressed.
        max_polyline_points: Target vertex budget of the decimated outline.
        sector_count: Number of auto-sectors.
        min_sector_lap_m: Laps shorter than this get a single sector.
    """

    def __init__(
        self,
        curvature_threshold: float = 0.02,
        smooth_window: int = 2,
        peak_half_window: int = 8,
        min_corner_separation_m: float = 40.0,
        max_polyline_points: int = 1500,
        sector_count: int = 3,
        min_sector_lap_m: float = 0.0,
    ) -> None:
        if peak_half_window < 1:
            raise ValueError("peak_half_window must be >= 1")
        if max_polyline_points < 2:
            raise ValueError("max_polyline_points must be >= 2")
        if sector_count < 1:
            raise ValueError("sector_count must be >= 1")
        self.curvature_threshold = curvature_threshold
        self.smooth_window = smooth_window
        self.peak_half_window = peak_half_window
        self.min_corner_separation_m = min_corner_separation_m
        self.max_polyline_points = max_polyline_points
        self.sector_count = sector_count
        self.min_sector_lap_m = min_sector_lap_m

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, lap: Lap) -> TrackMap:
        """Derive outline, corners and sectors of *lap*."""
        points = lap.points
        corners = self.detect_corners(points)
        return TrackMap(
            lap_id=lap.id,
            lap_length_m=lap.length_m,
            bbox=self.bounding_box(points),
            polyline=self.polyline(points),
            corners=corners,
            sectors=self.sectors(lap, corners),
        )

    @staticmethod
    def bounding_box(points: list[TelemetryPoint] | tuple[TelemetryPoint, ...]) -> BBox:
        xs = [p.x for p in points]
        ys = [p.y for p in points]
        return BBox(minx=min(xs), maxx=max(xs), miny=min(ys), maxy=max(ys))

    def polyline(self, points: list[TelemetryPoint] | tuple[TelemetryPoint, ...]) -> list[Point2]:
        """Decimate *points* with a uniform index stride, keeping the last point."""
        n = len(points)
        stride = max(1, math.ceil(n / self.max_polyline_points))
        indices = list(range(0, n, stride))
        if indices[-1] != n - 1:
            indices.append(n - 1)
        return [Point2(points[i].x, points[i].y) for i in indices]

    def detect_corners(self, points: list[TelemetryPoint] | tuple[TelemetryPoint, ...]) -> list[CornerLabel]:
        """Return corners sorted by distance and numbered from 1.

        Degenerate input (fewer than 3 points, or fewer than the peak window)
        yields no corners.
        """
        n = len(points)
        w = self.peak_half_window
        if n < 2 * w + 1:
            return []
        try:
            raw = curvature_profile(points)
        except GeometryError:
            return []
        smoothed = moving_average(raw, self.smooth_window)

        # 1. Local maxima above threshold
        candidates: list[int] = []
        for i in range(n):
            k = smoothed[i]
            if k < self.curvature_threshold or k <= 0.0:
                continue
            lo = max(0, i - w)
            hi = min(n, i + w + 1)
            if k >= max(smoothed[lo:hi]):
                candidates.append(i)

        # 2. Non-maximum suppression by arc length, strongest first
        candidates.sort(key=lambda i: (-smoothed[i], i))
        kept: list[int] = []
        for i in candidates:
            d = points[i].distance_m
            if all(abs(d - points[j].distance_m) >= self.min_corner_separation_m for j in kept):
                kept.append(i)

        # 3. Number by distance
        kept.sort(key=lambda i: (points[i].distance_m, i))
        turns = signed_heading_changes(points)
        corners: list[CornerLabel] = []
        for index, i in enumerate(kept, start=1):
            lo = max(0, i - w)
            hi = min(n, i + w + 1)
            direction = "L" if sum(turns[lo:hi]) >= 0 else "R"
            p = points[i]
            corners.append(CornerLabel(index=index, x=p.x, y=p.y, distance_m=p.distance_m, direction=direction))
        return corners

    def sectors(self, lap: Lap, corners: list[CornerLabel]) -> list[Sector]:
        """Split ``[0, lap.length_m)`` into consecutive sectors.

        Sector boundaries sit at the apexes of evenly spaced corners when the
        lap has at least ``sector_count`` corners, otherwise the lap is split
        into equal arcs.  A lap too short for the corner window gets one
        sector, a zero-length lap none.
        """
        length = lap.length_m
        if length <= 0.0:
            return []
        if len(lap.points) < 2 * self.peak_half_window + 1 or length < self.min_sector_lap_m:
            return [Sector(0.0, length)]

        count = self.sector_count
        if len(corners) >= count:
            cuts = [corners[(k * len(corners)) // count].distance_m for k in range(1, count)]
        else:
            cuts = [length * k / count for k in range(1, count)]

        bounds = [0.0]
        for cut in cuts:
            if bounds[-1] < cut < length:
                bounds.append(cut)
        bounds.append(length)
        return [Sector(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1)]
