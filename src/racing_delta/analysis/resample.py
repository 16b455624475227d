"""Distance-grid resampling shared by overlay, delta, sector and corner metrics."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import fields

from racing_delta.telemetry.models import Lap, TelemetryPoint

ValueFn = Callable[[TelemetryPoint], float]

_POINT_FIELDS = frozenset(f.name for f in fields(TelemetryPoint)) - {"channels"}


def channel_getter(name: str) -> ValueFn:
    """Return a function reading channel *name* from a point.

    Canonical fields are read as attributes, anything else from
    ``point.channels`` (NaN when absent).
    """
    if name in _POINT_FIELDS:
        return lambda p: float(getattr(p, name))
    return lambda p: float(p.channels.get(name, math.nan))


def elapsed_getter(lap: Lap) -> ValueFn:
    """Time since the lap's first sample, in milliseconds."""
    start = lap.start_t_ms
    return lambda p: p.t_ms - start


def distance_grid(length_m: float, step_m: float) -> list[float]:
    """``floor(length / step) + 1`` evenly spaced distances starting at 0."""
    if step_m <= 0:
        raise ValueError("step_m must be > 0")
    rows = int(math.floor(max(length_m, 0.0) / step_m)) + 1
    return [i * step_m for i in range(rows)]


def resample(
    points: Sequence[TelemetryPoint],
    grid: Sequence[float],
    value: ValueFn,
) -> list[float]:
    """Linear interpolation of *value* at each grid distance.

    *grid* must be non-decreasing.  A single cursor walks *points* forward,
    so the cost is linear in ``len(points) + len(grid)``.  Outside the lap's
    distance range the first/last sample is held.
    """
    out = [0.0] * len(grid)
    if not points:
        return out
    first, last = points[0], points[-1]
    v_first, v_last = value(first), value(last)
    j = 0
    for k, d in enumerate(grid):
        if d <= first.distance_m:
            out[k] = v_first
            continue
        if d >= last.distance_m:
            out[k] = v_last
            continue
        while points[j + 1].distance_m < d:
            j += 1
        p0, p1 = points[j], points[j + 1]
        span = p1.distance_m - p0.distance_m
        v0 = value(p0)
        if span < 1e-12:
            out[k] = v0
        else:
            t = (d - p0.distance_m) / span
            out[k] = v0 + t * (value(p1) - v0)
    return out


def value_at(points: Sequence[TelemetryPoint], distance_m: float, value: ValueFn) -> float:
    return resample(points, [distance_m], value)[0]
