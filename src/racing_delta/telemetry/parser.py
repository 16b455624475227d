"""Point construction with range sanitizing shared by every connector."""

from __future__ import annotations

import math
from collections.abc import Mapping

from racing_delta.telemetry.models import TelemetryPoint


def sanitize(value: float, lo: float | None, hi: float | None) -> float:
    """Return value clamped to [lo, hi], with NaN/Inf replaced by lo (or 0)."""
    if not math.isfinite(value):
        value = lo if lo is not None else 0.0
    if lo is not None and value < lo:
        value = lo
    if hi is not None and value > hi:
        value = hi
    return value


def sanitize_int(value: int, lo: int | None, hi: int | None) -> int:
    if lo is not None and value < lo:
        value = lo
    if hi is not None and value > hi:
        value = hi
    return value


def make_point(
    *,
    t_ms: float,
    distance_m: float,
    x: float,
    y: float,
    speed_kmh: float,
    throttle: float,
    brake: float,
    steer: float,
    gear: int,
    rpm: float,
    channels: Mapping[str, float] | None = None,
) -> TelemetryPoint:
    """Build a :class:`TelemetryPoint` from raw decoded values.

    Pedals are clamped to [0, 1], steering to [-1, 1], speed and RPM to >= 0;
    non-finite numbers are replaced.  Non-finite extra channels are dropped.
    """
    extras: dict[str, float] = {}
    if channels:
        extras = {k: float(v) for k, v in channels.items() if math.isfinite(v)}
    return TelemetryPoint(
        t_ms=sanitize(float(t_ms), 0.0, None),
        distance_m=sanitize(float(distance_m), None, None),
        x=sanitize(float(x), None, None),
        y=sanitize(float(y), None, None),
        speed_kmh=sanitize(float(speed_kmh), 0.0, None),
        throttle=sanitize(float(throttle), 0.0, 1.0),
        brake=sanitize(float(brake), 0.0, 1.0),
        steer=sanitize(float(steer), -1.0, 1.0),
        gear=sanitize_int(int(gear), -1, None),
        rpm=sanitize(float(rpm), 0.0, None),
        channels=extras,
    )
