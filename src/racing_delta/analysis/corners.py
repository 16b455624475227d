"""Per-corner driving metrics: minimum speed, entry/exit speed, pedal points."""

from __future__ import annotations

from collections.abc import Sequence

from racing_delta.analysis.models import CornerMetrics
from racing_delta.analysis.resample import channel_getter, value_at
from racing_delta.telemetry.models import Lap
from racing_delta.track.models import CornerLabel

_speed = channel_getter("speed_kmh")


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def per_corner_metrics(
    lap: Lap,
    corners: Sequence[CornerLabel],
    window_m: float = 100.0,
    brake_on_threshold: float = 0.2,
    throttle_on_threshold: float = 0.6,
) -> list[CornerMetrics]:
    """Measure *lap* at each of *corners*.

    Each corner is examined over ``[apex - window_m/2, apex + window_m/2]``.
    Entry speed is the mean over the pre-apex half, exit speed over the
    post-apex half; an empty half falls back to the speed interpolated at the
    window boundary.  The brake point is the first pre-apex sample with brake
    at or above *brake_on_threshold*; the throttle-on point is the first
    sample at or after the apex with throttle at or above
    *throttle_on_threshold*.
    """
    points = lap.points
    half = window_m / 2.0
    result: list[CornerMetrics] = []
    for corner in corners:
        apex = corner.distance_m
        start, end = apex - half, apex + half
        window = [p for p in points if start <= p.distance_m <= end]
        entry = [p for p in window if p.distance_m < apex]
        exit_ = [p for p in window if p.distance_m >= apex]

        min_speed = (
            min(p.speed_kmh for p in window) if window else value_at(points, apex, _speed)
        )
        entry_speed = (
            _mean([p.speed_kmh for p in entry]) if entry else value_at(points, start, _speed)
        )
        exit_speed = (
            _mean([p.speed_kmh for p in exit_]) if exit_ else value_at(points, end, _speed)
        )
        brake_point = next(
            (p.distance_m for p in entry if p.brake >= brake_on_threshold), None
        )
        throttle_on = next(
            (p.distance_m for p in exit_ if p.throttle >= throttle_on_threshold), None
        )
        result.append(CornerMetrics(
            index=corner.index,
            x=corner.x,
            y=corner.y,
            apex_m=apex,
            start_m=start,
            end_m=end,
            min_speed=min_speed,
            entry_speed=entry_speed,
            exit_speed=exit_speed,
            brake_point_m=brake_point,
            throttle_on_m=throttle_on,
        ))
    return result
