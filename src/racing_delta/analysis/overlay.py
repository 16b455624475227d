"""Channel overlay of several laps against lap distance."""

from __future__ import annotations

import math
from collections.abc import Sequence

from racing_delta.analysis.models import OverlayTable
from racing_delta.analysis.resample import channel_getter, resample
from racing_delta.telemetry.models import Lap


def overlay_speed_vs_distance(
    laps: Sequence[Lap],
    channels: Sequence[str] = ("speed_kmh",),
    step_m: float = 1.0,
) -> OverlayTable:
    """Resample *channels* of every lap onto a shared distance grid.

    The grid covers the longest lap: ``floor(max_len / step_m) + 1`` rows.
    Shorter laps hold their last sample beyond their own length.
    """
    if step_m <= 0:
        raise ValueError("step_m must be > 0")
    if not laps:
        return OverlayTable()
    max_len = max(lap.length_m for lap in laps)
    rows = int(math.floor(max_len / step_m)) + 1
    grid = [i * step_m for i in range(rows)]

    columns: dict[str, list[float]] = {}
    for channel in channels:
        getter = channel_getter(channel)
        for lap in laps:
            columns[f"{channel}_{lap.id}"] = resample(lap.points, grid, getter)
    return OverlayTable(distance_m=grid, columns=columns)
