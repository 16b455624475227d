"""Rolling time delta of laps against a reference lap.

``delta_ms > 0`` means the lap is slower than the reference at that
distance; ``delta_ms < 0`` means faster.  Both laps are interpolated onto the
same distance grid, so differing sample rates are handled transparently.
"""

from __future__ import annotations

from collections.abc import Sequence

from racing_delta.analysis.models import DeltaSample
from racing_delta.analysis.resample import distance_grid, elapsed_getter, resample
from racing_delta.telemetry.models import Lap


def delta_series(lap: Lap, reference: Lap, grid: Sequence[float]) -> list[DeltaSample]:
    """Return ``lap_elapsed(d) - reference_elapsed(d)`` for each *grid* distance."""
    lap_t = resample(lap.points, grid, elapsed_getter(lap))
    ref_t = resample(reference.points, grid, elapsed_getter(reference))
    return [DeltaSample(distance_m=d, delta_ms=a - b) for d, a, b in zip(grid, lap_t, ref_t)]


def rolling_delta_vs_reference(
    reference: Lap,
    laps: Sequence[Lap],
    step_m: float = 1.0,
) -> dict[str, list[DeltaSample]]:
    """Delta ribbon of every non-reference lap, keyed by lap id.

    The grid spans the reference lap's length.
    """
    grid = distance_grid(reference.length_m, step_m)
    return {
        lap.id: delta_series(lap, reference, grid)
        for lap in laps
        if lap.id != reference.id
    }
