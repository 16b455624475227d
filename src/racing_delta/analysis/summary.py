"""Lap-time summary and sector consistency."""

from __future__ import annotations

import statistics
from collections.abc import Sequence

from racing_delta.analysis.models import LapSummary
from racing_delta.analysis.resample import elapsed_getter, resample
from racing_delta.errors import ValidationError
from racing_delta.telemetry.models import Lap
from racing_delta.track.models import Sector


def sector_times(lap: Lap, sectors: Sequence[Sector]) -> list[float]:
    """Milliseconds *lap* spent in each sector (interpolated at the boundaries)."""
    if not sectors:
        return []
    bounds = [s.start_m for s in sectors] + [sectors[-1].end_m]
    elapsed = resample(lap.points, bounds, elapsed_getter(lap))
    return [elapsed[i + 1] - elapsed[i] for i in range(len(sectors))]


def lap_summary(laps: Sequence[Lap], sectors: Sequence[Sector]) -> LapSummary:
    """Best / worst / average lap time and sector consistency.

    ``consistency_s`` is the mean, over *sectors*, of the population standard
    deviation of that sector's time across *laps*, in seconds.  It is 0.0
    for a single lap or when there are no sectors.

    Raises:
        ValidationError: If *laps* is empty.
    """
    if not laps:
        raise ValidationError("Cannot summarise an empty lap selection")
    times = [lap.time_ms for lap in laps]
    per_lap = {lap.id: sector_times(lap, sectors) for lap in laps}

    consistency = 0.0
    if len(laps) > 1 and sectors:
        spreads = [
            statistics.pstdev([per_lap[lap.id][i] / 1000.0 for lap in laps])
            for i in range(len(sectors))
        ]
        consistency = sum(spreads) / len(spreads)

    return LapSummary(
        best_ms=min(times),
        worst_ms=max(times),
        avg_ms=sum(times) / len(times),
        consistency_s=consistency,
        lap_count=len(laps),
        sector_times_ms=per_lap,
    )
