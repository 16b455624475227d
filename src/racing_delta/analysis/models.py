"""Multi-lap analysis result structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from racing_delta.track.models import Sector


@dataclass
class OverlayTable:
    """Channels of several laps resampled onto one distance grid.

    Columnar: ``distance_m`` holds the grid and every entry of ``columns``
    (keyed ``"{channel}_{lap_id}"``) has the same length.
    """

    distance_m: list[float] = field(default_factory=list)
    columns: dict[str, list[float]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.distance_m)

    def column(self, channel: str, lap_id: str) -> list[float]:
        return self.columns[f"{channel}_{lap_id}"]


@dataclass(frozen=True)
class DeltaSample:
    distance_m: float
    delta_ms: float
    """Lap elapsed minus reference elapsed at ``distance_m``; positive = slower."""


@dataclass
class LapSummary:
    """Lap-time statistics over a selection of laps."""

    best_ms: int
    worst_ms: int
    avg_ms: float
    consistency_s: float
    """Mean over sectors of the standard deviation of sector times, seconds."""
    lap_count: int
    sector_times_ms: dict[str, list[float]] = field(default_factory=dict)
    """Per lap id, the time spent in each reference sector."""


@dataclass
class CornerMetrics:
    """How one lap drove one reference corner.

    Distances are lap metres.  ``brake_point_m`` / ``throttle_on_m`` are
    ``None`` when the pedal never crossed its threshold inside the window.
    """

    index: int
    x: float
    y: float
    apex_m: float
    start_m: float
    end_m: float
    min_speed: float
    entry_speed: float
    exit_speed: float
    brake_point_m: float | None = None
    throttle_on_m: float | None = None


@dataclass
class AnalysisResult:
    """Everything derived from one multi-lap analysis request.

    Holds lap ids only, never the laps themselves.
    """

    reference_id: str
    lap_ids: list[str]
    grid_step_m: float
    overlay: OverlayTable
    delta_ribbon: dict[str, list[DeltaSample]]
    summary: LapSummary
    corners: dict[str, list[CornerMetrics]]
    sectors: list[Sector]

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready representation."""
        return asdict(self)
