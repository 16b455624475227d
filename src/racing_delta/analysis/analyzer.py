"""MultiLapAnalyzer — overlay, delta ribbon, summary and corner metrics in one pass."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from racing_delta.analysis.corners import per_corner_metrics
from racing_delta.analysis.delta import rolling_delta_vs_reference
from racing_delta.analysis.models import AnalysisResult
from racing_delta.analysis.overlay import overlay_speed_vs_distance
from racing_delta.analysis.summary import lap_summary
from racing_delta.config import EngineSettings
from racing_delta.errors import ValidationError
from racing_delta.telemetry.models import Lap
from racing_delta.track.builder import TrackMapBuilder

_logger = logging.getLogger(__name__)


class MultiLapAnalyzer:
    """Compare a selection of laps against a reference lap.

    The reference is the first lap of the selection unless *reference_id*
    names another lap of the selection.  Corners and sectors come from the
    reference lap's track map; every lap is measured at those corners.

    Args:
        grid_step_m: Distance grid resolution for overlay and delta.
        channels: Channels included in the overlay.
        corner_window_m: Width of the window centred on each apex.
        brake_on_threshold: Brake level that marks the brake point.
        throttle_on_threshold: Throttle level that marks throttle application.
        track_map_builder: Builder used for the reference lap's corners and
            sectors; a default :class:`TrackMapBuilder` when omitted.
    """

    def __init__(
        self,
        grid_step_m: float = 1.0,
        channels: Sequence[str] = ("speed_kmh",),
        corner_window_m: float = 100.0,
        brake_on_threshold: float = 0.2,
        throttle_on_threshold: float = 0.6,
        track_map_builder: TrackMapBuilder | None = None,
    ) -> None:
        if grid_step_m <= 0:
            raise ValueError("grid_step_m must be > 0")
        self.grid_step_m = grid_step_m
        self.channels = tuple(channels)
        self.corner_window_m = corner_window_m
        self.brake_on_threshold = brake_on_threshold
        self.throttle_on_threshold = throttle_on_threshold
        self.track_map_builder = track_map_builder or TrackMapBuilder()

    @classmethod
    def from_settings(cls, settings: EngineSettings, builder: TrackMapBuilder | None = None) -> MultiLapAnalyzer:
        return cls(
            grid_step_m=settings.grid_step_m,
            corner_window_m=settings.corner_window_m,
            brake_on_threshold=settings.brake_on_threshold,
            throttle_on_threshold=settings.throttle_on_threshold,
            track_map_builder=builder,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, laps: Sequence[Lap], reference_id: str | None = None) -> AnalysisResult:
        """Run the full comparison.

        Raises:
            ValidationError: If *laps* is empty, holds the same lap twice, or
                *reference_id* is not part of it.
        """
        if not laps:
            raise ValidationError("Lap selection is empty")
        ids = [lap.id for lap in laps]
        if len(set(ids)) != len(ids):
            raise ValidationError("Lap selection contains duplicates")
        reference = self.select_reference(laps, reference_id)

        track_map = self.track_map_builder.build(reference)
        sectors = track_map.sectors
        corners = {
            lap.id: per_corner_metrics(
                lap,
                track_map.corners,
                window_m=self.corner_window_m,
                brake_on_threshold=self.brake_on_threshold,
                throttle_on_threshold=self.throttle_on_threshold,
            )
            for lap in laps
        }
        _logger.debug(
            "Analysed %d laps against %s: %d corners, %d sectors",
            len(laps), reference.id, len(track_map.corners), len(sectors),
        )
        return AnalysisResult(
            reference_id=reference.id,
            lap_ids=ids,
            grid_step_m=self.grid_step_m,
            overlay=overlay_speed_vs_distance(laps, self.channels, self.grid_step_m),
            delta_ribbon=rolling_delta_vs_reference(reference, laps, self.grid_step_m),
            summary=lap_summary(laps, sectors),
            corners=corners,
            sectors=list(sectors),
        )

    @staticmethod
    def select_reference(laps: Sequence[Lap], reference_id: str | None = None) -> Lap:
        """Return the reference lap of *laps*.

        Raises:
            ValidationError: If *laps* is empty or *reference_id* is not in it.
        """
        if not laps:
            raise ValidationError("Lap selection is empty")
        if reference_id is None:
            return laps[0]
        for lap in laps:
            if lap.id == reference_id:
                return lap
        raise ValidationError(f"Reference lap {reference_id!r} is not in the selection")
