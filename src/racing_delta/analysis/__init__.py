"""Multi-lap comparison: overlay, delta ribbon, summary and corner metrics."""

from racing_delta.analysis.analyzer import MultiLapAnalyzer
from racing_delta.analysis.corners import per_corner_metrics
from racing_delta.analysis.delta import delta_series, rolling_delta_vs_reference
from racing_delta.analysis.models import (
    AnalysisResult,
    CornerMetrics,
    DeltaSample,
    LapSummary,
    OverlayTable,
)
from racing_delta.analysis.overlay import overlay_speed_vs_distance
from racing_delta.analysis.summary import lap_summary, sector_times

__all__ = [
    "AnalysisResult",
    "CornerMetrics",
    "DeltaSample",
    "LapSummary",
    "MultiLapAnalyzer",
    "OverlayTable",
    "delta_series",
    "lap_summary",
    "overlay_speed_vs_distance",
    "per_corner_metrics",
    "rolling_delta_vs_reference",
    "sector_times",
]
