"""Track map: outline, corner detection and auto-sectors."""

from racing_delta.track.builder import TrackMapBuilder, curvature_profile, moving_average
from racing_delta.track.models import BBox, CornerLabel, Point2, Sector, TrackMap

__all__ = [
    "BBox",
    "CornerLabel",
    "Point2",
    "Sector",
    "TrackMap",
    "TrackMapBuilder",
    "curvature_profile",
    "moving_average",
]
