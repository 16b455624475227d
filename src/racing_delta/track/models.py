"""Track map data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Point2:
    """A polyline vertex in the world XY plane."""

    x: float
    y: float


@dataclass(frozen=True)
class BBox:
    """Axis-aligned bounding box of a lap's XY positions."""

    minx: float
    maxx: float
    miny: float
    maxy: float

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny


@dataclass(frozen=True)
class CornerLabel:
    """A detected corner, labelled at its apex."""

    index: int
    """Sequential corner number (1-based, ascending by distance)."""

    x: float
    y: float

    distance_m: float
    """Lap distance of the apex."""

    direction: str = ""
    """Turn direction: ``'L'`` (counterclockwise) or ``'R'`` (clockwise)."""


@dataclass(frozen=True)
class Sector:
    """Half-open arc ``[start_m, end_m)`` of the lap."""

    start_m: float
    end_m: float

    @property
    def length_m(self) -> float:
        return self.end_m - self.start_m

    def contains(self, distance_m: float) -> bool:
        return self.start_m <= distance_m < self.end_m


@dataclass
class TrackMap:
    """Shape, corners and sectors derived from one lap.

    Sectors are consecutive: each sector starts where the previous one ends,
    the first starts at 0 and the last ends at ``lap_length_m``.
    """

    lap_id: str
    lap_length_m: float
    bbox: BBox
    polyline: list[Point2] = field(default_factory=list)
    corners: list[CornerLabel] = field(default_factory=list)
    sectors: list[Sector] = field(default_factory=list)
