"""Canonical telemetry models shared by connectors, analysis and codecs."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from racing_delta.errors import ValidationError


class Game(str, Enum):
    """Source of a lap."""

    F1 = "F1"
    GT7 = "GT7"
    LMU = "LMU"
    IMPORTED = "Imported"

    @classmethod
    def parse(cls, value: str) -> Game:
        """Return the member whose value is *value*, or :attr:`IMPORTED`."""
        try:
            return cls(value)
        except ValueError:
            return cls.IMPORTED


@dataclass(frozen=True)
class TelemetryPoint:
    """One sampled instant of a lap.

    Within one lap ``t_ms`` and ``distance_m`` are both non-decreasing.
    """

    t_ms: float
    """Session-elapsed time in milliseconds."""

    distance_m: float
    """Cumulative lap distance in metres."""

    x: float
    """World-plane X position."""

    y: float
    """World-plane Y position (the simulator's horizontal Z axis)."""

    speed_kmh: float
    """Vehicle speed in km/h, >= 0."""

    throttle: float
    """Throttle pedal position [0.0, 1.0]."""

    brake: float
    """Brake pedal position [0.0, 1.0]."""

    steer: float
    """Steering input [-1.0, 1.0]. Positive = right."""

    gear: int
    """Gear: -1=reverse, 0=neutral, 1..n=forward."""

    rpm: float
    """Engine RPM, >= 0."""

    channels: Mapping[str, float] = field(default_factory=dict)
    """Game-specific extra channels keyed by name."""


@dataclass(frozen=True)
class LapMeta:
    """Descriptive metadata of a lap."""

    game: Game
    car: str
    track: str


def new_lap_id() -> str:
    """Return a fresh opaque lap identifier."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Lap:
    """A completed, immutable lap.

    Once committed a lap is owned by the :class:`~racing_delta.telemetry.store.LapStore`;
    everything else borrows it by reference and never copies ``points``.

    Raises:
        ValidationError: If ``points`` is empty or not ordered by ``t_ms`` /
            ``distance_m``.
    """

    id: str
    meta: LapMeta
    lap_number: int
    time_ms: int
    """Total lap time in milliseconds."""

    points: tuple[TelemetryPoint, ...]

    def __post_init__(self) -> None:
        if not self.points:
            raise ValidationError(f"Lap {self.id!r} has no points")
        prev = self.points[0]
        for i in range(1, len(self.points)):
            p = self.points[i]
            if p.t_ms < prev.t_ms or p.distance_m < prev.distance_m:
                raise ValidationError(
                    f"Lap {self.id!r}: point {i} goes backwards "
                    f"(t_ms {prev.t_ms} -> {p.t_ms}, distance {prev.distance_m} -> {p.distance_m})"
                )
            prev = p

    @property
    def length_m(self) -> float:
        """Lap length in metres (last sample distance, floored at 0)."""
        return max(self.points[-1].distance_m, 0.0)

    @property
    def start_t_ms(self) -> float:
        return self.points[0].t_ms

    @property
    def elapsed_ms(self) -> float:
        """Time spanned by the recorded points."""
        return self.points[-1].t_ms - self.points[0].t_ms
