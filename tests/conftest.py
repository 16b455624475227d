"""Shared lap and point factories for the test suite."""

from __future__ import annotations

import math

from racing_delta.telemetry.models import Game, Lap, LapMeta, TelemetryPoint, new_lap_id


def make_point(
    t_ms: float = 0.0,
    distance_m: float = 0.0,
    x: float = 0.0,
    y: float = 0.0,
    speed_kmh: float = 100.0,
    throttle: float = 0.0,
    brake: float = 0.0,
    steer: float = 0.0,
    gear: int = 3,
    rpm: float = 6000.0,
    channels: dict | None = None,
) -> TelemetryPoint:
    return TelemetryPoint(
        t_ms=t_ms,
        distance_m=distance_m,
        x=x,
        y=y,
        speed_kmh=speed_kmh,
        throttle=throttle,
        brake=brake,
        steer=steer,
        gear=gear,
        rpm=rpm,
        channels=channels or {},
    )


def make_lap(
    points: list[TelemetryPoint],
    time_ms: int | None = None,
    lap_id: str | None = None,
    game: Game = Game.F1,
    car: str = "car",
    track: str = "track",
    lap_number: int = 1,
) -> Lap:
    if time_ms is None:
        time_ms = int(round(points[-1].t_ms - points[0].t_ms))
    return Lap(
        id=lap_id or new_lap_id(),
        meta=LapMeta(game=game, car=car, track=track),
        lap_number=lap_number,
        time_ms=time_ms,
        points=tuple(points),
    )


def straight_lap(
    length_m: float = 1000.0,
    n: int = 101,
    duration_ms: float = 100_000.0,
    **kwargs,
) -> Lap:
    """Lap along the X axis with evenly spaced samples and constant pace."""
    points = [
        make_point(
            t_ms=duration_ms * i / (n - 1),
            distance_m=length_m * i / (n - 1),
            x=length_m * i / (n - 1),
        )
        for i in range(n)
    ]
    return make_lap(points, time_ms=int(round(duration_ms)), **kwargs)


def square_lap(side_m: float = 200.0, spacing_m: float = 2.0, speed_kmh: float = 90.0, **kwargs) -> Lap:
    """Closed square circuit starting mid-way along the bottom side.

    Four 90-degree corners at distances ``side/2``, ``1.5 side``,
    ``2.5 side`` and ``3.5 side``.
    """
    vertices = [(side_m, 0.0), (side_m, side_m), (0.0, side_m), (0.0, 0.0), (side_m / 2, 0.0)]
    pts: list[tuple[float, float]] = [(side_m / 2, 0.0)]
    for vx, vy in vertices:
        px, py = pts[-1]
        seg = math.hypot(vx - px, vy - py)
        steps = int(round(seg / spacing_m))
        for k in range(1, steps + 1):
            pts.append((px + (vx - px) * k / steps, py + (vy - py) * k / steps))

    speed_ms = speed_kmh / 3.6
    points = []
    for i, (x, y) in enumerate(pts):
        d = i * spacing_m
        points.append(make_point(t_ms=d / speed_ms * 1000.0, distance_m=d, x=x, y=y, speed_kmh=speed_kmh))
    return make_lap(points, **kwargs)


def wavy_lap(length_m: float = 2000.0, spacing_m: float = 2.0, amplitude_m: float = 30.0) -> Lap:
    """Sinusoidal path with bends of varying sharpness."""
    points = []
    n = int(length_m / spacing_m) + 1
    for i in range(n):
        x = i * spacing_m
        wavelength = 150.0 + 100.0 * math.sin(x / 400.0)
        y = amplitude_m * math.sin(2 * math.pi * x / wavelength)
        points.append(make_point(t_ms=i * 50.0, distance_m=x, x=x, y=y))
    return make_lap(points)
