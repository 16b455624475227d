"""NDJSON: one JSON object per point with the lap metadata embedded."""

from __future__ import annotations

import os
from collections.abc import Sequence

import pydantic
from pydantic import BaseModel, Field

from racing_delta.codec.common import LapAccumulator
from racing_delta.errors import TelemetryIOError
from racing_delta.telemetry.models import Game, Lap, LapMeta, TelemetryPoint


class PointRecord(BaseModel):
    """Schema of one NDJSON line."""

    lap_id: str
    game: str
    car: str
    track: str
    lap_number: int
    lap_time_ms: int
    t_ms: float
    distance_m: float
    x: float
    y: float
    speed_kmh: float
    throttle: float = Field(ge=0.0, le=1.0)
    brake: float = Field(ge=0.0, le=1.0)
    steer: float = Field(ge=-1.0, le=1.0)
    gear: int
    rpm: float
    channels: dict[str, float] = Field(default_factory=dict)


def write_ndjson(laps: Sequence[Lap], path: str | os.PathLike[str]) -> int:
    """Write one line per point; return the number of lines."""
    lines = 0
    with open(path, "w", encoding="utf-8") as fh:
        for lap in laps:
            meta = {
                "lap_id": lap.id,
                "game": lap.meta.game.value,
                "car": lap.meta.car,
                "track": lap.meta.track,
                "lap_number": lap.lap_number,
                "lap_time_ms": lap.time_ms,
            }
            for p in lap.points:
                record = PointRecord(
                    **meta,
                    t_ms=p.t_ms,
                    distance_m=p.distance_m,
                    x=p.x,
                    y=p.y,
                    speed_kmh=p.speed_kmh,
                    throttle=p.throttle,
                    brake=p.brake,
                    steer=p.steer,
                    gear=p.gear,
                    rpm=p.rpm,
                    channels=dict(p.channels),
                )
                fh.write(record.model_dump_json())
                fh.write("\n")
                lines += 1
    return lines


def read_ndjson(path: str | os.PathLike[str]) -> list[Lap]:
    """Read and validate every line of *path*.  Blank lines are skipped.

    Raises:
        TelemetryIOError: If a line is not a valid :class:`PointRecord`.
    """
    acc = LapAccumulator(path)
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                rec = PointRecord.model_validate_json(line)
            except pydantic.ValidationError as exc:
                raise TelemetryIOError(path, f"line {line_no}: {exc}") from exc
            point = TelemetryPoint(
                t_ms=rec.t_ms,
                distance_m=rec.distance_m,
                x=rec.x,
                y=rec.y,
                speed_kmh=rec.speed_kmh,
                throttle=rec.throttle,
                brake=rec.brake,
                steer=rec.steer,
                gear=rec.gear,
                rpm=rec.rpm,
                channels=rec.channels,
            )
            acc.add(rec.lap_id, point, lambda: _lap_header(rec))
    return acc.finish()


def _lap_header(rec: PointRecord) -> tuple[LapMeta, int, int]:
    meta = LapMeta(game=Game.parse(rec.game), car=rec.car, track=rec.track)
    return meta, rec.lap_number, rec.lap_time_ms
