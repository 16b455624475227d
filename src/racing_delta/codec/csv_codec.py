"""Flat CSV: one row per point, lap metadata repeated on every row.

Column order is fixed::

    lap_id, game, car, track, lap_number, lap_time_ms,
    t_ms, distance_m, x, y, speed_kmh, throttle, brake, steer, gear, rpm,
    ch.<name>...   (sorted union of extra channels, empty when absent)
"""

from __future__ import annotations

import csv
import os
from collections.abc import Sequence

from racing_delta.codec.common import (
    CHANNEL_PREFIX,
    POINT_FIELDS,
    LapAccumulator,
    channel_names,
    format_float,
    require_columns,
)
from racing_delta.errors import TelemetryIOError
from racing_delta.telemetry.models import Game, Lap, LapMeta, TelemetryPoint

META_COLUMNS = ("lap_id", "game", "car", "track", "lap_number", "lap_time_ms")
COLUMNS = META_COLUMNS + POINT_FIELDS


def write_csv(laps: Sequence[Lap], path: str | os.PathLike[str]) -> int:
    """Write *laps* to *path*; return the number of data rows."""
    extras = channel_names(laps)
    rows = 0
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(list(COLUMNS) + [CHANNEL_PREFIX + name for name in extras])
        for lap in laps:
            meta_cells = [
                lap.id,
                lap.meta.game.value,
                lap.meta.car,
                lap.meta.track,
                str(lap.lap_number),
                str(lap.time_ms),
            ]
            for p in lap.points:
                writer.writerow(
                    meta_cells
                    + [
                        format_float(p.t_ms),
                        format_float(p.distance_m),
                        format_float(p.x),
                        format_float(p.y),
                        format_float(p.speed_kmh),
                        format_float(p.throttle),
                        format_float(p.brake),
                        format_float(p.steer),
                        str(p.gear),
                        format_float(p.rpm),
                    ]
                    + [format_float(p.channels[n]) if n in p.channels else "" for n in extras]
                )
                rows += 1
    return rows


def read_csv(path: str | os.PathLike[str]) -> list[Lap]:
    """Read laps written by :func:`write_csv`.

    Raises:
        TelemetryIOError: On a missing column or an unparsable cell.
    """
    acc = LapAccumulator(path)
    with open(path, newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        header = reader.fieldnames or []
        require_columns(path, header, COLUMNS)
        extras = [c for c in header if c.startswith(CHANNEL_PREFIX)]
        for row in reader:
            try:
                point = TelemetryPoint(
                    t_ms=float(row["t_ms"]),
                    distance_m=float(row["distance_m"]),
                    x=float(row["x"]),
                    y=float(row["y"]),
                    speed_kmh=float(row["speed_kmh"]),
                    throttle=float(row["throttle"]),
                    brake=float(row["brake"]),
                    steer=float(row["steer"]),
                    gear=int(row["gear"]),
                    rpm=float(row["rpm"]),
                    channels={
                        c[len(CHANNEL_PREFIX):]: float(row[c]) for c in extras if row.get(c)
                    },
                )
                acc.add(row["lap_id"], point, lambda: _lap_header(row))
            except (TypeError, ValueError) as exc:
                raise TelemetryIOError(path, f"line {reader.line_num}: {exc}") from exc
    return acc.finish()


def _lap_header(row: dict[str, str]) -> tuple[LapMeta, int, int]:
    meta = LapMeta(game=Game.parse(row["game"]), car=row["car"], track=row["track"])
    return meta, int(row["lap_number"]), int(row["lap_time_ms"])
