"""MoTeC i2 compatible CSV.

Layout: a quoted key/value header block, a blank line, the channel-name row,
the units row, a blank line, then one data row per sample.  Pedals are
written in percent as i2 expects.  Track, car and game are appended as text
columns so files holding several laps can be read back.
"""

from __future__ import annotations

import csv
import os
from collections.abc import Sequence
from datetime import datetime

from racing_delta.codec.common import LapAccumulator, channel_names, format_float
from racing_delta.errors import TelemetryIOError
from racing_delta.telemetry.models import Game, Lap, LapMeta, TelemetryPoint

FORMAT_TAG = "MoTeC CSV File"
DEVICE = "racing_delta"

CHANNELS = (
    "Time", "Distance", "PosX", "PosY", "Speed", "Throttle Pos", "Brake Pos",
    "Steering", "Gear", "RPM", "Lap Number", "Lap Time",
)
UNITS = ("s", "m", "m", "m", "km/h", "%", "%", "ratio", "", "rpm", "", "s")
TEXT_COLUMNS = ("Track", "Car", "Game")


def is_motec_csv(path: str | os.PathLike[str]) -> bool:
    """True if the first row of *path* is the ``"Format","MoTeC CSV File"`` tag."""
    with open(path, newline="", encoding="utf-8") as fh:
        first = next(csv.reader(fh), [])
    return first[:2] == ["Format", FORMAT_TAG]


def _sample_rate(laps: Sequence[Lap]) -> float:
    samples = sum(len(lap.points) - 1 for lap in laps)
    elapsed_s = sum(lap.elapsed_ms for lap in laps) / 1000.0
    return samples / elapsed_s if elapsed_s > 0 else 0.0


def write_motec(laps: Sequence[Lap], path: str | os.PathLike[str]) -> int:
    """Write *laps* as MoTeC CSV; return the number of data rows."""
    extras = channel_names(laps)
    first = laps[0] if laps else None
    now = datetime.now()
    duration_s = 0.0
    if laps:
        duration_s = (
            max(lap.points[-1].t_ms for lap in laps) - min(lap.start_t_ms for lap in laps)
        ) / 1000.0

    rows = 0
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh, quoting=csv.QUOTE_ALL)
        writer.writerow(["Format", FORMAT_TAG])
        writer.writerow(["Venue", first.meta.track if first else ""])
        writer.writerow(["Vehicle", first.meta.car if first else ""])
        writer.writerow(["Device", DEVICE])
        writer.writerow(["Comment", first.meta.game.value if first else ""])
        writer.writerow(["Log Date", now.strftime("%d/%m/%Y")])
        writer.writerow(["Log Time", now.strftime("%H:%M:%S")])
        writer.writerow(["Sample Rate", format_float(_sample_rate(laps))])
        writer.writerow(["Duration", format_float(duration_s)])
        writer.writerow([])
        writer.writerow(list(CHANNELS) + extras + list(TEXT_COLUMNS))
        writer.writerow(list(UNITS) + [""] * len(extras) + [""] * len(TEXT_COLUMNS))
        writer.writerow([])
        for lap in laps:
            lap_cells = [str(lap.lap_number), format_float(lap.time_ms / 1000.0)]
            text_cells = [lap.meta.track, lap.meta.car, lap.meta.game.value]
            for p in lap.points:
                writer.writerow(
                    [
                        format_float(p.t_ms / 1000.0),
                        format_float(p.distance_m),
                        format_float(p.x),
                        format_float(p.y),
                        format_float(p.speed_kmh),
                        format_float(p.throttle * 100.0),
                        format_float(p.brake * 100.0),
                        format_float(p.steer),
                        str(p.gear),
                        format_float(p.rpm),
                    ]
                    + lap_cells
                    + [format_float(p.channels[n]) if n in p.channels else "" for n in extras]
                    + text_cells
                )
                rows += 1
    return rows


def read_motec(path: str | os.PathLike[str]) -> list[Lap]:
    """Read a MoTeC CSV written by :func:`write_motec`.

    Header values are informational; per-row text columns carry the lap
    metadata when present, otherwise ``Venue`` / ``Vehicle`` are used.

    Raises:
        TelemetryIOError: On a malformed header or data row.
    """
    with open(path, newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))

    header: dict[str, str] = {}
    i = 0
    while i < len(rows) and rows[i]:
        if len(rows[i]) >= 2:
            header[rows[i][0]] = rows[i][1]
        i += 1
    if header.get("Format") != FORMAT_TAG:
        raise TelemetryIOError(path, "not a MoTeC CSV file")
    while i < len(rows) and not rows[i]:
        i += 1
    if i + 1 >= len(rows):
        raise TelemetryIOError(path, "missing channel name / unit rows")
    names = rows[i]
    if tuple(names[: len(CHANNELS)]) != CHANNELS:
        raise TelemetryIOError(path, f"unexpected channel row: {names[:len(CHANNELS)]}")
    i += 2  # names + units

    text_idx = {c: names.index(c) for c in TEXT_COLUMNS if c in names}
    extra_end = min(text_idx.values()) if text_idx else len(names)
    extras = list(enumerate(names[len(CHANNELS):extra_end], start=len(CHANNELS)))

    acc = LapAccumulator(path)
    segment = 0
    prev: TelemetryPoint | None = None
    prev_key: tuple | None = None
    for row_no in range(i, len(rows)):
        row = rows[row_no]
        if not row:
            continue
        try:
            track = row[text_idx["Track"]] if "Track" in text_idx else header.get("Venue", "")
            car = row[text_idx["Car"]] if "Car" in text_idx else header.get("Vehicle", "")
            game = row[text_idx["Game"]] if "Game" in text_idx else header.get("Comment", "")
            point = TelemetryPoint(
                t_ms=float(row[0]) * 1000.0,
                distance_m=float(row[1]),
                x=float(row[2]),
                y=float(row[3]),
                speed_kmh=float(row[4]),
                throttle=float(row[5]) / 100.0,
                brake=float(row[6]) / 100.0,
                steer=float(row[7]),
                gear=int(float(row[8])),
                rpm=float(row[9]),
                channels={name: float(row[j]) for j, name in extras if j < len(row) and row[j]},
            )
            lap_number = int(float(row[10]))
            time_ms = int(round(float(row[11]) * 1000.0))
        except (IndexError, OverflowError, ValueError) as exc:
            raise TelemetryIOError(path, f"row {row_no + 1}: {exc}") from exc

        key = (lap_number, time_ms, track, car, game)
        if prev is not None and key == prev_key and (
            point.t_ms < prev.t_ms or point.distance_m < prev.distance_m
        ):
            segment += 1
        acc.add(
            key + (segment,),
            point,
            lambda: (LapMeta(game=Game.parse(game), car=car, track=track), lap_number, time_ms),
        )
        prev, prev_key = point, key
    return acc.finish()
