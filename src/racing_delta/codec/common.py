"""Helpers shared by the file formats."""

from __future__ import annotations

import os
from collections.abc import Callable, Hashable, Iterable, Sequence

from racing_delta.errors import TelemetryIOError, ValidationError
from racing_delta.telemetry.models import Lap, LapMeta, TelemetryPoint, new_lap_id

POINT_FIELDS = (
    "t_ms", "distance_m", "x", "y", "speed_kmh",
    "throttle", "brake", "steer", "gear", "rpm",
)
CHANNEL_PREFIX = "ch."


def channel_names(laps: Iterable[Lap]) -> list[str]:
    """Sorted union of the extra channel names used by *laps*."""
    names: set[str] = set()
    for lap in laps:
        for p in lap.points:
            names.update(p.channels)
    return sorted(names)


def format_float(value: float) -> str:
    return repr(float(value))


class LapAccumulator:
    """Groups consecutive rows into laps while a file is read.

    A new lap starts whenever the grouping key changes; its metadata, lap
    number and lap time are taken from the first row of the lap only.
    Imported laps get fresh ids so a file can be imported more than once.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = path
        self._laps: list[Lap] = []
        self._key: Hashable | None = None
        self._header: tuple[LapMeta, int, int] | None = None
        self._points: list[TelemetryPoint] = []

    def add(
        self,
        key: Hashable,
        point: TelemetryPoint,
        lap_header: Callable[[], tuple[LapMeta, int, int]],
    ) -> None:
        """Append *point* to the lap identified by *key*.

        *lap_header* returns ``(meta, lap_number, time_ms)`` and is only
        called when *key* opens a new lap.
        """
        if self._header is None or key != self._key:
            self._flush()
            self._key = key
            self._header = lap_header()
        self._points.append(point)

    def finish(self) -> list[Lap]:
        self._flush()
        return self._laps

    def _flush(self) -> None:
        if self._header is None or not self._points:
            return
        meta, lap_number, time_ms = self._header
        try:
            lap = Lap(
                id=new_lap_id(),
                meta=meta,
                lap_number=lap_number,
                time_ms=time_ms,
                points=tuple(self._points),
            )
        except ValidationError as exc:
            raise TelemetryIOError(self.path, str(exc)) from exc
        self._laps.append(lap)
        self._points = []


def require_columns(path: str | os.PathLike[str], header: Sequence[str], required: Sequence[str]) -> None:
    missing = [c for c in required if c not in header]
    if missing:
        raise TelemetryIOError(path, f"missing columns: {', '.join(missing)}")
