"""LapBuilder — a connector's private in-progress lap buffer."""

from __future__ import annotations

import logging

from racing_delta.telemetry.models import Lap, LapMeta, TelemetryPoint, new_lap_id

_logger = logging.getLogger(__name__)


class LapBuilder:
    """Accumulates points of the current lap until a boundary commits them.

    The buffer is owned by exactly one connector.  :meth:`commit` freezes the
    points into an immutable :class:`Lap` and starts an empty buffer, so the
    committed lap can be handed off without sharing mutable state.
    """

    def __init__(self) -> None:
        self._points: list[TelemetryPoint] = []
        self.rejected = 0
        """Points dropped because they broke the monotonic time/distance order."""

    def __len__(self) -> int:
        return len(self._points)

    @property
    def first(self) -> TelemetryPoint | None:
        return self._points[0] if self._points else None

    @property
    def last(self) -> TelemetryPoint | None:
        return self._points[-1] if self._points else None

    def elapsed_ms(self) -> float:
        """Time spanned by the buffered points (0 when empty)."""
        if not self._points:
            return 0.0
        return self._points[-1].t_ms - self._points[0].t_ms

    def append(self, point: TelemetryPoint) -> bool:
        """Buffer *point*.

        Returns False (and drops the point) if it would make ``t_ms`` or
        ``distance_m`` go backwards within the lap.
        """
        last = self.last
        if last is not None and (point.t_ms < last.t_ms or point.distance_m < last.distance_m):
            self.rejected += 1
            return False
        self._points.append(point)
        return True

    def commit(self, meta: LapMeta, lap_number: int, time_ms: float | None = None) -> Lap | None:
        """Freeze the buffer into a :class:`Lap` and reset.

        Args:
            meta: Metadata for the finished lap.
            lap_number: The finished lap's number.
            time_ms: Simulator-reported lap time; falls back to the elapsed
                time of the buffered points when ``None`` or not positive.

        Returns:
            The committed lap, or ``None`` if nothing was buffered.
        """
        if not self._points:
            return None
        total = time_ms if time_ms is not None and time_ms > 0 else self.elapsed_ms()
        lap = Lap(
            id=new_lap_id(),
            meta=meta,
            lap_number=lap_number,
            time_ms=int(round(total)),
            points=tuple(self._points),
        )
        self._points = []
        _logger.info(
            "Lap committed: %s lap %d, %d points, %d ms",
            meta.game.value, lap_number, len(lap.points), lap.time_ms,
        )
        return lap

    def discard(self) -> None:
        """Drop the buffered points without committing."""
        if self._points:
            _logger.debug("Discarding %d buffered points", len(self._points))
        self._points = []
