"""TelemetryEngine — the programmatic command surface.

Owns the lap store, the commit pump and every running connector.  A UI or
CLI layer drives the engine through these methods only; nothing here depends
on such a layer.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

import pydantic

from racing_delta.analysis.analyzer import MultiLapAnalyzer
from racing_delta.analysis.models import AnalysisResult
from racing_delta.codec import ExportKind, export_laps, import_laps
from racing_delta.config import EngineSettings, F1Config, GT7Config, LMUConfig
from racing_delta.connectors import create_connector
from racing_delta.connectors.base import Connector, ConnectorStats, ConnectorStatus, SourceKind
from racing_delta.errors import ValidationError
from racing_delta.telemetry.models import Lap
from racing_delta.telemetry.store import LapCommitPump, LapStore
from racing_delta.track.builder import TrackMapBuilder
from racing_delta.track.models import TrackMap

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectorHandle:
    """Opaque reference to a connector started by the engine."""

    id: str
    kind: SourceKind


class TelemetryEngine:
    """Ingestion, storage, analysis and file exchange behind one object.

    Parameters
    ----------
    settings:
        Tuning constants; defaults to :class:`EngineSettings` defaults.
    store:
        Lap store to use; a fresh empty one when omitted.
    """

    def __init__(self, settings: EngineSettings | None = None, store: LapStore | None = None) -> None:
        self.settings = settings or EngineSettings()
        self.store = store if store is not None else LapStore()
        self._pump = LapCommitPump(self.store)
        self._pump.start()
        self._connectors: dict[str, Connector] = {}
        self._lock = threading.Lock()
        self._track_builder = TrackMapBuilder(
            curvature_threshold=self.settings.curvature_threshold,
            smooth_window=self.settings.curvature_smooth_window,
            peak_half_window=self.settings.peak_half_window,
            min_corner_separation_m=self.settings.min_corner_separation_m,
            max_polyline_points=self.settings.max_polyline_points,
            sector_count=self.settings.sector_count,
            min_sector_lap_m=self.settings.corner_window_m,
        )
        self._analyzer = MultiLapAnalyzer.from_settings(self.settings, self._track_builder)

    # ------------------------------------------------------------------
    # Connectors
    # ------------------------------------------------------------------

    def start_f1(self, port: int = 20777, format_version: int = 2025, host: str = "0.0.0.0") -> ConnectorHandle:
        """Start an F1 UDP listener.

        Raises:
            ValidationError: Invalid port or format version.
            TransportError: The port cannot be bound.
        """
        config = self._config(F1Config, port=port, format_version=format_version, host=host)
        return self._start(SourceKind.F1, config)

    def start_gt7(self, console_ip: str, variant: str = "A", bind_port: int = 33740) -> ConnectorHandle:
        """Start a GT7 receiver and heartbeat towards *console_ip*.

        Raises:
            ValidationError: Invalid variant or port.
            TransportError: The port cannot be bound or the console is unreachable.
        """
        config = self._config(GT7Config, console_ip=console_ip, variant=variant, bind_port=bind_port)
        return self._start(SourceKind.GT7, config)

    def start_lmu(self, map_name: str | None = None) -> ConnectorHandle:
        """Start polling LMU shared memory.

        Raises:
            TransportError: The shared memory mapping is not present.
        """
        kwargs = {"map_name": map_name} if map_name is not None else {}
        return self._start(SourceKind.LMU, self._config(LMUConfig, **kwargs))

    def stop(self, handle: ConnectorHandle) -> None:
        """Stop one connector.  Stopping twice is harmless."""
        self._connector(handle).stop()

    def stop_all(self) -> None:
        """Stop every connector and release its transport."""
        with self._lock:
            connectors = list(self._connectors.values())
        for connector in connectors:
            connector.stop()
        _logger.info("Stopped %d connectors", len(connectors))

    def status(self, handle: ConnectorHandle) -> ConnectorStatus:
        return self._connector(handle).status

    def stats(self, handle: ConnectorHandle) -> ConnectorStats:
        return self._connector(handle).stats

    def bound_address(self, handle: ConnectorHandle) -> tuple[str, int] | None:
        """Local UDP address of a network connector, ``None`` otherwise."""
        return getattr(self._connector(handle), "bound_address", None)

    def connectors(self) -> list[ConnectorHandle]:
        with self._lock:
            return [ConnectorHandle(cid, c.kind) for cid, c in self._connectors.items()]

    # ------------------------------------------------------------------
    # Laps and analysis
    # ------------------------------------------------------------------

    def list_laps(self) -> list[Lap]:
        return self.store.list()

    def get_lap(self, lap_id: str) -> Lap:
        return self.store.get(lap_id)

    def analyze_laps(self, lap_ids: Sequence[str], reference_id: str | None = None) -> AnalysisResult:
        """Compare the laps named by *lap_ids*.

        Raises:
            ValidationError: Empty selection, unknown id, or a reference id
                outside the selection.
        """
        laps = self.store.get_many(list(lap_ids))
        return self._analyzer.analyze(laps, reference_id)

    def build_track_map(self, lap_id: str) -> TrackMap:
        return self._track_builder.build(self.store.get(lap_id))

    def cars_and_tracks(self) -> tuple[list[str], list[str]]:
        """Sorted distinct car and track names of the stored laps."""
        laps = self.store.list()
        cars = sorted({lap.meta.car for lap in laps})
        tracks = sorted({lap.meta.track for lap in laps})
        return cars, tracks

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def import_file(self, path: str | os.PathLike[str]) -> list[Lap]:
        """Import every lap in *path* into the store and return them."""
        laps = import_laps(path)
        for lap in laps:
            self.store.insert(lap)
        return laps

    def export_file(
        self,
        kind: ExportKind | str,
        path: str | os.PathLike[str],
        lap_ids: Sequence[str] | None = None,
    ) -> int:
        """Export the laps named by *lap_ids* (all stored laps when ``None``)."""
        laps = self.store.list() if lap_ids is None else self.store.get_many(list(lap_ids))
        return export_laps(kind, laps, path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Wait until every lap handed over by connectors is in the store."""
        self._pump.flush()

    def close(self) -> None:
        """Stop all connectors, drain pending laps and stop the pump."""
        self.stop_all()
        self._pump.stop()

    def __enter__(self) -> TelemetryEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _config(model: type[pydantic.BaseModel], **kwargs: object) -> pydantic.BaseModel:
        try:
            return model(**kwargs)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {model.__name__}: {exc}") from exc

    def _start(self, kind: SourceKind, config: pydantic.BaseModel) -> ConnectorHandle:
        connector = create_connector(kind, config, self._pump.submit, self.settings)
        connector.start()
        handle = ConnectorHandle(id=uuid.uuid4().hex, kind=kind)
        with self._lock:
            self._connectors[handle.id] = connector
        _logger.info("Started %s connector %s", kind.value, handle.id)
        return handle

    def _connector(self, handle: ConnectorHandle) -> Connector:
        with self._lock:
            connector = self._connectors.get(handle.id)
        if connector is None:
            raise ValidationError(f"Unknown connector handle: {handle.id!r}")
        return connector
