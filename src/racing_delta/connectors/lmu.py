"""LMU connector — polls the rFactor 2 engine's telemetry shared memory."""

from __future__ import annotations

import ctypes
import logging
import math
import struct
import sys
import threading
from collections.abc import Callable
from typing import Protocol

from racing_delta.config import EngineSettings, LMUConfig
from racing_delta.connectors.base import (
    ConnectorStats,
    ConnectorStatus,
    LapSink,
    SourceKind,
    WorkerThread,
)
from racing_delta.errors import DecodeError, TransportError
from racing_delta.telemetry.lap_builder import LapBuilder
from racing_delta.telemetry.models import Game, LapMeta
from racing_delta.telemetry.parser import make_point

_logger = logging.getLogger(__name__)

LAYOUT_VERSION = 1
_FILE_MAP_READ = 0x0004


# ---------------------------------------------------------------------------
# Shared memory layout
# ---------------------------------------------------------------------------


class Vec3(ctypes.Structure):
    _pack_ = 4
    _fields_ = [("x", ctypes.c_double), ("y", ctypes.c_double), ("z", ctypes.c_double)]


class LMUTelemetry(ctypes.Structure):
    """Player vehicle block of the telemetry mapping.

    The writer increments ``version_update_begin`` before and
    ``version_update_end`` after each update; a snapshot is consistent only
    when both are equal.
    """

    _pack_ = 4
    _fields_ = [
        ("version_update_begin", ctypes.c_uint32),
        ("version_update_end", ctypes.c_uint32),
        ("layout_version", ctypes.c_uint32),
        ("lap_number", ctypes.c_int32),
        ("gear", ctypes.c_int32),
        ("elapsed_time", ctypes.c_double),      # s, session time
        ("lap_start_et", ctypes.c_double),      # s
        ("last_lap_time", ctypes.c_double),     # s, <= 0 when none
        ("lap_dist", ctypes.c_double),          # m
        ("pos", Vec3),                          # world, y up
        ("local_vel", Vec3),                    # m/s
        ("engine_rpm", ctypes.c_double),
        ("throttle", ctypes.c_double),          # 0..1
        ("brake", ctypes.c_double),             # 0..1
        ("steering", ctypes.c_double),          # -1..1
        ("vehicle_name", ctypes.c_char * 64),
        ("track_name", ctypes.c_char * 64),
    ]


MAP_SIZE = ctypes.sizeof(LMUTelemetry)


# ---------------------------------------------------------------------------
# Low-level reader
# ---------------------------------------------------------------------------

_U32 = struct.Struct("<I")
_BEGIN_OFFSET = LMUTelemetry.version_update_begin.offset
_END_OFFSET = LMUTelemetry.version_update_end.offset


def copy_versioned(
    ptr: int,
    size: int,
    copy: Callable[[int, int], bytes] = ctypes.string_at,
) -> bytes:
    """Copy *size* bytes of a version-guarded block starting at *ptr*.

    ``version_update_end`` is read from live memory before the copy and
    ``version_update_begin`` after it, and both are stored in the returned
    snapshot.  Any update that overlaps the copy leaves begin ahead of end.
    """
    end = ctypes.c_uint32.from_address(ptr + _END_OFFSET).value
    data = bytearray(copy(ptr, size))
    begin = ctypes.c_uint32.from_address(ptr + _BEGIN_OFFSET).value
    _U32.pack_into(data, _BEGIN_OFFSET, begin)
    _U32.pack_into(data, _END_OFFSET, end)
    return bytes(data)


def _read_shared_memory(name: str, size: int) -> bytes | None:
    """Open a named mapping, copy *size* bytes, then close it.

    Returns ``None`` if the mapping does not exist (LMU not running) or when
    not on Windows.
    """
    if sys.platform != "win32":
        return None
    import ctypes.wintypes

    k32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    k32.MapViewOfFile.restype = ctypes.c_void_p
    k32.MapViewOfFile.argtypes = [
        ctypes.wintypes.HANDLE,
        ctypes.wintypes.DWORD,
        ctypes.wintypes.DWORD,
        ctypes.wintypes.DWORD,
        ctypes.c_size_t,
    ]
    k32.UnmapViewOfFile.argtypes = [ctypes.c_void_p]
    k32.UnmapViewOfFile.restype = ctypes.wintypes.BOOL

    handle = k32.OpenFileMappingW(_FILE_MAP_READ, False, name)
    if not handle:
        return None
    ptr = k32.MapViewOfFile(handle, _FILE_MAP_READ, 0, 0, size)
    k32.CloseHandle(handle)
    if not ptr:
        return None

    data = copy_versioned(ptr, size)
    k32.UnmapViewOfFile(ptr)
    return data


class SharedMemoryReader(Protocol):
    def read(self) -> bytes | None: ...


class LMUSharedMemory:
    """Copies the telemetry mapping on each :meth:`read`.

    No handle is held between reads.  Replace with any object exposing
    ``read() -> bytes | None`` for tests.
    """

    def __init__(self, map_name: str) -> None:
        self.map_name = map_name

    def read(self) -> bytes | None:
        return _read_shared_memory(self.map_name, MAP_SIZE)


def _decode_name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace").strip()


# ---------------------------------------------------------------------------
# Stream assembly
# ---------------------------------------------------------------------------


class LMUStreamAssembler:
    """Turns consecutive shared-memory snapshots into points and laps."""

    def __init__(self, sink: LapSink, stats: ConnectorStats | None = None) -> None:
        self._sink = sink
        self._stats = stats if stats is not None else ConnectorStats()
        self._builder = LapBuilder()
        self._last_version: int | None = None
        self._lap_number: int | None = None

    @staticmethod
    def parse(buf: bytes) -> LMUTelemetry:
        """Copy *buf* into an :class:`LMUTelemetry`.

        Raises:
            DecodeError: If the buffer is too small.
            TransportError: If the mapping uses another layout version.
        """
        if len(buf) < MAP_SIZE:
            raise DecodeError(f"LMU snapshot too short: {len(buf)} < {MAP_SIZE}")
        snap = LMUTelemetry.from_buffer_copy(buf[:MAP_SIZE])
        if snap.layout_version != LAYOUT_VERSION:
            raise TransportError(
                f"LMU layout version {snap.layout_version} != expected {LAYOUT_VERSION}"
            )
        return snap

    def process(self, buf: bytes) -> bool:
        """Apply one snapshot.

        Returns:
            True if a new point was consumed, False for a stale snapshot.

        Raises:
            DecodeError: Torn (mid-update) or truncated snapshot.
            TransportError: Layout version mismatch.
        """
        snap = self.parse(buf)
        if snap.version_update_begin != snap.version_update_end:
            raise DecodeError(
                f"LMU torn read ({snap.version_update_begin} != {snap.version_update_end})"
            )
        if snap.version_update_begin == self._last_version:
            return False
        self._last_version = snap.version_update_begin

        meta = LapMeta(
            game=Game.LMU,
            car=_decode_name(snap.vehicle_name) or "Unknown",
            track=_decode_name(snap.track_name) or "Unknown",
        )
        self._on_lap_number(snap, meta)

        vel = snap.local_vel
        point = make_point(
            t_ms=snap.elapsed_time * 1000.0,
            distance_m=snap.lap_dist,
            x=snap.pos.x,
            y=snap.pos.z,
            speed_kmh=math.sqrt(vel.x * vel.x + vel.y * vel.y + vel.z * vel.z) * 3.6,
            throttle=snap.throttle,
            brake=snap.brake,
            steer=snap.steering,
            gear=snap.gear,
            rpm=snap.engine_rpm,
            channels={"height": snap.pos.y, "lap_start_et": snap.lap_start_et},
        )
        if self._builder.append(point):
            self._stats.points += 1
        else:
            self._stats.dropped += 1
        return True

    def discard(self) -> None:
        self._builder.discard()

    def _on_lap_number(self, snap: LMUTelemetry, meta: LapMeta) -> None:
        previous = self._lap_number
        self._lap_number = snap.lap_number
        if previous is None or snap.lap_number == previous:
            return
        if snap.lap_number < previous:
            _logger.info("LMU lap number went backwards (%d -> %d)", previous, snap.lap_number)
            self._builder.discard()
            return
        lap = self._builder.commit(meta, previous, time_ms=snap.last_lap_time * 1000.0)
        if lap is not None:
            self._stats.laps += 1
            self._sink(lap)


# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------


class LMUConnector:
    """Polls LMU shared memory on a background thread.

    Parameters
    ----------
    config:
        Mapping name and optional poll interval override.
    sink:
        Receives committed laps.
    settings:
        Supplies the default poll interval.
    reader:
        Snapshot source; defaults to :class:`LMUSharedMemory`.
    """

    kind = SourceKind.LMU

    def __init__(
        self,
        config: LMUConfig,
        sink: LapSink,
        settings: EngineSettings | None = None,
        reader: SharedMemoryReader | None = None,
    ) -> None:
        settings = settings or EngineSettings()
        self.config = config
        self.poll_interval_s = config.poll_interval_s or settings.lmu_poll_interval_s
        self._reader = reader if reader is not None else LMUSharedMemory(config.map_name)
        self._stats = ConnectorStats()
        self._assembler = LMUStreamAssembler(sink, self._stats)
        self._worker = WorkerThread("LMUConnector", self._step, on_exit=self._on_exit)

    @property
    def status(self) -> ConnectorStatus:
        return self._worker.status

    @property
    def stats(self) -> ConnectorStats:
        return self._stats

    def start(self) -> None:
        """Check the mapping is present and start polling.

        Raises:
            TransportError: If the mapping is missing or has another layout.
        """
        if self._worker.is_alive():
            return
        buf = self._reader.read()
        try:
            if buf is None:
                raise TransportError(f"LMU shared memory {self.config.map_name!r} not found")
            LMUStreamAssembler.parse(buf)
        except (TransportError, DecodeError) as exc:
            self._worker.status = ConnectorStatus.UNAVAILABLE
            if isinstance(exc, TransportError):
                raise
            raise TransportError(str(exc)) from exc
        _logger.info("LMU connector polling %s every %.3f s", self.config.map_name, self.poll_interval_s)
        self._worker.start()

    def stop(self) -> None:
        """Stop polling.  Idempotent."""
        self._worker.stop()
        if self._worker.status == ConnectorStatus.RUNNING:
            self._worker.status = ConnectorStatus.STOPPED

    def _step(self, stop_event: threading.Event) -> None:
        buf = self._reader.read()
        if buf is None:
            raise TransportError(f"LMU shared memory {self.config.map_name!r} disappeared")
        if stop_event.is_set():
            return
        self._stats.packets += 1
        try:
            self._assembler.process(buf)
        except DecodeError as exc:
            self._stats.dropped += 1
            _logger.debug("LMU snapshot dropped: %s", exc)
        stop_event.wait(self.poll_interval_s)

    def _on_exit(self, status: ConnectorStatus) -> None:
        self._assembler.discard()
        _logger.info("LMU connector stopped (%s)", status.value)
