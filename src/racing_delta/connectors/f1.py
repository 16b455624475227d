"""F1 (EA/Codemasters) UDP telemetry connector — formats 2024 and 2025.

The game broadcasts fixed-size little-endian packets.  Every packet starts
with a 29-byte header carrying the packet id, session UID and the player's
car index; the body holds one record per car (22 cars).  Only four packet
kinds are consumed:

  ====  =============  =============================================
  id    kind           used fields
  ====  =============  =============================================
  0     motion         world position X/Z, yaw, lateral/longitudinal g
  1     session        track id, track length
  2     lap data       lap distance, current lap number, lap times
  6     car telemetry  speed, throttle, steer, brake, gear, rpm
  ====  =============  =============================================

Packets are demultiplexed per session UID; one canonical point is emitted per
car-telemetry packet, merged with the latest motion and lap data of that
session.  A change of the lap-number field commits the previous lap.
"""

from __future__ import annotations

import logging
import socket
import struct
import threading
from dataclasses import dataclass, field

from racing_delta.config import EngineSettings, F1Config
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

PACKET_MOTION = 0
PACKET_SESSION = 1
PACKET_LAP_DATA = 2
PACKET_CAR_TELEMETRY = 6

_RECV_BUFSIZE = 4096
_SOCKET_TIMEOUT_S = 0.2
_NO_PLAYER = 255  # spectator / no player car

# trackId → name, as listed in the game's UDP documentation
TRACK_NAMES: dict[int, str] = {
    0: "Melbourne", 1: "Paul Ricard", 2: "Shanghai", 3: "Sakhir (Bahrain)",
    4: "Catalunya", 5: "Monaco", 6: "Montreal", 7: "Silverstone",
    8: "Hockenheim", 9: "Hungaroring", 10: "Spa", 11: "Monza",
    12: "Singapore", 13: "Suzuka", 14: "Abu Dhabi", 15: "Texas",
    16: "Brazil", 17: "Austria", 18: "Sochi", 19: "Mexico",
    20: "Baku (Azerbaijan)", 21: "Sakhir Short", 22: "Silverstone Short",
    23: "Texas Short", 24: "Suzuka Short", 25: "Hanoi", 26: "Zandvoort",
    27: "Imola", 28: "Portimao", 29: "Jeddah", 30: "Miami",
    31: "Las Vegas", 32: "Losail",
}


# ---------------------------------------------------------------------------
# Packet layouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class F1PacketLayout:
    """Struct layouts of one UDP format version."""

    header: struct.Struct
    motion_car: struct.Struct
    lap_data_car: struct.Struct
    car_telemetry_car: struct.Struct
    session_prefix: struct.Struct
    num_cars: int = 22


_HEADER = struct.Struct("<HBBBBBQfIIBB")
_MOTION_CAR = struct.Struct("<ffffffhhhhhhffffff")
_LAP_DATA_CAR = struct.Struct("<IIHBHBHBHBfff" + "B" * 15 + "HHBfB")  # 57 bytes
_CAR_TELEMETRY_CAR = struct.Struct("<HfffBbHBBHHHHHBBBBBBBBHffffBBBB")
_SESSION_PREFIX = struct.Struct("<BbbBHBb")

LAYOUTS: dict[int, F1PacketLayout] = {
    2024: F1PacketLayout(
        header=_HEADER,
        motion_car=_MOTION_CAR,
        lap_data_car=_LAP_DATA_CAR,
        car_telemetry_car=_CAR_TELEMETRY_CAR,
        session_prefix=_SESSION_PREFIX,
    ),
    2025: F1PacketLayout(
        header=_HEADER,
        motion_car=_MOTION_CAR,
        lap_data_car=_LAP_DATA_CAR,
        car_telemetry_car=_CAR_TELEMETRY_CAR,
        session_prefix=_SESSION_PREFIX,
    ),
}


# ---------------------------------------------------------------------------
# Decoded packets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class F1Header:
    packet_format: int
    packet_id: int
    session_uid: int
    session_time: float
    """Session timestamp in seconds."""
    frame: int
    player_car_index: int


@dataclass(frozen=True)
class MotionData:
    x: float
    y: float
    z: float
    yaw: float
    g_lat: float
    g_lon: float


@dataclass(frozen=True)
class SessionData:
    track_id: int
    track_length_m: int


@dataclass(frozen=True)
class LapData:
    last_lap_time_ms: int
    current_lap_time_ms: int
    lap_distance_m: float
    lap_number: int


@dataclass(frozen=True)
class CarTelemetryData:
    speed_kmh: float
    throttle: float
    steer: float
    brake: float
    gear: int
    rpm: float


F1Payload = MotionData | SessionData | LapData | CarTelemetryData


class F1PacketDecoder:
    """Decodes raw datagrams of one format version.

    Args:
        format_version: ``2024`` or ``2025``; selects the struct layouts.

    Raises:
        ValueError: If *format_version* is not supported.
    """

    def __init__(self, format_version: int) -> None:
        if format_version not in LAYOUTS:
            raise ValueError(f"Unsupported F1 format version: {format_version}")
        self.format_version = format_version
        self._layout = LAYOUTS[format_version]

    def decode(self, data: bytes) -> tuple[F1Header, F1Payload | None]:
        """Return the header and the player's payload for *data*.

        The payload is ``None`` for packet kinds this connector does not use.

        Raises:
            DecodeError: Truncated packet, wrong format version, no player
                car, or a body too short for the player's record.
        """
        layout = self._layout
        if len(data) < layout.header.size:
            raise DecodeError(f"Packet too short for header: {len(data)} bytes")
        (
            packet_format, _year, _major, _minor, _version, packet_id,
            session_uid, session_time, frame, _overall_frame,
            player_idx, _secondary_idx,
        ) = layout.header.unpack_from(data, 0)
        if packet_format != self.format_version:
            raise DecodeError(
                f"Packet format {packet_format} does not match configured {self.format_version}"
            )
        header = F1Header(
            packet_format=packet_format,
            packet_id=packet_id,
            session_uid=session_uid,
            session_time=session_time,
            frame=frame,
            player_car_index=player_idx,
        )

        if packet_id == PACKET_SESSION:
            raw = self._unpack_at(layout.session_prefix, data, layout.header.size)
            return header, SessionData(track_id=raw[6], track_length_m=raw[4])

        if packet_id not in (PACKET_MOTION, PACKET_LAP_DATA, PACKET_CAR_TELEMETRY):
            return header, None

        if player_idx == _NO_PLAYER or player_idx >= layout.num_cars:
            raise DecodeError(f"No player car in packet (index {player_idx})")

        if packet_id == PACKET_MOTION:
            rec = layout.motion_car
            raw = self._unpack_at(rec, data, layout.header.size + player_idx * rec.size)
            return header, MotionData(
                x=raw[0], y=raw[1], z=raw[2], yaw=raw[15], g_lat=raw[12], g_lon=raw[13],
            )

        if packet_id == PACKET_LAP_DATA:
            rec = layout.lap_data_car
            raw = self._unpack_at(rec, data, layout.header.size + player_idx * rec.size)
            return header, LapData(
                last_lap_time_ms=raw[0],
                current_lap_time_ms=raw[1],
                lap_distance_m=raw[10],
                lap_number=raw[14],
            )

        rec = layout.car_telemetry_car
        raw = self._unpack_at(rec, data, layout.header.size + player_idx * rec.size)
        return header, CarTelemetryData(
            speed_kmh=float(raw[0]),
            throttle=raw[1],
            steer=raw[2],
            brake=raw[3],
            gear=raw[5],
            rpm=float(raw[6]),
        )

    @staticmethod
    def _unpack_at(rec: struct.Struct, data: bytes, offset: int) -> tuple:
        if len(data) < offset + rec.size:
            raise DecodeError(
                f"Packet truncated: need {offset + rec.size} bytes, got {len(data)}"
            )
        return rec.unpack_from(data, offset)


# ---------------------------------------------------------------------------
# Per-session stream assembly
# ---------------------------------------------------------------------------


@dataclass
class _SessionState:
    builder: LapBuilder = field(default_factory=LapBuilder)
    motion: MotionData | None = None
    lap: LapData | None = None
    track: str = "Unknown"
    track_length_m: int = 0
    player_index: int = 0
    lap_number: int | None = None


class F1StreamAssembler:
    """Turns decoded F1 packets into canonical points and committed laps.

    Parameters
    ----------
    format_version:
        UDP format to decode.
    sink:
        Receives each committed :class:`~racing_delta.telemetry.models.Lap`.
    stats:
        Counters updated as points and laps are produced.
    """

    def __init__(self, format_version: int, sink: LapSink, stats: ConnectorStats | None = None) -> None:
        self._decoder = F1PacketDecoder(format_version)
        self._sink = sink
        self._stats = stats if stats is not None else ConnectorStats()
        self._sessions: dict[int, _SessionState] = {}

    @property
    def sessions(self) -> list[int]:
        return list(self._sessions)

    def process(self, data: bytes) -> None:
        """Decode and apply one datagram.

        Raises:
            DecodeError: If the datagram is malformed (nothing is applied).
        """
        header, payload = self._decoder.decode(data)
        if payload is None:
            return
        state = self._sessions.get(header.session_uid)
        if state is None:
            state = self._sessions[header.session_uid] = _SessionState()
        state.player_index = header.player_car_index

        if isinstance(payload, MotionData):
            state.motion = payload
        elif isinstance(payload, SessionData):
            state.track = TRACK_NAMES.get(payload.track_id, "Unknown")
            state.track_length_m = payload.track_length_m
        elif isinstance(payload, LapData):
            self._on_lap_data(state, payload)
        else:
            self._on_car_telemetry(state, header, payload)

    def discard_all(self) -> None:
        """Drop every in-progress lap buffer."""
        for state in self._sessions.values():
            state.builder.discard()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _meta(self, state: _SessionState) -> LapMeta:
        return LapMeta(game=Game.F1, car=f"player:{state.player_index}", track=state.track)

    def _on_lap_data(self, state: _SessionState, lap: LapData) -> None:
        state.lap = lap
        previous = state.lap_number
        state.lap_number = lap.lap_number
        if previous is None or lap.lap_number == previous:
            return
        if lap.lap_number > previous:
            committed = state.builder.commit(
                self._meta(state), previous, time_ms=float(lap.last_lap_time_ms)
            )
            if committed is not None:
                self._stats.laps += 1
                self._sink(committed)
        else:
            # flashback / session restart
            _logger.info("F1 lap number went backwards (%d -> %d)", previous, lap.lap_number)
            state.builder.discard()

    def _on_car_telemetry(self, state: _SessionState, header: F1Header, car: CarTelemetryData) -> None:
        if state.lap is None:
            return
        motion = state.motion
        channels = {"track_length_m": float(state.track_length_m)}
        if motion is not None:
            channels["yaw"] = motion.yaw
            channels["g_lat"] = motion.g_lat
            channels["g_lon"] = motion.g_lon
        point = make_point(
            t_ms=header.session_time * 1000.0,
            distance_m=state.lap.lap_distance_m,
            x=motion.x if motion is not None else 0.0,
            y=motion.z if motion is not None else 0.0,
            speed_kmh=car.speed_kmh,
            throttle=car.throttle,
            brake=car.brake,
            steer=car.steer,
            gear=car.gear,
            rpm=car.rpm,
            channels=channels,
        )
        if state.builder.append(point):
            self._stats.points += 1
        else:
            self._stats.dropped += 1


# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------


class F1Connector:
    """Listens for F1 UDP packets on a background thread.

    Parameters
    ----------
    config:
        Bind address and format version.
    sink:
        Receives committed laps (e.g. :meth:`LapCommitPump.submit`).
    settings:
        Engine settings (unused by F1, accepted for a uniform factory).
    """

    kind = SourceKind.F1

    def __init__(
        self,
        config: F1Config,
        sink: LapSink,
        settings: EngineSettings | None = None,
    ) -> None:
        self.config = config
        self._stats = ConnectorStats()
        self._assembler = F1StreamAssembler(config.format_version, sink, self._stats)
        self._sock: socket.socket | None = None
        self._worker = WorkerThread("F1Connector", self._step, on_exit=self._on_exit)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectorStatus:
        return self._worker.status

    @property
    def stats(self) -> ConnectorStats:
        return self._stats

    @property
    def bound_address(self) -> tuple[str, int] | None:
        """The local ``(host, port)`` while the socket is open."""
        sock = self._sock
        return sock.getsockname() if sock is not None else None

    def start(self) -> None:
        """Bind the UDP socket and start receiving.

        Raises:
            TransportError: If the socket cannot be bound.
        """
        if self._worker.is_alive():
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, self.config.port))
        except OSError as exc:
            sock.close()
            self._worker.status = ConnectorStatus.UNAVAILABLE
            raise TransportError(
                f"Cannot bind UDP {self.config.host}:{self.config.port}: {exc}"
            ) from exc
        sock.settimeout(_SOCKET_TIMEOUT_S)
        self._sock = sock
        _logger.info("F1 connector listening on %s:%d (format %d)",
                     *sock.getsockname(), self.config.format_version)
        self._worker.start()

    def stop(self) -> None:
        """Stop receiving and close the socket.  Idempotent."""
        self._worker.stop()
        self._release()
        if self._worker.status == ConnectorStatus.RUNNING:
            self._worker.status = ConnectorStatus.STOPPED

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _step(self, stop_event: threading.Event) -> None:
        sock = self._sock
        if sock is None:
            stop_event.set()
            return
        try:
            data, _addr = sock.recvfrom(_RECV_BUFSIZE)
        except socket.timeout:
            return
        except OSError as exc:
            if stop_event.is_set():
                return
            raise TransportError(f"F1 socket lost: {exc}") from exc
        if stop_event.is_set():
            return
        self._stats.packets += 1
        try:
            self._assembler.process(data)
        except DecodeError as exc:
            self._stats.dropped += 1
            _logger.debug("F1 packet dropped: %s", exc)

    def _on_exit(self, status: ConnectorStatus) -> None:
        self._assembler.discard_all()
        self._release()

    def _release(self) -> None:
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
            _logger.info("F1 connector socket closed")
