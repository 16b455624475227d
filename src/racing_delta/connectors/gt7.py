"""GT7 connector — Salsa20-encrypted UDP telemetry plus heartbeat.

The console only streams while it keeps receiving a heartbeat: a single
ASCII byte naming the packet variant (``A``, ``B`` or ``~``) sent to port
33739 roughly every second.  Packets arrive on port 33740, encrypted with
Salsa20 under a fixed key; the nonce is derived from a 32-bit value stored
in clear at offset 0x40.

GT7 reports no lap distance and no reliable lap boundary, so both are
reconstructed here: distance by integrating speed along the XY path, laps by
re-entry into a radius around the start/finish anchor.
"""

from __future__ import annotations

import logging
import math
import socket
import struct
import threading
import time
from dataclasses import dataclass, field

from Crypto.Cipher import Salsa20

from racing_delta.config import EngineSettings, GT7Config
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

# ---------------------------------------------------------------------------
# Packet constants
# ---------------------------------------------------------------------------

SALSA20_KEY = b"Simulator Interface Packet GT7 ver 0.0"[:32]
MAGIC = 0x47375330  # "0S7G"
IV_OFFSET = 0x40

XOR_KEYS: dict[str, int] = {"A": 0xDEADBEAF, "B": 0xDEADBEEF, "~": 0x55FABB4F}
PACKET_SIZES: dict[str, int] = {"A": 0x128, "B": 0x13C, "~": 0x158}

PACKET_RATE_HZ = 60.0
# A packet id at least this far behind the last one marks a stream restart.
RESTART_GAP_PACKETS = 60

_OFF_MAGIC = 0x00
_OFF_POSITION = 0x04        # float[3]
_OFF_VELOCITY = 0x10        # float[3]
_OFF_ROTATION = 0x1C        # float[3]: pitch, yaw, roll
_OFF_RPM = 0x3C             # float
_OFF_SPEED = 0x4C           # float (m/s)
_OFF_PACKET_ID = 0x70       # int32
_OFF_CURRENT_LAP = 0x74     # int16
_OFF_GEAR = 0x90            # uint8, low nibble = current gear
_OFF_THROTTLE = 0x91        # uint8 0..255
_OFF_BRAKE = 0x92           # uint8 0..255
_OFF_CAR_CODE = 0x124       # int32

# variant B and ~
_OFF_WHEEL_ROTATION = 0x128  # float (radians)
_OFF_SWAY = 0x130
_OFF_HEAVE = 0x134
_OFF_SURGE = 0x138

# variant ~
_OFF_THROTTLE_FILTERED = 0x13C  # uint8
_OFF_BRAKE_FILTERED = 0x13D     # uint8
_OFF_TORQUE = 0x140             # float[4]
_OFF_ENERGY_RECOVERY = 0x150    # float

_VEC3 = struct.Struct("<fff")
_FLOAT = struct.Struct("<f")
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
_INT16 = struct.Struct("<h")

_RECV_BUFSIZE = 4096
_SOCKET_TIMEOUT_S = 0.2


# ---------------------------------------------------------------------------
# Decryption and decoding
# ---------------------------------------------------------------------------


def packet_nonce(iv1: int, variant: str) -> bytes:
    """Return the 8-byte Salsa20 nonce for a packet whose IV word is *iv1*."""
    iv2 = (iv1 ^ XOR_KEYS[variant]) & 0xFFFFFFFF
    return _UINT32.pack(iv2) + _UINT32.pack(iv1)


def decrypt_packet(data: bytes, variant: str) -> bytes:
    """Decrypt one datagram and check its magic.

    Raises:
        DecodeError: If the datagram is shorter than the variant's packet
            size or the decrypted magic does not match.
    """
    size = PACKET_SIZES[variant]
    if len(data) < size:
        raise DecodeError(f"GT7 packet too short for variant {variant}: {len(data)} < {size}")
    (iv1,) = _UINT32.unpack_from(data, IV_OFFSET)
    cipher = Salsa20.new(key=SALSA20_KEY, nonce=packet_nonce(iv1, variant))
    plain = cipher.decrypt(bytes(data[:size]))
    (magic,) = _UINT32.unpack_from(plain, _OFF_MAGIC)
    if magic != MAGIC:
        raise DecodeError(f"GT7 magic mismatch: 0x{magic:08X}")
    return plain


@dataclass(frozen=True)
class GT7Sample:
    """Fields decoded from one decrypted packet."""

    packet_id: int
    x: float
    y: float
    """World horizontal Z, mapped to the canonical Y axis."""
    height: float
    speed_kmh: float
    rpm: float
    throttle: float
    brake: float
    steer: float
    gear: int
    current_lap: int
    car_code: int
    channels: dict[str, float] = field(default_factory=dict)


def decode_packet(plain: bytes, variant: str) -> GT7Sample:
    """Decode a decrypted packet of *variant*."""
    pos_x, pos_y, pos_z = _VEC3.unpack_from(plain, _OFF_POSITION)
    vel_x, vel_y, vel_z = _VEC3.unpack_from(plain, _OFF_VELOCITY)
    pitch, yaw, roll = _VEC3.unpack_from(plain, _OFF_ROTATION)
    (rpm,) = _FLOAT.unpack_from(plain, _OFF_RPM)
    (speed_ms,) = _FLOAT.unpack_from(plain, _OFF_SPEED)
    (packet_id,) = _INT32.unpack_from(plain, _OFF_PACKET_ID)
    (current_lap,) = _INT16.unpack_from(plain, _OFF_CURRENT_LAP)
    (car_code,) = _INT32.unpack_from(plain, _OFF_CAR_CODE)

    channels = {
        "pitch": pitch,
        "yaw": yaw,
        "roll": roll,
        "vel_x": vel_x,
        "vel_y": vel_y,
        "vel_z": vel_z,
    }
    steer = 0.0
    if variant in ("B", "~"):
        (wheel_rotation,) = _FLOAT.unpack_from(plain, _OFF_WHEEL_ROTATION)
        steer = wheel_rotation / math.pi
        channels["wheel_rotation"] = wheel_rotation
        channels["sway"] = _FLOAT.unpack_from(plain, _OFF_SWAY)[0]
        channels["heave"] = _FLOAT.unpack_from(plain, _OFF_HEAVE)[0]
        channels["surge"] = _FLOAT.unpack_from(plain, _OFF_SURGE)[0]
    if variant == "~":
        channels["throttle_filtered"] = plain[_OFF_THROTTLE_FILTERED] / 255.0
        channels["brake_filtered"] = plain[_OFF_BRAKE_FILTERED] / 255.0
        for i, wheel in enumerate(("fl", "fr", "rl", "rr")):
            channels[f"torque_{wheel}"] = _FLOAT.unpack_from(plain, _OFF_TORQUE + 4 * i)[0]
        channels["energy_recovery"] = _FLOAT.unpack_from(plain, _OFF_ENERGY_RECOVERY)[0]

    return GT7Sample(
        packet_id=packet_id,
        x=pos_x,
        y=pos_z,
        height=pos_y,
        speed_kmh=speed_ms * 3.6,
        rpm=rpm,
        throttle=plain[_OFF_THROTTLE] / 255.0,
        brake=plain[_OFF_BRAKE] / 255.0,
        steer=steer,
        gear=plain[_OFF_GEAR] & 0x0F,
        current_lap=current_lap,
        car_code=car_code,
        channels=channels,
    )


# ---------------------------------------------------------------------------
# Lap segmentation
# ---------------------------------------------------------------------------


class GT7LapTracker:
    """Detects lap completion from position alone.

    The start/finish anchor is the first position at which the car moves
    faster than *start_min_speed_kmh*.  A lap completes when the car is back
    within *start_radius_m* of the anchor and at least *min_lap_ms* elapsed
    since the lap started.

    Parameters
    ----------
    start_radius_m:
        Radius around the anchor that counts as crossing the line.
    min_lap_ms:
        Minimum lap duration; suppresses re-triggering while the car is
        still inside the radius after a crossing.
    start_min_speed_kmh:
        Speed required before the anchor is placed.
    """

    def __init__(
        self,
        start_radius_m: float = 20.0,
        min_lap_ms: float = 15_000.0,
        start_min_speed_kmh: float = 0.36,
    ) -> None:
        self.start_radius_m = start_radius_m
        self.min_lap_ms = min_lap_ms
        self.start_min_speed_kmh = start_min_speed_kmh
        self.anchor: tuple[float, float] | None = None
        self.lap_start_ms: float | None = None
        self.lap_number = 1

    def update(self, x: float, y: float, speed_kmh: float, t_ms: float) -> bool:
        """Feed one sample; return True if it completes the current lap."""
        if self.anchor is None or self.lap_start_ms is None:
            if speed_kmh <= self.start_min_speed_kmh:
                return False
            self.anchor = (x, y)
            self.lap_start_ms = t_ms
            return False

        if t_ms - self.lap_start_ms < self.min_lap_ms:
            return False
        if math.hypot(x - self.anchor[0], y - self.anchor[1]) > self.start_radius_m:
            return False
        self.lap_start_ms = t_ms
        self.lap_number += 1
        return True

    def reset(self) -> None:
        self.anchor = None
        self.lap_start_ms = None
        self.lap_number = 1


class GT7StreamAssembler:
    """Turns encrypted GT7 datagrams into canonical points and laps.

    Parameters
    ----------
    variant:
        Packet variant requested by the heartbeat.
    sink:
        Receives committed laps.
    settings:
        Supplies the lap-tracker tunables.
    stats:
        Counters updated as points and laps are produced.
    """

    def __init__(
        self,
        variant: str,
        sink: LapSink,
        settings: EngineSettings | None = None,
        stats: ConnectorStats | None = None,
    ) -> None:
        settings = settings or EngineSettings()
        self.variant = variant
        self._sink = sink
        self._stats = stats if stats is not None else ConnectorStats()
        self.tracker = GT7LapTracker(
            start_radius_m=settings.gt7_start_radius_m,
            min_lap_ms=settings.gt7_min_lap_ms,
            start_min_speed_kmh=settings.gt7_start_min_speed_kmh,
        )
        self._builder = LapBuilder()
        self._last_packet_id: int | None = None
        self._last_sample: GT7Sample | None = None
        self._distance_m = 0.0
        self._car = "car:0"

    def process(self, data: bytes) -> None:
        """Decrypt, decode and apply one datagram.

        Raises:
            DecodeError: If the datagram cannot be decrypted or is a
                duplicate / slightly out-of-order packet.
        """
        sample = decode_packet(decrypt_packet(data, self.variant), self.variant)
        last = self._last_packet_id
        if last is not None and sample.packet_id <= last:
            if last - sample.packet_id < RESTART_GAP_PACKETS:
                raise DecodeError(f"GT7 packet id {sample.packet_id} not after {last}")
            _logger.info("GT7 stream restarted (packet id %d -> %d)", last, sample.packet_id)
            self.restart()
        self._last_packet_id = sample.packet_id
        self._car = f"car:{sample.car_code}"
        t_ms = sample.packet_id * 1000.0 / PACKET_RATE_HZ

        if self.tracker.anchor is None:
            self.tracker.update(sample.x, sample.y, sample.speed_kmh, t_ms)
            if self.tracker.anchor is None:
                self._last_sample = sample
                return
            self._distance_m = 0.0
        else:
            self._distance_m += self._step_distance(sample)
            finished_lap = self.tracker.lap_number
            if self.tracker.update(sample.x, sample.y, sample.speed_kmh, t_ms):
                self._commit(finished_lap)
                self._distance_m = 0.0

        self._last_sample = sample
        point = make_point(
            t_ms=t_ms,
            distance_m=self._distance_m,
            x=sample.x,
            y=sample.y,
            speed_kmh=sample.speed_kmh,
            throttle=sample.throttle,
            brake=sample.brake,
            steer=sample.steer,
            gear=sample.gear,
            rpm=sample.rpm,
            channels={**sample.channels, "height": sample.height},
        )
        if self._builder.append(point):
            self._stats.points += 1
        else:
            self._stats.dropped += 1

    def discard(self) -> None:
        self._builder.discard()

    def restart(self) -> None:
        """Forget the partial lap and all stream state."""
        self._builder.discard()
        self.tracker.reset()
        self._last_packet_id = None
        self._last_sample = None
        self._distance_m = 0.0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _step_distance(self, sample: GT7Sample) -> float:
        """Distance travelled since the previous sample.

        Speed integrated over the packet interval, replaced by the straight
        XY displacement when that is shorter.
        """
        prev = self._last_sample
        if prev is None:
            return 0.0
        dt_s = (sample.packet_id - prev.packet_id) / PACKET_RATE_HZ
        mean_speed_ms = (prev.speed_kmh + sample.speed_kmh) / 2.0 / 3.6
        integrated = max(mean_speed_ms * dt_s, 0.0)
        displacement = math.hypot(sample.x - prev.x, sample.y - prev.y)
        if math.isfinite(displacement) and displacement < integrated:
            return displacement
        return integrated

    def _commit(self, lap_number: int) -> None:
        meta = LapMeta(game=Game.GT7, car=self._car, track="Unknown")
        lap = self._builder.commit(meta, lap_number)
        if lap is not None:
            self._stats.laps += 1
            self._sink(lap)


# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------


class GT7Connector:
    """Receives GT7 telemetry and keeps the stream alive with heartbeats.

    Parameters
    ----------
    config:
        Console address, packet variant and ports.
    sink:
        Receives committed laps.
    settings:
        Heartbeat interval and lap-tracker tunables.
    """

    kind = SourceKind.GT7

    def __init__(
        self,
        config: GT7Config,
        sink: LapSink,
        settings: EngineSettings | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or EngineSettings()
        self._stats = ConnectorStats()
        self._assembler = GT7StreamAssembler(config.variant, sink, self.settings, self._stats)
        self._sock: socket.socket | None = None
        self._next_heartbeat = 0.0
        self._worker = WorkerThread("GT7Connector", self._step, on_exit=self._on_exit)
        self._lock = threading.Lock()

    @property
    def status(self) -> ConnectorStatus:
        return self._worker.status

    @property
    def stats(self) -> ConnectorStats:
        return self._stats

    @property
    def bound_address(self) -> tuple[str, int] | None:
        sock = self._sock
        return sock.getsockname() if sock is not None else None

    def start(self) -> None:
        """Bind the receive socket, send the first heartbeat, start the worker.

        Raises:
            TransportError: If the socket cannot be bound or the console
                address is unreachable.
        """
        if self._worker.is_alive():
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("0.0.0.0", self.config.bind_port))
            sock.settimeout(_SOCKET_TIMEOUT_S)
            self._sock = sock
            self._send_heartbeat()
        except (OSError, TransportError) as exc:
            self._sock = None
            sock.close()
            self._worker.status = ConnectorStatus.UNAVAILABLE
            if isinstance(exc, TransportError):
                raise
            raise TransportError(f"Cannot bind GT7 port {self.config.bind_port}: {exc}") from exc
        _logger.info(
            "GT7 connector started: console %s, variant %s, port %d",
            self.config.console_ip, self.config.variant, sock.getsockname()[1],
        )
        self._worker.start()

    def stop(self) -> None:
        """Stop heartbeats and reception, close the socket.  Idempotent."""
        self._worker.stop()
        self._release()
        if self._worker.status == ConnectorStatus.RUNNING:
            self._worker.status = ConnectorStatus.STOPPED

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _send_heartbeat(self) -> None:
        sock = self._sock
        if sock is None:
            return
        try:
            sock.sendto(
                self.config.variant.encode("ascii"),
                (self.config.console_ip, self.config.heartbeat_port),
            )
        except OSError as exc:
            raise TransportError(
                f"GT7 heartbeat to {self.config.console_ip}:{self.config.heartbeat_port} failed: {exc}"
            ) from exc
        self._next_heartbeat = time.monotonic() + self.settings.gt7_heartbeat_interval_s

    def _step(self, stop_event: threading.Event) -> None:
        sock = self._sock
        if sock is None:
            stop_event.set()
            return
        if time.monotonic() >= self._next_heartbeat:
            self._send_heartbeat()
        try:
            data, _addr = sock.recvfrom(_RECV_BUFSIZE)
        except socket.timeout:
            return
        except OSError as exc:
            if stop_event.is_set():
                return
            raise TransportError(f"GT7 socket lost: {exc}") from exc
        if stop_event.is_set():
            return
        self._stats.packets += 1
        try:
            self._assembler.process(data)
        except DecodeError as exc:
            self._stats.dropped += 1
            _logger.debug("GT7 packet dropped: %s", exc)

    def _on_exit(self, status: ConnectorStatus) -> None:
        self._assembler.discard()
        self._release()

    def _release(self) -> None:
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()
            _logger.info("GT7 connector socket closed")
