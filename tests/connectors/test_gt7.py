"""Tests for GT7 decryption, decoding, lap tracking and the connector."""

from __future__ import annotations

import math
import socket
import struct
import time
from unittest.mock import MagicMock

import pytest
from Crypto.Cipher import Salsa20

from racing_delta.config import EngineSettings, GT7Config
from racing_delta.connectors.base import ConnectorStats, ConnectorStatus
from racing_delta.connectors.gt7 import (
    MAGIC,
    PACKET_SIZES,
    SALSA20_KEY,
    GT7Connector,
    GT7LapTracker,
    GT7StreamAssembler,
    decode_packet,
    decrypt_packet,
    packet_nonce,
)
from racing_delta.errors import DecodeError
from racing_delta.telemetry.models import Game

IV1 = 0x1A2B3C4D

# ---------------------------------------------------------------------------
# Packet builder
# ---------------------------------------------------------------------------


def plain_packet(
    variant: str = "A",
    packet_id: int = 1,
    pos: tuple[float, float, float] = (10.0, 2.0, -20.0),
    speed_ms: float = 50.0,
    rpm: float = 7200.0,
    throttle: int = 255,
    brake: int = 0,
    gear: int = 4,
    car_code: int = 3456,
    wheel_rotation: float = 0.0,
    energy_recovery: float = 0.0,
) -> bytes:
    buf = bytearray(PACKET_SIZES[variant])
    struct.pack_into("<I", buf, 0x00, MAGIC)
    struct.pack_into("<fff", buf, 0x04, *pos)
    struct.pack_into("<fff", buf, 0x1C, 0.01, 1.2, -0.02)
    struct.pack_into("<f", buf, 0x3C, rpm)
    struct.pack_into("<f", buf, 0x4C, speed_ms)
    struct.pack_into("<i", buf, 0x70, packet_id)
    struct.pack_into("<h", buf, 0x74, 1)
    buf[0x90] = 0x50 | gear  # suggested gear in the high nibble
    buf[0x91] = throttle
    buf[0x92] = brake
    struct.pack_into("<i", buf, 0x124, car_code)
    if variant in ("B", "~"):
        struct.pack_into("<f", buf, 0x128, wheel_rotation)
    if variant == "~":
        buf[0x13C] = 128
        struct.pack_into("<f", buf, 0x150, energy_recovery)
    return bytes(buf)


def encrypt(plain: bytes, variant: str = "A", iv1: int = IV1) -> bytes:
    cipher = Salsa20.new(key=SALSA20_KEY, nonce=packet_nonce(iv1, variant))
    data = bytearray(cipher.encrypt(plain))
    struct.pack_into("<I", data, 0x40, iv1)
    return bytes(data)


def packet(variant: str = "A", **kw) -> bytes:
    return encrypt(plain_packet(variant, **kw), variant)


# ---------------------------------------------------------------------------
# Decryption / decoding
# ---------------------------------------------------------------------------


def test_key_is_32_bytes():
    assert len(SALSA20_KEY) == 32


def test_nonce_layout():
    nonce = packet_nonce(IV1, "A")
    assert len(nonce) == 8
    assert struct.unpack("<II", nonce) == (IV1 ^ 0xDEADBEAF, IV1)


def test_decrypt_and_decode_variant_a():
    sample = decode_packet(decrypt_packet(packet(packet_id=42), "A"), "A")
    assert sample.packet_id == 42
    assert sample.x == pytest.approx(10.0)
    assert sample.y == pytest.approx(-20.0)
    assert sample.height == pytest.approx(2.0)
    assert sample.speed_kmh == pytest.approx(180.0)
    assert sample.rpm == pytest.approx(7200.0)
    assert sample.throttle == pytest.approx(1.0)
    assert sample.brake == 0.0
    assert sample.gear == 4
    assert sample.car_code == 3456
    assert sample.steer == 0.0
    assert sample.channels["yaw"] == pytest.approx(1.2)


def test_variant_b_steering_from_wheel_rotation():
    data = packet("B", wheel_rotation=math.pi / 4)
    sample = decode_packet(decrypt_packet(data, "B"), "B")
    assert sample.steer == pytest.approx(0.25)
    assert sample.channels["wheel_rotation"] == pytest.approx(math.pi / 4)


def test_variant_tilde_extras():
    data = packet("~", energy_recovery=12.5)
    sample = decode_packet(decrypt_packet(data, "~"), "~")
    assert sample.channels["energy_recovery"] == pytest.approx(12.5)
    assert sample.channels["throttle_filtered"] == pytest.approx(128 / 255)


def test_wrong_variant_key_fails_magic():
    data = encrypt(plain_packet("B"), "B")
    with pytest.raises(DecodeError):
        decrypt_packet(data, "A")


def test_short_packet_rejected():
    with pytest.raises(DecodeError):
        decrypt_packet(packet()[:100], "A")


def test_corrupted_packet_rejected():
    data = bytearray(packet())
    data[0] ^= 0xFF
    with pytest.raises(DecodeError):
        decrypt_packet(bytes(data), "A")


# ---------------------------------------------------------------------------
# GT7LapTracker
# ---------------------------------------------------------------------------


def test_anchor_waits_for_movement():
    tracker = GT7LapTracker()
    assert tracker.update(0.0, 0.0, 0.0, 0.0) is False
    assert tracker.anchor is None
    tracker.update(5.0, 5.0, 10.0, 100.0)
    assert tracker.anchor == (5.0, 5.0)


def test_lap_needs_minimum_time():
    tracker = GT7LapTracker(start_radius_m=20.0, min_lap_ms=15_000.0)
    tracker.update(0.0, 0.0, 100.0, 0.0)
    assert tracker.update(5.0, 0.0, 100.0, 10_000.0) is False
    assert tracker.update(5.0, 0.0, 100.0, 15_000.0) is True
    assert tracker.lap_number == 2


def test_lap_needs_proximity():
    tracker = GT7LapTracker(start_radius_m=20.0, min_lap_ms=15_000.0)
    tracker.update(0.0, 0.0, 100.0, 0.0)
    assert tracker.update(50.0, 0.0, 100.0, 30_000.0) is False
    assert tracker.update(19.0, 0.0, 100.0, 31_000.0) is True


def test_no_retrigger_right_after_crossing():
    tracker = GT7LapTracker(start_radius_m=20.0, min_lap_ms=15_000.0)
    tracker.update(0.0, 0.0, 100.0, 0.0)
    assert tracker.update(1.0, 0.0, 100.0, 20_000.0) is True
    assert tracker.update(2.0, 0.0, 100.0, 20_016.0) is False


# ---------------------------------------------------------------------------
# Stream assembly
# ---------------------------------------------------------------------------

RADIUS_M = 100.0
SPEED_MS = 30.0


def circle_packet(packet_id: int) -> bytes:
    angle = SPEED_MS * (packet_id / 60.0) / RADIUS_M
    x = RADIUS_M * math.cos(angle)
    z = RADIUS_M * math.sin(angle)
    return packet(packet_id=packet_id, pos=(x, 0.0, z), speed_ms=SPEED_MS)


def test_circuit_laps_are_segmented():
    sink = MagicMock()
    stats = ConnectorStats()
    asm = GT7StreamAssembler("A", sink, EngineSettings(), stats)
    lap_packets = int(2 * math.pi * RADIUS_M / SPEED_MS * 60)
    for pid in range(1, int(lap_packets * 2.3)):
        asm.process(circle_packet(pid))

    assert sink.call_count == 2
    laps = [c.args[0] for c in sink.call_args_list]
    assert [lap.lap_number for lap in laps] == [1, 2]
    circumference = 2 * math.pi * RADIUS_M
    for lap in laps:
        assert lap.meta.game is Game.GT7
        assert lap.meta.car == "car:3456"
        assert lap.meta.track == "Unknown"
        assert 15_000 <= lap.time_ms <= 22_000
        assert circumference * 0.85 < lap.length_m < circumference * 1.02
    assert laps[1].time_ms == pytest.approx(circumference / SPEED_MS * 1000, rel=0.02)
    assert stats.laps == 2


def test_time_base_and_distance_integration():
    sink = MagicMock()
    asm = GT7StreamAssembler("A", sink)
    for pid in (60, 120, 180):
        asm.process(packet(packet_id=pid, pos=(pid / 60 * 30.0, 0.0, 0.0), speed_ms=30.0))
    points = asm._builder._points
    assert [p.t_ms for p in points] == pytest.approx([1000.0, 2000.0, 3000.0])
    assert [p.distance_m for p in points] == pytest.approx([0.0, 30.0, 60.0])


def test_stationary_noise_uses_path_displacement():
    asm = GT7StreamAssembler("A", MagicMock())
    asm.process(packet(packet_id=1, pos=(0.0, 0.0, 0.0), speed_ms=10.0))
    asm.process(packet(packet_id=61, pos=(1.0, 0.0, 0.0), speed_ms=10.0))
    assert asm._builder.last.distance_m == pytest.approx(1.0)


def test_non_increasing_packet_id_dropped():
    asm = GT7StreamAssembler("A", MagicMock())
    asm.process(packet(packet_id=10))
    with pytest.raises(DecodeError):
        asm.process(packet(packet_id=10))
    with pytest.raises(DecodeError):
        asm.process(packet(packet_id=5))


def test_stream_restart_resumes_ingestion():
    sink = MagicMock()
    stats = ConnectorStats()
    asm = GT7StreamAssembler("A", sink, EngineSettings(), stats)
    for pid in range(1000, 1010):
        asm.process(packet(packet_id=pid, pos=(pid * 0.5, 0.0, 0.0), speed_ms=30.0))
    assert stats.points == 10

    for pid in range(1, 600):
        asm.process(packet(packet_id=pid, pos=(pid * 0.5, 0.0, 0.0), speed_ms=30.0))

    assert stats.points == 10 + 599
    assert stats.dropped == 0
    assert sink.call_count == 0
    points = asm._builder._points
    assert points[0].t_ms == pytest.approx(1000.0 / 60.0)
    assert points[0].distance_m == 0.0
    assert asm.tracker.lap_start_ms == pytest.approx(1000.0 / 60.0)

# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------


def test_connector_sends_heartbeat_and_receives():
    console = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    console.bind(("127.0.0.1", 0))
    console.settimeout(2.0)
    hb_port = console.getsockname()[1]
    conn = GT7Connector(
        GT7Config(console_ip="127.0.0.1", variant="B", bind_port=0, heartbeat_port=hb_port),
        MagicMock(),
    )
    try:
        conn.start()
        data, _ = console.recvfrom(16)
        assert data == b"B"

        target = ("127.0.0.1", conn.bound_address[1])
        console.sendto(encrypt(plain_packet("B", packet_id=1, speed_ms=20.0), "B"), target)
        console.sendto(b"junk", target)

        deadline = time.monotonic() + 3.0
        while time.monotonic() < deadline and conn.stats.packets < 2:
            time.sleep(0.01)
        assert conn.stats.packets == 2
        assert conn.stats.dropped == 1
        assert conn.stats.points == 1
    finally:
        conn.stop()
        console.close()
    assert conn.status == ConnectorStatus.STOPPED
