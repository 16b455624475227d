"""Canonical telemetry model, in-progress lap buffer and lap store.

Public API
----------
TelemetryPoint  - one sampled instant
Lap, LapMeta    - immutable committed lap and its metadata
Game            - lap source
LapBuilder      - connector-private in-progress buffer
LapStore        - concurrency-safe registry of committed laps
LapCommitPump   - queue feeding committed laps into a LapStore
make_point      - sanitizing TelemetryPoint constructor
"""

from racing_delta.telemetry.lap_builder import LapBuilder
from racing_delta.telemetry.models import Game, Lap, LapMeta, TelemetryPoint, new_lap_id
from racing_delta.telemetry.parser import make_point
from racing_delta.telemetry.store import LapCommitPump, LapStore

__all__ = [
    "Game",
    "Lap",
    "LapBuilder",
    "LapCommitPump",
    "LapMeta",
    "LapStore",
    "TelemetryPoint",
    "make_point",
    "new_lap_id",
]
