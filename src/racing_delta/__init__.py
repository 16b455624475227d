"""racing_delta — simulator telemetry ingestion and multi-lap analysis."""

from racing_delta.config import EngineSettings
from racing_delta.engine import ConnectorHandle, TelemetryEngine
from racing_delta.errors import (
    DecodeError,
    DeltaError,
    GeometryError,
    TelemetryIOError,
    TransportError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "ConnectorHandle",
    "DecodeError",
    "DeltaError",
    "EngineSettings",
    "GeometryError",
    "TelemetryEngine",
    "TelemetryIOError",
    "TransportError",
    "ValidationError",
]
