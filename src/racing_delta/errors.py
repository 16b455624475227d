"""Error taxonomy shared by connectors, the lap store, analysis and codecs.

Policy
------
DecodeError       - one bad packet; dropped by the connector, ingestion continues.
TransportError    - socket / shared memory unavailable or lost; stops that connector only.
GeometryError     - degenerate lap; analysis turns it into an empty/zero result.
ValidationError   - bad request (unknown lap id, empty selection, bad config).
TelemetryIOError  - import/export failure, carries the offending path.
"""

from __future__ import annotations

import os


class DeltaError(Exception):
    """Base class for every error raised by :mod:`racing_delta`."""


class TransportError(DeltaError):
    """Raised when a connector's transport cannot be acquired or is lost."""


class DecodeError(DeltaError):
    """Raised when a packet or shared-memory snapshot cannot be decoded."""


class GeometryError(DeltaError):
    """Raised when a lap has too few points (or zero length) for a computation."""


class ValidationError(DeltaError):
    """Raised when a caller request is invalid (unknown id, empty selection...)."""


class TelemetryIOError(DeltaError):
    """Raised when importing or exporting a telemetry file fails.

    Args:
        path: The file that could not be read or written.
        reason: Human-readable cause.
    """

    def __init__(self, path: str | os.PathLike, reason: str) -> None:
        self.path = os.fspath(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")
