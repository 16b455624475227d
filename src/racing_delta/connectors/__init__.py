"""Live telemetry connectors.

Public API
----------
create_connector - build the connector for a SourceKind
F1Connector      - F1 2024/2025 UDP
GT7Connector     - GT7 encrypted UDP + heartbeat
LMUConnector     - LMU shared memory
"""

from __future__ import annotations

from pydantic import BaseModel

from racing_delta.config import EngineSettings, F1Config, GT7Config, LMUConfig
from racing_delta.connectors.base import (
    Connector,
    ConnectorStats,
    ConnectorStatus,
    LapSink,
    SourceKind,
)
from racing_delta.connectors.f1 import F1Connector
from racing_delta.connectors.gt7 import GT7Connector
from racing_delta.connectors.lmu import LMUConnector
from racing_delta.errors import ValidationError

_CONFIG_TYPES: dict[SourceKind, type[BaseModel]] = {
    SourceKind.F1: F1Config,
    SourceKind.GT7: GT7Config,
    SourceKind.LMU: LMUConfig,
}


def create_connector(
    kind: SourceKind | str,
    config: BaseModel,
    sink: LapSink,
    settings: EngineSettings | None = None,
) -> Connector:
    """Return an idle connector of *kind*.

    Raises:
        ValidationError: If *kind* is unknown or *config* has the wrong type.
    """
    try:
        kind = SourceKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown source kind: {kind!r}") from None
    expected = _CONFIG_TYPES[kind]
    if not isinstance(config, expected):
        raise ValidationError(
            f"{kind.value} connector needs {expected.__name__}, got {type(config).__name__}"
        )
    if kind is SourceKind.F1:
        return F1Connector(config, sink, settings)
    if kind is SourceKind.GT7:
        return GT7Connector(config, sink, settings)
    return LMUConnector(config, sink, settings)


__all__ = [
    "Connector",
    "ConnectorStats",
    "ConnectorStatus",
    "F1Connector",
    "GT7Connector",
    "LMUConnector",
    "SourceKind",
    "create_connector",
]
