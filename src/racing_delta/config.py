"""Engine settings and per-source connector configuration.

Every tuning constant lives in :class:`EngineSettings` with a documented
default.  :meth:`EngineSettings.from_env` loads a ``.env`` file (if any) and
applies ``RACING_DELTA_<FIELD>`` overrides, e.g.
``RACING_DELTA_GT7_START_RADIUS_M=25``.
"""

from __future__ import annotations

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_ENV_PREFIX = "RACING_DELTA_"


class EngineSettings(BaseModel):
    """Tuning constants for ingestion and analysis."""

    # GT7 lap segmentation
    gt7_start_radius_m: float = Field(20.0, gt=0)
    """Distance to the start/finish anchor that counts as crossing the line."""

    gt7_min_lap_ms: float = Field(15_000.0, ge=0)
    """Minimum elapsed lap time before a re-crossing may close the lap."""

    gt7_start_min_speed_kmh: float = Field(0.36, ge=0)
    """Speed above which the first position becomes the start/finish anchor."""

    gt7_heartbeat_interval_s: float = Field(0.8, gt=0)

    # LMU
    lmu_poll_interval_s: float = Field(0.02, gt=0)

    # Track map
    curvature_threshold: float = Field(0.02, ge=0)
    """Minimum smoothed curvature (rad/m) for a corner candidate."""

    curvature_smooth_window: int = Field(2, ge=0)
    peak_half_window: int = Field(8, ge=1)
    min_corner_separation_m: float = Field(40.0, ge=0)
    max_polyline_points: int = Field(1500, ge=2)
    sector_count: int = Field(3, ge=1)

    # Multi-lap analysis
    grid_step_m: float = Field(1.0, gt=0)
    corner_window_m: float = Field(100.0, gt=0)
    brake_on_threshold: float = Field(0.2, ge=0, le=1)
    throttle_on_threshold: float = Field(0.6, ge=0, le=1)

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> EngineSettings:
        """Build settings from defaults, a ``.env`` file and the environment."""
        load_dotenv(dotenv_path)
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            raw = os.environ.get(_ENV_PREFIX + name.upper())
            if raw is not None:
                overrides[name] = raw
        return cls(**overrides)


class F1Config(BaseModel):
    """F1 UDP listener configuration."""

    port: int = Field(20777, ge=0, le=65535)
    """UDP port to bind; ``0`` picks an ephemeral port."""

    host: str = "0.0.0.0"
    format_version: Literal[2024, 2025] = 2025


class GT7Config(BaseModel):
    """GT7 console connection configuration."""

    console_ip: str
    variant: Literal["A", "B", "~"] = "A"
    bind_port: int = Field(33740, ge=0, le=65535)
    heartbeat_port: int = Field(33739, ge=1, le=65535)


class LMUConfig(BaseModel):
    """LMU (rFactor 2 engine) shared-memory configuration."""

    map_name: str = "$rFactor2SMMP_Telemetry$"
    poll_interval_s: float | None = Field(None, gt=0)
    """Overrides :attr:`EngineSettings.lmu_poll_interval_s` when set."""
