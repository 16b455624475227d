"""Import/export of laps as CSV, NDJSON or MoTeC CSV.

Public API
----------
export_laps(kind, laps, path) - write laps in one of the ExportKind formats
import_laps(path)             - read laps, detecting the format from the file
"""

from __future__ import annotations

import csv
import logging
import os
from collections.abc import Sequence
from enum import Enum

from racing_delta.codec.csv_codec import read_csv, write_csv
from racing_delta.codec.motec_codec import is_motec_csv, read_motec, write_motec
from racing_delta.codec.ndjson_codec import read_ndjson, write_ndjson
from racing_delta.errors import TelemetryIOError, ValidationError
from racing_delta.telemetry.models import Lap

_logger = logging.getLogger(__name__)

NDJSON_SUFFIXES = (".ndjson", ".jsonl")


class ExportKind(str, Enum):
    CSV = "csv"
    NDJSON = "ndjson"
    MOTEC = "motec"


_WRITERS = {
    ExportKind.CSV: write_csv,
    ExportKind.NDJSON: write_ndjson,
    ExportKind.MOTEC: write_motec,
}


def export_laps(kind: ExportKind | str, laps: Sequence[Lap], path: str | os.PathLike[str]) -> int:
    """Write *laps* to *path* in format *kind*; return the number of records.

    Raises:
        ValidationError: If *kind* is not a known format.
        TelemetryIOError: If the file cannot be written.
    """
    try:
        kind = ExportKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown export format: {kind!r}") from None
    try:
        count = _WRITERS[kind](laps, path)
    except (OSError, csv.Error) as exc:
        raise TelemetryIOError(path, str(exc)) from exc
    _logger.info("Exported %d laps (%d records) as %s to %s", len(laps), count, kind.value, os.fspath(path))
    return count


def detect_format(path: str | os.PathLike[str]) -> ExportKind:
    """NDJSON by suffix, MoTeC by its header tag, CSV otherwise."""
    if os.fspath(path).lower().endswith(NDJSON_SUFFIXES):
        return ExportKind.NDJSON
    if is_motec_csv(path):
        return ExportKind.MOTEC
    return ExportKind.CSV


def import_laps(path: str | os.PathLike[str]) -> list[Lap]:
    """Read every lap stored in *path*.

    Imported laps get fresh ids; unknown game names become ``Imported``.

    Raises:
        TelemetryIOError: If the file is missing or malformed.
    """
    try:
        kind = detect_format(path)
        if kind is ExportKind.NDJSON:
            laps = read_ndjson(path)
        elif kind is ExportKind.MOTEC:
            laps = read_motec(path)
        else:
            laps = read_csv(path)
    except TelemetryIOError:
        raise
    except (OSError, OverflowError, UnicodeDecodeError, csv.Error) as exc:
        raise TelemetryIOError(path, str(exc)) from exc
    _logger.info("Imported %d laps (%s) from %s", len(laps), kind.value, os.fspath(path))
    return laps


__all__ = ["ExportKind", "detect_format", "export_laps", "import_laps"]
