"""LapStore — concurrency-safe registry of committed laps, and its commit pump.

Laps are write-once: the store offers insert, get and list only.  ``get`` and
``list`` return the stored objects themselves (borrowed references), never
copies of a lap's point sequence.
"""

from __future__ import annotations

import logging
import queue
import threading

from racing_delta.errors import ValidationError
from racing_delta.telemetry.models import Lap

_logger = logging.getLogger(__name__)


class LapStore:
    """Process-scoped map of lap id → :class:`Lap`, initially empty."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._laps: dict[str, Lap] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._laps)

    def __contains__(self, lap_id: object) -> bool:
        with self._lock:
            return lap_id in self._laps

    def insert(self, lap: Lap) -> None:
        """Register *lap*.

        The lap is fully built before it becomes visible, so readers never
        observe a partial lap.

        Raises:
            ValidationError: If a lap with the same id is already stored.
        """
        with self._lock:
            if lap.id in self._laps:
                raise ValidationError(f"Lap {lap.id!r} already stored")
            self._laps[lap.id] = lap

    def get(self, lap_id: str) -> Lap:
        """Return the stored lap (same object, not a copy).

        Raises:
            ValidationError: If *lap_id* is unknown.
        """
        with self._lock:
            lap = self._laps.get(lap_id)
        if lap is None:
            raise ValidationError(f"Unknown lap id: {lap_id!r}")
        return lap

    def get_many(self, lap_ids: list[str]) -> list[Lap]:
        """Return laps for *lap_ids* in the given order.

        Raises:
            ValidationError: If the selection is empty or an id is unknown.
        """
        if not lap_ids:
            raise ValidationError("Lap selection is empty")
        return [self.get(lap_id) for lap_id in lap_ids]

    def list(self) -> list[Lap]:
        """Snapshot of stored laps in insertion order."""
        with self._lock:
            return list(self._laps.values())


class LapCommitPump:
    """Moves committed laps from connectors into a :class:`LapStore`.

    Connectors call :meth:`submit` from their own threads; a single daemon
    thread drains the queue into the store, so ingestion never waits on the
    store and connectors never touch it directly.
    """

    def __init__(self, store: LapStore) -> None:
        self._store = store
        self._queue: queue.Queue[Lap | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background drain thread (no-op if already running)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, daemon=True, name="LapCommitPump")
            self._thread.start()

    def submit(self, lap: Lap) -> None:
        """Hand *lap* over to the store.  Never blocks."""
        self._queue.put_nowait(lap)

    def flush(self) -> None:
        """Block until every submitted lap has been inserted."""
        self._queue.join()

    def stop(self) -> None:
        """Insert pending laps, then stop the drain thread."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is not None:
            self._queue.put_nowait(None)
            thread.join(timeout=2.0)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            lap = self._queue.get()
            try:
                if lap is None:
                    return
                self._store.insert(lap)
            except ValidationError as exc:
                _logger.warning("Lap rejected by store: %s", exc)
            finally:
                self._queue.task_done()
