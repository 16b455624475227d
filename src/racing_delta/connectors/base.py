"""Common connector contract: status, stats and the worker thread."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from racing_delta.errors import TransportError
from racing_delta.telemetry.models import Lap

_logger = logging.getLogger(__name__)

LapSink = Callable[[Lap], None]


class SourceKind(str, Enum):
    """The closed set of supported telemetry sources."""

    F1 = "F1"
    GT7 = "GT7"
    LMU = "LMU"


class ConnectorStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    UNAVAILABLE = "unavailable"
    """The transport (socket / shared memory) is missing or was lost."""
    FAILED = "failed"
    """The worker crashed; see the log for the traceback."""


@dataclass
class ConnectorStats:
    """Running counters of one connector."""

    packets: int = 0
    dropped: int = 0
    """Malformed, undecryptable, truncated, torn or out-of-order inputs."""
    points: int = 0
    laps: int = 0


class Connector(Protocol):
    """Capability shared by the F1, GT7 and LMU connectors."""

    kind: SourceKind

    @property
    def status(self) -> ConnectorStatus: ...

    @property
    def stats(self) -> ConnectorStats: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class WorkerThread:
    """Runs *step* repeatedly on a daemon thread until stopped.

    Isolation rules:
      * :class:`TransportError` from *step* marks the connector
        ``UNAVAILABLE`` and ends the thread.
      * Any other exception is logged with its traceback, marks the
        connector ``FAILED`` and ends the thread.
    Nothing propagates to other connectors.

    Parameters
    ----------
    name:
        Thread name (used in log messages).
    step:
        Callable doing one unit of work; it must return within a bounded
        time (socket timeout / poll interval) so stop requests are seen.
    on_exit:
        Called on the worker thread with the final status after the loop
        ends, e.g. to release the transport.
    """

    def __init__(
        self,
        name: str,
        step: Callable[[threading.Event], None],
        on_exit: Callable[[ConnectorStatus], None] | None = None,
    ) -> None:
        self._name = name
        self._step = step
        self._on_exit = on_exit
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.status = ConnectorStatus.IDLE

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._stop_event.clear()
        self.status = ConnectorStatus.RUNNING
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Signal the thread to stop and join it."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        final = ConnectorStatus.STOPPED
        try:
            while not self._stop_event.is_set():
                self._step(self._stop_event)
        except TransportError as exc:
            _logger.warning("%s: source unavailable: %s", self._name, exc)
            final = ConnectorStatus.UNAVAILABLE
        except Exception:
            _logger.exception("%s: worker crashed", self._name)
            final = ConnectorStatus.FAILED
        self.status = final
        if self._on_exit is not None:
            self._on_exit(final)
