"""
Pacer -- cancellable waits for the bulk approval loop.

``wait()`` blocks on a ``threading.Event`` instead of ``time.sleep`` so an
operator abort (SIGINT handler, another thread) wakes the loop at once.
"""

from __future__ import annotations

import threading
from typing import Protocol

from acredita_kernel.logging_config import get_logger

logger = get_logger("batch.pacing")


class PacerProtocol(Protocol):
    def wait(self, seconds: float) -> bool: ...

    def abort(self) -> None: ...

    @property
    def aborted(self) -> bool: ...


class Pacer:
    """Event-backed pause.  ``wait`` returns False once aborted."""

    def __init__(self, stop_event: threading.Event | None = None) -> None:
        self._stop_event = stop_event or threading.Event()

    def wait(self, seconds: float) -> bool:
        if self._stop_event.is_set():
            return False
        if seconds <= 0:
            return True
        logger.debug("pacer_waiting", extra={"seconds": seconds})
        return not self._stop_event.wait(timeout=seconds)

    def abort(self) -> None:
        self._stop_event.set()
        logger.warning("pacer_aborted")

    @property
    def aborted(self) -> bool:
        return self._stop_event.is_set()
