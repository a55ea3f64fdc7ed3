"""Fixed-delay ticker that drives instance reconciliation.

One daemon thread (``jobspine-reconcile``) runs::

    wait(initial_delay)
    repeat:
        callback()
        wait(interval)        # measured from the end of the tick

Ticks therefore never overlap. ``stop()`` wakes a sleeping thread at once;
a tick already in progress is allowed to finish.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from jobspine.core.logging import get_logger

logger = get_logger(__name__)

TickCallback = Callable[[], Any]


class ReconcileTicker:
    """
    Example:
        >>> ticker = ReconcileTicker(interval_seconds=60.0)
        >>> ticker.start(reconciler.start_update_instances)
        >>> ticker.stop()
    """

    name = "reconcile-ticker"

    def __init__(self, interval_seconds: float = 60.0, initial_delay_seconds: float = 0.0) -> None:
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self._wake = threading.Event()
        self._worker: threading.Thread | None = None
        self._stats_lock = threading.Lock()
        self._ticks = 0
        self._last_tick: datetime | None = None

    def start(self, callback: TickCallback) -> None:
        if self._worker is not None:
            logger.warning("reconcile_ticker_already_started")
            return
        self._wake.clear()
        self._worker = threading.Thread(
            target=self._run, args=(callback,), daemon=True, name="jobspine-reconcile"
        )
        self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread and join it for at most ``timeout`` seconds."""
        worker, self._worker = self._worker, None
        if worker is None:
            return
        self._wake.set()
        worker.join(timeout=timeout)
        if worker.is_alive():
            logger.warning("reconcile_ticker_did_not_stop_cleanly", timeout=timeout)

    def _run(self, callback: TickCallback) -> None:
        logger.info("reconcile_ticker_started", interval_seconds=self.interval_seconds)
        delay = self.initial_delay_seconds
        while not self._wake.wait(delay):
            with self._stats_lock:
                self._ticks += 1
                self._last_tick = datetime.now(UTC)
            try:
                callback()
            except Exception:
                logger.exception("reconcile_tick_failed")
            delay = self.interval_seconds
        logger.info("reconcile_ticker_stopped", tick_count=self._ticks)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def tick_count(self) -> int:
        return self._ticks

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    def health(self) -> dict[str, Any]:
        with self._stats_lock:
            last = self._last_tick
            ticks = self._ticks
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": ticks,
            "last_tick": last.isoformat() if last else None,
            "interval_seconds": self.interval_seconds,
        }
