"""Job scheduler service: lifecycle of the wired scheduling components.

``JobScheduler`` is what ``create_job_scheduler()`` returns. It owns the
trigger backend, the reconcile ticker and the status client, and starts
and stops them in dependency order::

    start():  engine.load_triggers()  →  backend.start()
              →  ticker.start(reconciler.start_update_instances)
    stop():   ticker.stop()  →  backend.shutdown()  →  status client close
              →  database close (only when the scheduler opened it)
"""

from __future__ import annotations

from typing import Any

from jobspine.core.logging import get_logger
from jobspine.core.protocols import Connection
from jobspine.core.repository import release_connection

from .engine import SchedulerEngine
from .health import HealthAggregator
from .reconciler import InstanceReconciler
from .status_client import StatusClient
from .ticker import ReconcileTicker

logger = get_logger(__name__)


class JobScheduler:
    """Engine, reconciler, health aggregator and ticker wired together.

    Example:
        >>> scheduler = create_job_scheduler(conn, executor=submit_batch)
        >>> scheduler.start()
        >>> scheduler.engine.add_job("BA", "accuracy", "measure-1", request)
        >>> scheduler.health.get_health_info().to_dict()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        engine: SchedulerEngine,
        reconciler: InstanceReconciler,
        health: HealthAggregator,
        ticker: ReconcileTicker,
        status_client: StatusClient,
        owned_connection: Connection | None = None,
    ) -> None:
        self.engine = engine
        self.reconciler = reconciler
        self.health = health
        self.ticker = ticker
        self.status_client = status_client
        self._owned_connection = owned_connection
        self._running = False

    @property
    def backend(self):
        return self.engine.backend

    def start(self) -> None:
        if self._running:
            logger.warning("job_scheduler_already_running")
            return
        self.engine.load_triggers()
        self.backend.start()
        self.ticker.start(self.reconciler.start_update_instances)
        self._running = True
        logger.info("job_scheduler_started", backend=self.backend.name)

    def stop(self) -> None:
        if not self._running:
            return
        self.ticker.stop()
        self.backend.shutdown()
        self.status_client.close()
        if self._owned_connection is not None:
            self._owned_connection.close()
            release_connection(self._owned_connection)
            self._owned_connection = None
        self._running = False
        logger.info("job_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def status(self) -> dict[str, Any]:
        """Backend, ticker and fleet health in one document."""
        return {
            "running": self._running,
            "backend": self.backend.health(),
            "ticker": self.ticker.health(),
            "jobs": self.health.get_health_info().to_dict(),
        }

    def __enter__(self) -> JobScheduler:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
