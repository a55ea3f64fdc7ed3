"""Scheduling package for jobspine.

Manifesto:
    Periodic compute jobs need more than a timer. Each job needs exactly
    one trigger whose first firing stays on the requested period grid, a
    record of every firing, and a way to learn what happened to that firing
    on the remote cluster. The scheduling package provides the engine for
    the first, repositories for the second and a reconciler for the third,
    with pluggable trigger backends.

┌──────────────────────────────────────────────────────────────────────────────┐
│  JOBSPINE SCHEDULER                                                           │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐    │
│  │   from jobspine.core.schema_loader import connect, apply_all_schemas │    │
│  │   from jobspine.core.scheduling import JobRequest                    │    │
│  │   from jobspine.core.scheduling import create_job_scheduler          │    │
│  │                                                                      │    │
│  │   conn = connect("jobs.db")                                          │    │
│  │   apply_all_schemas(conn)                                            │    │
│  │   scheduler = create_job_scheduler(conn, executor=submit_batch)      │    │
│  │   scheduler.start()                                                  │    │
│  │                                                                      │    │
│  │   scheduler.engine.add_job("BA", "accuracy", "measure-1", JobRequest(│    │
│  │       source_pattern="/in/*", target_pattern="/out",                 │    │
│  │       job_start_time="1700000000000", period_time="300",             │    │
│  │   ))                                                                 │    │
│  └──────────────────────────────────────────────────────────────────────┘    │
│                                                                               │
│  Architecture:                                                                │
│                                                                               │
│   ┌──────────────┐  fire(key)  ┌─────────────────┐  executor  ┌──────────┐   │
│   │ Trigger      │ ──────────► │ SchedulerEngine │ ─────────► │ cluster  │   │
│   │ Backend      │ ◄────────── │                 │            └────┬─────┘   │
│   └──────────────┘  register   └────────┬────────┘                 │         │
│     • thread (default)                  │ definitions              │ status  │
│     • apscheduler                       ▼                          ▼         │
│                                 ┌───────────────┐  poll  ┌────────────────┐  │
│   ┌──────────────┐  tick        │ job_instances │ ◄───── │ Instance       │  │
│   │ Reconcile    │ ───────────► │               │        │ Reconciler     │  │
│   │ Ticker       │              └───────┬───────┘        └────────────────┘  │
│   └──────────────┘                      │ latest per job                     │
│                                         ▼                                    │
│                                 ┌───────────────┐                            │
│                                 │ Health        │ → JobHealth                │
│                                 │ Aggregator    │                            │
│                                 └───────────────┘                            │
│                                                                               │
│  Dependencies:                                                                │
│  - httpx: remote status polling                                              │
│  - apscheduler: APScheduler trigger backend (optional)                       │
│                                                                               │
│  Tables (from 01_jobs.sql):                                                   │
│  - job_definitions: Job metadata                                             │
│  - job_instances: One row per firing                                         │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Constructing scheduler components individually
    ✅ ``create_job_scheduler(conn, executor=...)`` factory function
    ❌ Polling the same job from two threads at once
    ✅ ``InstanceReconciler.update_instances()`` holds a per-key lock
"""

from __future__ import annotations

from jobspine.core.logging import configure_logging, get_logger
from jobspine.core.protocols import Connection
from jobspine.core.repositories.jobs import JobDefinitionRepository, JobInstanceRepository
from jobspine.core.schema_loader import apply_all_schemas, connect
from jobspine.core.settings import SchedulerSettings, load_scheduler_settings
from jobspine.core.timestamps import Clock, now_ms

# Alignment
from .alignment import align_start_time, parse_period_seconds, parse_start_time_ms

# Engine
from .engine import JobExecutor, JobRequest, SchedulerEngine

# Health
from .health import HealthAggregator

# Lock Manager
from .lock_manager import KeyedLockRegistry

# Protocol
from .protocol import FireCallback, TriggerBackend

# Reconciler
from .reconciler import InstanceReconciler, ReconcileResult

# Service
from .service import JobScheduler
from .status_client import StatusClient

# Backends
from .thread_backend import ThreadTriggerBackend
from .ticker import ReconcileTicker

logger = get_logger(__name__)

# Optional backends (lazy imports, require extras)
# APSchedulerTriggerBackend:  pip install jobspine[apscheduler]


def __getattr__(name: str):  # noqa: N807
    """Lazy import optional backends to avoid ImportError when extras are missing."""
    if name == "APSchedulerTriggerBackend":
        from .apscheduler_backend import APSchedulerTriggerBackend

        return APSchedulerTriggerBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Protocol
    "TriggerBackend",
    "FireCallback",
    # Backends
    "ThreadTriggerBackend",
    "APSchedulerTriggerBackend",
    # Alignment
    "align_start_time",
    "parse_period_seconds",
    "parse_start_time_ms",
    # Engine
    "SchedulerEngine",
    "JobRequest",
    "JobExecutor",
    # Reconciler
    "InstanceReconciler",
    "ReconcileResult",
    "StatusClient",
    "ReconcileTicker",
    # Health
    "HealthAggregator",
    # Lock Manager
    "KeyedLockRegistry",
    # Service
    "JobScheduler",
    "create_job_scheduler",
]


def _create_backend(settings: SchedulerSettings, clock: Clock) -> TriggerBackend:
    if settings.trigger_backend == "apscheduler":
        from .apscheduler_backend import APSchedulerTriggerBackend

        return APSchedulerTriggerBackend()
    return ThreadTriggerBackend(clock=clock)


def create_job_scheduler(
    conn: Connection | None = None,
    settings: SchedulerSettings | None = None,
    backend: TriggerBackend | None = None,
    executor: JobExecutor | None = None,
    status_client: StatusClient | None = None,
    clock: Clock = now_ms,
) -> JobScheduler:
    """Factory function to create a complete job scheduler.

    Without ``conn`` the scheduler runs standalone: it configures logging
    from ``settings.log_level`` (``DEBUG`` when ``settings.debug``), opens
    ``settings.database_path``, applies the schema and closes the database
    on ``stop()``.

    Args:
        conn: Database connection with ``01_jobs.sql`` applied
        settings: Scheduler settings (default: read from ``JOBSPINE_*`` env;
            invalid values raise ``ConfigError``)
        backend: Trigger backend (default: chosen by ``settings.trigger_backend``)
        executor: Called with the job definition on every firing
        status_client: Remote status client (default: built from settings)
        clock: Epoch-millisecond clock

    Returns:
        Configured JobScheduler, not yet started

    Example:
        >>> scheduler = create_job_scheduler(conn, executor=submit_batch)
        >>> scheduler.start()
    """
    settings = settings or load_scheduler_settings()

    owned_connection = None
    if conn is None:
        configure_logging(level="DEBUG" if settings.debug else settings.log_level)
        conn = owned_connection = connect(settings.database_path)
        apply_all_schemas(conn)
        logger.info("job_database_opened", database_path=settings.database_path)

    backend = backend or _create_backend(settings, clock)
    status_client = status_client or StatusClient(
        settings.status_base_uri, timeout=settings.status_timeout_seconds
    )

    definitions = JobDefinitionRepository(conn, clock=clock)
    instances = JobInstanceRepository(conn, clock=clock)

    engine = SchedulerEngine(backend, definitions, instances, executor=executor, clock=clock)
    reconciler = InstanceReconciler(instances, status_client)
    health = HealthAggregator(backend, instances)
    ticker = ReconcileTicker(interval_seconds=settings.reconcile_interval_seconds)

    return JobScheduler(
        engine=engine,
        reconciler=reconciler,
        health=health,
        ticker=ticker,
        status_client=status_client,
        owned_connection=owned_connection,
    )
