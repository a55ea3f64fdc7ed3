"""Scheduler engine: job definitions and their fixed-interval triggers.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER ENGINE                                                             │
│                                                                               │
│  add_job(group, name, measure, request)                                       │
│      │                                                                        │
│      ├── parse period / start time ─────────── invalid ──► False             │
│      ├── align start onto its period grid (≥ now)                             │
│      │                                                                        │
│      └── hold(key) ─┐                                                         │
│                     ├── backend.register(key, period, start')   atomic swap   │
│                     ├── definitions.update() or create()                      │
│                     └── on failure: restore previous trigger ──► False        │
│                                                                               │
│  delete_job(group, name)                                                      │
│      └── hold(key) ── unregister ── one transaction:                          │
│                          delete definition, delete instances                  │
│                       on failure: restore previous trigger ──► False          │
│                                                                               │
│  load_triggers()  ◄── JobScheduler.start(), one trigger per stored definition │
│                                                                               │
│  fire(key)  ◄── backend worker thread                                         │
│      └── load definition ── JobExecutor(definition)                           │
└──────────────────────────────────────────────────────────────────────────────┘

Mutating calls return ``True``/``False`` instead of raising: a rejected
request leaves both the trigger registry and the stored definition as they
were before the call.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from jobspine.core.errors import JobSpineError, SchedulingBackendError, ValidationError
from jobspine.core.logging import get_logger
from jobspine.core.models.jobs import (
    NO_FIRE_TIME,
    JobDefinition,
    JobKey,
    JobSummary,
    TriggerInfo,
    TriggerState,
)
from jobspine.core.repositories.jobs import JobDefinitionRepository, JobInstanceRepository
from jobspine.core.timestamps import Clock, now_ms

from .alignment import align_start_time, parse_period_seconds, parse_start_time_ms
from .lock_manager import KeyedLockRegistry
from .protocol import TriggerBackend

logger = get_logger(__name__)

# Submits one firing of a job to the compute cluster
JobExecutor = Callable[[JobDefinition], None]


@dataclass
class JobRequest:
    """Schedule request for one job.

    ``job_start_time`` (epoch milliseconds) and ``period_time`` (seconds)
    are strings and are stored exactly as given.
    """

    source_pattern: str | None = None
    target_pattern: str | None = None
    data_start_timestamp: str | None = None
    job_start_time: str = ""
    period_time: str = ""


class SchedulerEngine:
    """Owns the job definitions and keeps one trigger registered per job.

    Example:
        >>> engine = SchedulerEngine(ThreadTriggerBackend(), definitions, instances)
        >>> engine.add_job("BA", "accuracy", "measure-1", JobRequest(
        ...     source_pattern="/in/*", target_pattern="/out",
        ...     job_start_time="1700000000000", period_time="300",
        ... ))
        True
        >>> [s.to_dict()["nextFireTime"] for s in engine.list_jobs()]
    """

    def __init__(
        self,
        backend: TriggerBackend,
        definitions: JobDefinitionRepository,
        instances: JobInstanceRepository,
        executor: JobExecutor | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.backend = backend
        self.definitions = definitions
        self.instances = instances
        self.executor = executor
        self._clock = clock
        self._locks = KeyedLockRegistry()
        backend.set_fire_callback(self.fire)

    # === Reads ===

    def list_jobs(self) -> list[JobSummary]:
        """Every registered trigger joined with its stored definition."""
        summaries = []
        for group in self.backend.list_groups():
            for key in self.backend.list_keys(group):
                summary = self.get_job(key.group, key.name)
                if summary is not None:
                    summaries.append(summary)
        return summaries

    def get_job(self, group: str, name: str) -> JobSummary | None:
        key = JobKey(group, name)
        trigger = self.backend.get_trigger(key)
        if trigger is None:
            return None
        definition = self.definitions.get(key)
        if definition is None:
            logger.warning("trigger_without_definition", group=group, job_name=name)
            return None
        return _summarize(definition, trigger)

    # === Mutations ===

    def add_job(self, group: str, name: str, measure_name: str, request: JobRequest) -> bool:
        """Create or update a job and (re)register its trigger.

        Returns:
            True when both the trigger and the definition were written.
        """
        key = JobKey(group, name)
        try:
            period = parse_period_seconds(request.period_time)
            start = parse_start_time_ms(request.job_start_time)
            start_at = align_start_time(start, period, self._clock())
        except ValidationError as e:
            logger.warning("job_request_invalid", group=group, job_name=name, **e.to_dict())
            return False

        with self._locks.hold(key):
            previous_trigger = self.backend.get_trigger(key)
            try:
                self.backend.register(key, period, start_at)
            except SchedulingBackendError as e:
                logger.error("trigger_register_failed", group=group, job_name=name, **e.to_dict())
                return False

            definition = JobDefinition(
                group_name=group,
                job_name=name,
                measure=measure_name,
                source_pattern=request.source_pattern,
                target_pattern=request.target_pattern,
                data_start_timestamp=request.data_start_timestamp,
                job_start_time=request.job_start_time,
                period_time=request.period_time,
            )
            try:
                existing = self.definitions.get(key)
                if existing is not None:
                    definition.created_at = existing.created_at
                    self.definitions.update(definition)
                else:
                    self.definitions.create(definition)
            except Exception:
                logger.exception("job_definition_write_failed", group=group, job_name=name)
                self._restore_trigger(key, previous_trigger)
                return False

        logger.info(
            "job_scheduled",
            group=group,
            job_name=name,
            period_seconds=period,
            start_at=start_at,
            replaced=previous_trigger is not None,
        )
        return True

    def delete_job(self, group: str, name: str) -> bool:
        """Remove the trigger, the definition and every instance of the job."""
        key = JobKey(group, name)
        with self._locks.hold(key):
            previous_trigger = self.backend.get_trigger(key)
            try:
                self.backend.unregister(key)
            except SchedulingBackendError as e:
                logger.error("trigger_unregister_failed", group=group, job_name=name, **e.to_dict())
                return False
            try:
                with self.definitions.transaction():
                    self.definitions.delete(key)
                    removed = self.instances.delete_by_job(group, name)
            except Exception:
                logger.exception("job_delete_failed", group=group, job_name=name)
                self._restore_trigger(key, previous_trigger)
                return False
        logger.info("job_deleted", group=group, job_name=name, instances_removed=removed)
        return True

    def pause_job(self, group: str, name: str) -> bool:
        key = JobKey(group, name)
        with self._locks.hold(key):
            paused = self.backend.pause(key)
        logger.info("job_paused", group=group, job_name=name, found=paused)
        return paused

    def resume_job(self, group: str, name: str) -> bool:
        key = JobKey(group, name)
        with self._locks.hold(key):
            resumed = self.backend.resume(key)
        logger.info("job_resumed", group=group, job_name=name, found=resumed)
        return resumed

    def load_triggers(self) -> int:
        """Register a trigger for every stored definition that has none.

        Backends keep triggers in memory, so this runs before the backend
        starts. Stored start times are re-aligned to now. Pause state is not
        persisted: reloaded triggers start NORMAL.

        Returns:
            Number of triggers registered.
        """
        loaded = 0
        for definition in self.definitions.list_all():
            key = definition.key
            with self._locks.hold(key):
                if self.backend.get_trigger(key) is not None:
                    continue
                try:
                    period = parse_period_seconds(definition.period_time)
                    start = parse_start_time_ms(definition.job_start_time)
                    start_at = align_start_time(start, period, self._clock())
                    self.backend.register(key, period, start_at)
                except (ValidationError, SchedulingBackendError) as e:
                    logger.error(
                        "trigger_load_failed", group=key.group, job_name=key.name, **e.to_dict()
                    )
                    continue
            loaded += 1
        logger.info("triggers_loaded", loaded=loaded)
        return loaded

    # === Firing ===

    def fire(self, key: JobKey) -> None:
        """Trigger callback: hand the job definition to the executor."""
        definition = self.definitions.get(key)
        if definition is None:
            logger.warning("fired_without_definition", group=key.group, job_name=key.name)
            return
        if self.executor is None:
            logger.info("job_fired", group=key.group, job_name=key.name, executor=None)
            return
        try:
            self.executor(definition)
        except Exception:
            logger.exception("job_executor_failed", group=key.group, job_name=key.name)
            return
        logger.info("job_fired", group=key.group, job_name=key.name)

    # === Helpers ===

    def _restore_trigger(self, key: JobKey, previous: TriggerInfo | None) -> None:
        try:
            if previous is None:
                self.backend.unregister(key)
            else:
                start_at = align_start_time(
                    previous.start_at, previous.interval_seconds, self._clock()
                )
                self.backend.register(key, previous.interval_seconds, start_at)
                if previous.state is TriggerState.PAUSED:
                    self.backend.pause(key)
        except JobSpineError as e:
            logger.error("trigger_restore_failed", group=key.group, job_name=key.name, **e.to_dict())


def _summarize(definition: JobDefinition, trigger: TriggerInfo) -> JobSummary:
    return JobSummary(
        job_name=definition.job_name,
        group_name=definition.group_name,
        next_fire_time=_or_sentinel(trigger.next_fire_time),
        previous_fire_time=_or_sentinel(trigger.previous_fire_time),
        trigger_state=trigger.state,
        measure=definition.measure,
        source_pattern=definition.source_pattern,
        target_pattern=definition.target_pattern,
        data_start_timestamp=definition.data_start_timestamp,
        job_start_time=definition.job_start_time,
        period_time=definition.period_time,
    )


def _or_sentinel(epoch_ms: int | None) -> int:
    return NO_FIRE_TIME if epoch_ms is None else epoch_ms
