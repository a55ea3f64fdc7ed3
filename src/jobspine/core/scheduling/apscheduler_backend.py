"""APScheduler-based trigger backend.

Wraps APScheduler 3.x ``BackgroundScheduler`` so each job key becomes one
APScheduler job with an ``IntervalTrigger``. Use it when the richer
APScheduler job-store and executor features are wanted; the
zero-dependency ``ThreadTriggerBackend`` is the default.

Requires the ``[apscheduler]`` extra::

    pip install jobspine[apscheduler]

.. note::

    APScheduler does not track the previous fire time of a job, so the
    adapter records it from ``EVENT_JOB_SUBMITTED`` events.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any

from jobspine.core.errors import SchedulingBackendError
from jobspine.core.logging import get_logger
from jobspine.core.models.jobs import JobKey, TriggerInfo, TriggerState
from jobspine.core.timestamps import from_datetime, to_datetime

from .protocol import FireCallback

logger = get_logger(__name__)


def _require_apscheduler():
    """Validate that apscheduler is installed."""
    try:
        from apscheduler.schedulers.background import BackgroundScheduler  # noqa: F401

        return BackgroundScheduler
    except ImportError:
        raise ImportError(
            "APScheduler is required for APSchedulerTriggerBackend. "
            "Install it with: pip install jobspine[apscheduler]"
        ) from None


def _job_id(key: JobKey) -> str:
    return json.dumps([key.group, key.name])


def _key_of(job_id: str) -> JobKey:
    group, name = json.loads(job_id)
    return JobKey(group, name)


class APSchedulerTriggerBackend:
    """APScheduler-based trigger backend.

    Implements the ``TriggerBackend`` protocol. Registration replaces an
    existing job under the adapter lock, so readers never observe a key
    without its trigger.

    Example::

        >>> backend = APSchedulerTriggerBackend()
        >>> backend.set_fire_callback(engine.fire)
        >>> backend.register(JobKey("BA", "accuracy"), 300, start_at=now_ms())
        >>> backend.start()
        >>> # … later …
        >>> backend.shutdown()
    """

    name: str = "apscheduler"

    def __init__(self, scheduler: Any | None = None) -> None:
        if scheduler is None:
            BackgroundScheduler = _require_apscheduler()  # noqa: N806
            scheduler = BackgroundScheduler(timezone=UTC)
        self._scheduler = scheduler
        self._lock = threading.RLock()
        self._callback: FireCallback | None = None
        self._previous: dict[JobKey, int] = {}
        self._specs: dict[JobKey, tuple[int, int]] = {}

        from apscheduler.events import EVENT_JOB_SUBMITTED

        self._scheduler.add_listener(self._on_submitted, EVENT_JOB_SUBMITTED)

    # ------------------------------------------------------------------
    # TriggerBackend protocol
    # ------------------------------------------------------------------

    def set_fire_callback(self, callback: FireCallback) -> None:
        self._callback = callback

    def register(self, key: JobKey, interval_seconds: int, start_at: int) -> TriggerInfo:
        from apscheduler.triggers.interval import IntervalTrigger

        trigger = IntervalTrigger(
            seconds=interval_seconds, start_date=to_datetime(start_at), timezone=UTC
        )
        job_id = _job_id(key)
        with self._lock:
            try:
                # A stopped scheduler queues jobs as pending and only dedupes
                # them on start, so replace explicitly there
                if not self._scheduler.running and self._scheduler.get_job(job_id):
                    self._scheduler.remove_job(job_id)
                self._scheduler.add_job(
                    self._fire,
                    trigger,
                    args=(key.group, key.name),
                    id=job_id,
                    name=str(key),
                    replace_existing=True,
                    coalesce=True,
                    max_instances=1,
                    next_run_time=trigger.get_next_fire_time(None, datetime.now(UTC)),
                )
            except Exception as e:
                raise SchedulingBackendError(
                    f"Failed to register trigger {key}", cause=e
                ).with_context(group=key.group, job_name=key.name) from e
            self._previous.pop(key, None)
            self._specs[key] = (interval_seconds, start_at)
            info = self.get_trigger(key)
        logger.debug(
            "trigger_registered",
            group=key.group,
            job_name=key.name,
            interval_seconds=interval_seconds,
            start_at=start_at,
        )
        return info  # type: ignore[return-value]

    def unregister(self, key: JobKey) -> bool:
        from apscheduler.jobstores.base import JobLookupError

        with self._lock:
            try:
                self._scheduler.remove_job(_job_id(key))
            except JobLookupError:
                return False
            except Exception as e:
                raise SchedulingBackendError(
                    f"Failed to unregister trigger {key}", cause=e
                ).with_context(group=key.group, job_name=key.name) from e
            finally:
                self._previous.pop(key, None)
                self._specs.pop(key, None)
        logger.debug("trigger_unregistered", group=key.group, job_name=key.name)
        return True

    def get_trigger(self, key: JobKey) -> TriggerInfo | None:
        with self._lock:
            job = self._scheduler.get_job(_job_id(key))
            if job is None:
                return None
            interval_seconds, start_at = self._specs.get(
                key, (int(job.trigger.interval.total_seconds()), from_datetime(job.trigger.start_date))
            )
            next_run = job.next_run_time
            state = TriggerState.NORMAL if next_run else TriggerState.PAUSED
            if next_run is None:
                # Where resume_job would put it
                next_run = job.trigger.get_next_fire_time(None, datetime.now(UTC))
            return TriggerInfo(
                key=key,
                interval_seconds=interval_seconds,
                start_at=start_at,
                next_fire_time=from_datetime(next_run) if next_run else None,
                previous_fire_time=self._previous.get(key),
                state=state,
            )

    def pause(self, key: JobKey) -> bool:
        from apscheduler.jobstores.base import JobLookupError

        with self._lock:
            try:
                self._scheduler.pause_job(_job_id(key))
            except JobLookupError:
                return False
        return True

    def resume(self, key: JobKey) -> bool:
        from apscheduler.jobstores.base import JobLookupError

        with self._lock:
            try:
                self._scheduler.resume_job(_job_id(key))
            except JobLookupError:
                return False
        return True

    def list_groups(self) -> list[str]:
        with self._lock:
            return sorted({_key_of(job.id).group for job in self._scheduler.get_jobs()})

    def list_keys(self, group: str) -> list[JobKey]:
        with self._lock:
            keys = (_key_of(job.id) for job in self._scheduler.get_jobs())
            return sorted(key for key in keys if key.group == group)

    def start(self, paused: bool = False) -> None:
        """Start the APScheduler loop (``paused=True`` registers without firing)."""
        if self._scheduler.running:
            logger.warning("apscheduler_backend_already_started")
            return
        self._scheduler.start(paused=paused)
        logger.info("apscheduler_backend_started", paused=paused)

    def shutdown(self) -> None:
        """Stop the APScheduler loop, waiting for running firings."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=True)
            logger.info("apscheduler_backend_stopped")

    def health(self) -> dict[str, Any]:
        running = bool(getattr(self._scheduler, "running", False))
        return {
            "healthy": running,
            "backend": self.name,
            "triggers": len(self._scheduler.get_jobs()),
        }

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def _on_submitted(self, event: Any) -> None:
        try:
            key = _key_of(event.job_id)
        except (TypeError, ValueError):
            return
        if event.scheduled_run_times:
            with self._lock:
                self._previous[key] = from_datetime(max(event.scheduled_run_times))

    def _fire(self, group: str, name: str) -> None:
        key = JobKey(group, name)
        if self._callback is None:
            logger.debug("trigger_fired_without_callback", group=group, job_name=name)
            return
        try:
            self._callback(key)
        except Exception:
            logger.exception("trigger_callback_failed", group=group, job_name=name)
