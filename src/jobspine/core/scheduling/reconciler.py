"""Instance reconciliation against the remote status service.

┌──────────────────────────────────────────────────────────────────────────────┐
│  INSTANCE RECONCILER                                                          │
│                                                                               │
│  update_instances(group, job_name)          hold(key): one poll per key      │
│      │                                                                        │
│      for each instance not in {success, unknown}:                             │
│          StatusClient.fetch(session_id)                                       │
│            ├── RemoteStatusUnavailable ──► state = "unknown", app_id kept     │
│            ├── MalformedRemoteResponse ──► untouched (retried next tick)      │
│            ├── state / appId missing   ──► untouched                          │
│            └── ok ──────────────────────► state, appId persisted             │
│                                                                               │
│  State machine:                                                               │
│      starting ──► running ──► success                                         │
│         │            │                                                        │
│         ├──► dead ◄──┤                                                        │
│         └──► unknown ◄┘        success / unknown: never polled again          │
└──────────────────────────────────────────────────────────────────────────────┘

A failure while polling one instance never stops the others; a repository
failure aborts only the key being reconciled.
"""

from __future__ import annotations

from dataclasses import dataclass

from jobspine.core.errors import (
    MalformedRemoteResponse,
    ReconciliationError,
    RemoteStatusUnavailable,
    ValidationError,
)
from jobspine.core.logging import get_logger
from jobspine.core.models.jobs import InstanceState, JobInstance, JobKey
from jobspine.core.repositories.jobs import JobInstanceRepository

from .lock_manager import KeyedLockRegistry
from .status_client import StatusClient

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome counters of one ``update_instances`` call."""

    polled: int = 0
    updated: int = 0
    unknown: int = 0
    skipped: int = 0


class InstanceReconciler:
    """Refreshes cached instance state from the remote status service.

    Example:
        >>> reconciler = InstanceReconciler(instances, StatusClient(base_uri))
        >>> reconciler.update_instances("BA", "accuracy")
        ReconcileResult(polled=2, updated=1, unknown=1, skipped=0)
    """

    def __init__(self, instances: JobInstanceRepository, client: StatusClient) -> None:
        self.instances = instances
        self.client = client
        self._locks = KeyedLockRegistry()

    def update_instances(self, group: str, job_name: str) -> ReconcileResult:
        """Poll every non-terminal instance of one job and persist the result.

        Raises:
            ReconciliationError: The instance repository failed.
        """
        result = ReconcileResult()
        with self._locks.hold(JobKey(group, job_name)):
            for instance in self._load(group, job_name):
                if instance.is_terminal:
                    continue
                result.polled += 1
                self._reconcile_one(instance, result)
        logger.debug(
            "instances_reconciled",
            group=group,
            job_name=job_name,
            polled=result.polled,
            updated=result.updated,
            unknown=result.unknown,
            skipped=result.skipped,
        )
        return result

    def find_instances_of_job(
        self, group: str, job_name: str, page: int, size: int
    ) -> list[JobInstance]:
        """Reconcile the job, then return one page of its instances (newest first).

        A reconciliation failure is logged and the cached rows are returned.
        """
        if page < 0:
            raise ValidationError("page must be >= 0", field="page", value=page)
        if size <= 0:
            raise ValidationError("size must be > 0", field="size", value=size)
        try:
            self.update_instances(group, job_name)
        except Exception:
            logger.exception("reconcile_on_read_failed", group=group, job_name=job_name)
        return self.instances.find_by_job(group, job_name, page=page, size=size)

    def start_update_instances(self) -> int:
        """Reconcile every job that has instances. Returns the number reconciled."""
        try:
            keys = self.instances.find_job_keys()
        except Exception:
            logger.exception("reconcile_tick_enumeration_failed")
            return 0

        reconciled = 0
        for key in keys:
            try:
                self.update_instances(key.group, key.name)
            except Exception:
                logger.exception("reconcile_job_failed", group=key.group, job_name=key.name)
                continue
            reconciled += 1
        logger.info("reconcile_tick_completed", jobs=len(keys), reconciled=reconciled)
        return reconciled

    # === Helpers ===

    def _load(self, group: str, job_name: str) -> list[JobInstance]:
        try:
            return self.instances.find_by_job(group, job_name)
        except Exception as e:
            raise ReconciliationError(
                f"Failed to load instances of {group}.{job_name}", cause=e
            ).with_context(group=group, job_name=job_name) from e

    def _reconcile_one(self, instance: JobInstance, result: ReconcileResult) -> None:
        log = logger.bind(
            group=instance.group_name,
            job_name=instance.job_name,
            session_id=instance.session_id,
            instance_id=instance.id,
        )
        try:
            document = self.client.fetch(instance.session_id)
        except RemoteStatusUnavailable as e:
            log.warning("status_unavailable", **e.to_dict())
            self._persist(instance, InstanceState.UNKNOWN.value, instance.app_id)
            result.unknown += 1
            return
        except MalformedRemoteResponse as e:
            log.warning("status_malformed", **e.to_dict())
            result.skipped += 1
            return

        state = document.get("state")
        app_id = document.get("appId")
        if state is None or app_id is None:
            log.debug(
                "status_incomplete", has_state=state is not None, has_app_id=app_id is not None
            )
            result.skipped += 1
            return

        self._persist(instance, str(state), str(app_id))
        result.updated += 1
        if state != instance.state:
            log.info("instance_state_changed", previous=instance.state, state=state)

    def _persist(self, instance: JobInstance, state: str, app_id: str | None) -> None:
        try:
            self.instances.update_state_and_app_id(instance.id, state, app_id)
        except Exception as e:
            raise ReconciliationError(
                f"Failed to update instance {instance.id}", cause=e
            ).with_context(
                group=instance.group_name,
                job_name=instance.job_name,
                session_id=instance.session_id,
                instance_id=instance.id,
            ) from e
