"""Fleet health aggregation.

Classifies every scheduled job by its most recent instance::

    latest instance      classification
    ─────────────────    ──────────────
    (none)               not counted
    "starting"           healthy
    anything else        invalid

``total_count`` is the number of distinct trigger *groups*, not jobs, so
``healthy_count + invalid_count`` may exceed it when a group holds several
jobs. ``job_count`` carries the number of distinct job keys.
"""

from __future__ import annotations

from typing import Any

from jobspine.core.logging import get_logger
from jobspine.core.models.jobs import InstanceState, JobHealth
from jobspine.core.repositories.jobs import JobInstanceRepository

from .protocol import TriggerBackend

logger = get_logger(__name__)


class HealthAggregator:
    """Computes :class:`JobHealth` from the trigger registry and instances."""

    def __init__(self, backend: TriggerBackend, instances: JobInstanceRepository) -> None:
        self.backend = backend
        self.instances = instances

    def get_health_info(self) -> JobHealth:
        health = JobHealth()
        groups = self.backend.list_groups()
        health.total_count = len(groups)
        for group in groups:
            for key in self.backend.list_keys(group):
                health.job_count += 1
                latest = self.instances.latest_of_job(key.group, key.name)
                if latest is None:
                    continue
                if latest.state == InstanceState.STARTING.value:
                    health.healthy_count += 1
                else:
                    health.invalid_count += 1
        logger.debug("health_aggregated", **health.to_dict())
        return health

    def report(self) -> dict[str, Any]:
        """Health counts plus the trigger backend's own status."""
        return {**self.get_health_info().to_dict(), "backend": self.backend.health()}
