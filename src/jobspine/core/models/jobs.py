"""Job scheduling models (01_jobs.sql).

Typed representations of job definitions, triggers, job instances and the
fleet health aggregate so the scheduler engine, reconciler and health
aggregator work with structured objects instead of rows.

Timestamps are integer epoch milliseconds throughout.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

# Wire sentinel for a fire time the trigger does not have
NO_FIRE_TIME = -1


@dataclass(frozen=True, order=True)
class JobKey:
    """Identity of a job definition and its trigger."""

    group: str
    name: str

    def __str__(self) -> str:
        return f"{self.group}.{self.name}"


class TriggerState(str, Enum):
    """Runtime state of a trigger as reported by the backend."""

    NORMAL = "NORMAL"
    PAUSED = "PAUSED"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    BLOCKED = "BLOCKED"
    NONE = "NONE"


class InstanceState(str, Enum):
    """Known remote session states."""

    STARTING = "starting"
    RUNNING = "running"
    DEAD = "dead"
    SUCCESS = "success"
    UNKNOWN = "unknown"


# Polling stops permanently once an instance reaches one of these
TERMINAL_STATES = frozenset({InstanceState.SUCCESS.value, InstanceState.UNKNOWN.value})


def is_terminal(state: str | None) -> bool:
    """True when no further polling should happen for this state."""
    return state in TERMINAL_STATES


# ---------------------------------------------------------------------------
# job_definitions
# ---------------------------------------------------------------------------


@dataclass
class JobDefinition:
    """Job definition row (``job_definitions``).

    ``job_start_time`` and ``period_time`` keep the strings exactly as the
    caller submitted them; the aligned first fire time lives on the trigger.
    """

    group_name: str = ""
    job_name: str = ""
    measure: str = ""
    source_pattern: str | None = None
    target_pattern: str | None = None
    data_start_timestamp: str | None = None  # unvalidated, passed through
    job_start_time: str = ""  # epoch ms, as submitted
    period_time: str = ""  # seconds, as submitted
    created_at: int = 0
    updated_at: int = 0

    @property
    def key(self) -> JobKey:
        return JobKey(self.group_name, self.job_name)


# ---------------------------------------------------------------------------
# Trigger (owned by the trigger backend)
# ---------------------------------------------------------------------------


@dataclass
class TriggerInfo:
    """Snapshot of one registered trigger."""

    key: JobKey
    interval_seconds: int
    start_at: int
    next_fire_time: int | None = None
    previous_fire_time: int | None = None
    state: TriggerState = TriggerState.NORMAL


# ---------------------------------------------------------------------------
# job_instances
# ---------------------------------------------------------------------------


@dataclass
class JobInstance:
    """One firing of a job definition (``job_instances``).

    ``state`` is stored verbatim from the remote service and may hold values
    outside :class:`InstanceState`.
    """

    id: int | None = None
    group_name: str = ""
    job_name: str = ""
    session_id: str = ""
    state: str = InstanceState.STARTING.value
    app_id: str | None = None
    timestamp: int = 0

    @property
    def key(self) -> JobKey:
        return JobKey(self.group_name, self.job_name)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass
class JobSummary:
    """One ``list_jobs()`` record: trigger state joined with job metadata."""

    job_name: str
    group_name: str
    next_fire_time: int
    previous_fire_time: int
    trigger_state: TriggerState
    measure: str
    source_pattern: str | None
    target_pattern: str | None
    data_start_timestamp: str | None
    job_start_time: str
    period_time: str

    def to_dict(self) -> dict[str, Any]:
        """Wire shape; ``dataStartTimestamp`` only when non-empty."""
        result: dict[str, Any] = {
            "jobName": self.job_name,
            "groupName": self.group_name,
            "nextFireTime": self.next_fire_time,
            "previousFireTime": self.previous_fire_time,
            "triggerState": self.trigger_state.value,
            "measure": self.measure,
            "sourcePattern": self.source_pattern,
            "targetPattern": self.target_pattern,
            "jobStartTime": self.job_start_time,
            "periodTime": self.period_time,
        }
        if self.data_start_timestamp:
            result["dataStartTimestamp"] = self.data_start_timestamp
        return result


@dataclass
class JobHealth:
    """Fleet health aggregate. Never persisted."""

    healthy_count: int = 0
    invalid_count: int = 0
    total_count: int = 0  # distinct trigger groups
    job_count: int = 0  # distinct job keys

    def to_dict(self) -> dict[str, int]:
        return {
            "healthyCount": self.healthy_count,
            "invalidCount": self.invalid_count,
            "totalCount": self.total_count,
            "jobCount": self.job_count,
        }
