"""Trigger backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TRIGGER BACKEND PROTOCOL                                                     │
│                                                                               │
│  The backend owns the trigger registry: one fixed-interval trigger per        │
│  JobKey. It decides WHEN a job fires and calls the fire callback; the         │
│  SchedulerEngine decides WHAT a trigger looks like and what firing does.      │
│                                                                               │
│   ┌──────────────────────┐   register / unregister   ┌───────────────────┐   │
│   │  SchedulerEngine     │ ────────────────────────► │  TriggerBackend   │   │
│   │                      │   get_trigger / list_*    │                   │   │
│   │  fire(key)  ◄────────┼───────────────────────────┤  (thread,         │   │
│   └──────────────────────┘        fire callback      │   apscheduler)    │   │
│                                                      └───────────────────┘   │
│                                                                               │
│  Contract:                                                                    │
│  - register() replaces an existing trigger for the key atomically: a          │
│    concurrent reader sees either the old or the new trigger, never none.      │
│  - unregister() is idempotent.                                                │
│  - Failures surface as SchedulingBackendError.                                │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from jobspine.core.models.jobs import JobKey, TriggerInfo

FireCallback = Callable[[JobKey], None]


@runtime_checkable
class TriggerBackend(Protocol):
    """Protocol for pluggable trigger engines.

    Implementations:
        - ThreadTriggerBackend: Zero-dependency threading-based (default)
        - APSchedulerTriggerBackend: APScheduler-based
    """

    name: str

    def set_fire_callback(self, callback: FireCallback) -> None:
        """Install the callable invoked with the key on every firing."""
        ...

    def register(self, key: JobKey, interval_seconds: int, start_at: int) -> TriggerInfo:
        """Register (or atomically replace) a repeat-forever trigger.

        Args:
            key: Trigger identity.
            interval_seconds: Fixed interval between firings.
            start_at: First fire time, epoch milliseconds.
        """
        ...

    def unregister(self, key: JobKey) -> bool:
        """Remove the trigger. Returns False if none was registered."""
        ...

    def get_trigger(self, key: JobKey) -> TriggerInfo | None:
        """Current snapshot of the trigger, or None."""
        ...

    def pause(self, key: JobKey) -> bool:
        """Stop firing without removing the trigger."""
        ...

    def resume(self, key: JobKey) -> bool:
        """Resume a paused trigger."""
        ...

    def list_groups(self) -> list[str]:
        """Distinct groups having at least one registered trigger."""
        ...

    def list_keys(self, group: str) -> list[JobKey]:
        """Registered keys of one group."""
        ...

    def start(self) -> None:
        """Begin firing triggers."""
        ...

    def shutdown(self) -> None:
        """Stop firing; registered triggers are kept."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend`` and ``triggers``."""
        ...
