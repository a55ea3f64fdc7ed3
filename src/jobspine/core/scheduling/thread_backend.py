"""Zero-dependency threading-based trigger backend.

This is the DEFAULT trigger backend. It keeps the trigger registry in
memory and uses one daemon thread to fire due triggers onto a small
worker pool.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD TRIGGER BACKEND                                                       │
│                                                                               │
│   register() / unregister() / pause() / resume()                              │
│      │   (under condition lock, then notify)                                  │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                 │
│   │              Daemon Thread (loop)                       │                 │
│   │                                                         │                 │
│   │   while running:                                        │                 │
│   │       due = triggers with next_fire_time <= now         │                 │
│   │       for each due: previous = next; next += interval   │                 │
│   │       pool.submit(fire_callback, key)  ◄──── Invoke     │                 │
│   │       cond.wait(until earliest next_fire_time)          │                 │
│   └─────────────────────────────────────────────────────────┘                 │
│                                                                               │
│  Misfires coalesce: a trigger that fell several periods behind fires once     │
│  and its next fire time jumps to the first grid point after now.              │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from jobspine.core.logging import get_logger
from jobspine.core.models.jobs import JobKey, TriggerInfo, TriggerState
from jobspine.core.timestamps import Clock, now_ms

from .protocol import FireCallback

logger = get_logger(__name__)

# Upper bound on a single sleep so clock jumps are noticed
_MAX_WAIT_SECONDS = 1.0


@dataclass
class _Trigger:
    interval_seconds: int
    start_at: int
    next_fire_time: int | None
    previous_fire_time: int | None = None
    state: TriggerState = TriggerState.NORMAL


class ThreadTriggerBackend:
    """Zero-dependency threading-based trigger backend.

    Example:
        >>> backend = ThreadTriggerBackend()
        >>> backend.set_fire_callback(lambda key: print("fired", key))
        >>> backend.register(JobKey("BA", "accuracy"), 60, start_at=now_ms())
        >>> backend.start()
        >>> # ... later ...
        >>> backend.shutdown()
    """

    name = "thread"

    def __init__(self, max_workers: int = 4, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._max_workers = max_workers
        self._triggers: dict[JobKey, _Trigger] = {}
        self._cond = threading.Condition(threading.RLock())
        self._callback: FireCallback | None = None
        self._thread: threading.Thread | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._running = False
        self._fire_count = 0

    # === Registry ===

    def set_fire_callback(self, callback: FireCallback) -> None:
        self._callback = callback

    def register(self, key: JobKey, interval_seconds: int, start_at: int) -> TriggerInfo:
        trigger = _Trigger(
            interval_seconds=interval_seconds,
            start_at=start_at,
            next_fire_time=start_at,
        )
        with self._cond:
            replaced = key in self._triggers
            self._triggers[key] = trigger
            self._cond.notify_all()
            info = self._snapshot(key, trigger)
        logger.debug(
            "trigger_registered",
            group=key.group,
            job_name=key.name,
            interval_seconds=interval_seconds,
            start_at=start_at,
            replaced=replaced,
        )
        return info

    def unregister(self, key: JobKey) -> bool:
        with self._cond:
            removed = self._triggers.pop(key, None) is not None
            self._cond.notify_all()
        if removed:
            logger.debug("trigger_unregistered", group=key.group, job_name=key.name)
        return removed

    def get_trigger(self, key: JobKey) -> TriggerInfo | None:
        with self._cond:
            trigger = self._triggers.get(key)
            return self._snapshot(key, trigger) if trigger else None

    def pause(self, key: JobKey) -> bool:
        return self._set_state(key, TriggerState.PAUSED)

    def resume(self, key: JobKey) -> bool:
        with self._cond:
            trigger = self._triggers.get(key)
            if trigger is None:
                return False
            if trigger.state is TriggerState.PAUSED:
                # Resume on the original grid, skipping periods spent paused
                trigger.next_fire_time = self._next_on_grid(trigger, self._clock())
            trigger.state = TriggerState.NORMAL
            self._cond.notify_all()
        return True

    def list_groups(self) -> list[str]:
        with self._cond:
            return sorted({key.group for key in self._triggers})

    def list_keys(self, group: str) -> list[JobKey]:
        with self._cond:
            return sorted(key for key in self._triggers if key.group == group)

    # === Lifecycle ===

    def start(self) -> None:
        """Start firing triggers from a daemon thread."""
        with self._cond:
            if self._running:
                logger.warning("thread_backend_already_started")
                return
            self._running = True
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="jobspine-fire"
            )
            self._thread = threading.Thread(
                target=self._loop, daemon=True, name="jobspine-triggers"
            )
            self._thread.start()
        logger.info("thread_backend_started", max_workers=self._max_workers)

    def shutdown(self) -> None:
        """Stop the loop and wait for in-flight firings."""
        with self._cond:
            if not self._running:
                return
            self._running = False
            self._cond.notify_all()
        if self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("thread_backend_did_not_stop_cleanly")
        if self._pool:
            self._pool.shutdown(wait=True)
        logger.info("thread_backend_stopped", fire_count=self._fire_count)

    def health(self) -> dict[str, Any]:
        with self._cond:
            triggers = len(self._triggers)
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "triggers": triggers,
            "fire_count": self._fire_count,
        }

    @property
    def is_running(self) -> bool:
        return self._running and self._thread is not None and self._thread.is_alive()

    # === Firing ===

    def fire_due(self) -> list[JobKey]:
        """Advance every due trigger and dispatch its firing.

        Called by the loop; tests call it directly with a pinned clock.
        Without a running pool the callback runs inline.
        """
        now = self._clock()
        due: list[JobKey] = []
        with self._cond:
            for key, trigger in self._triggers.items():
                if trigger.state is not TriggerState.NORMAL or trigger.next_fire_time is None:
                    continue
                if trigger.next_fire_time <= now:
                    trigger.previous_fire_time = trigger.next_fire_time
                    trigger.next_fire_time = self._next_on_grid(trigger, now + 1)
                    due.append(key)
            self._fire_count += len(due)
            pool = self._pool if self._running else None

        for key in due:
            if pool is not None:
                pool.submit(self._invoke, key)
            else:
                self._invoke(key)
        return due

    def _invoke(self, key: JobKey) -> None:
        if self._callback is None:
            logger.debug("trigger_fired_without_callback", group=key.group, job_name=key.name)
            return
        try:
            self._callback(key)
        except Exception:
            logger.exception("trigger_callback_failed", group=key.group, job_name=key.name)

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    break
            self.fire_due()
            with self._cond:
                if not self._running:
                    break
                self._cond.wait(self._seconds_until_next())

    def _seconds_until_next(self) -> float:
        upcoming = [
            t.next_fire_time
            for t in self._triggers.values()
            if t.state is TriggerState.NORMAL and t.next_fire_time is not None
        ]
        if not upcoming:
            return _MAX_WAIT_SECONDS
        delay = (min(upcoming) - self._clock()) / 1000
        return min(max(delay, 0.0), _MAX_WAIT_SECONDS)

    # === Helpers ===

    def _set_state(self, key: JobKey, state: TriggerState) -> bool:
        with self._cond:
            trigger = self._triggers.get(key)
            if trigger is None:
                return False
            trigger.state = state
            self._cond.notify_all()
        return True

    @staticmethod
    def _next_on_grid(trigger: _Trigger, not_before: int) -> int:
        """First fire time on the trigger's grid that is ≥ ``not_before``."""
        period_ms = trigger.interval_seconds * 1000
        if trigger.start_at >= not_before:
            return trigger.start_at
        n = -(-(not_before - trigger.start_at) // period_ms)  # ceil division
        return trigger.start_at + n * period_ms

    def _snapshot(self, key: JobKey, trigger: _Trigger) -> TriggerInfo:
        next_fire_time = trigger.next_fire_time
        if trigger.state is TriggerState.PAUSED:
            # Where resume() would put it
            next_fire_time = self._next_on_grid(trigger, self._clock())
        return TriggerInfo(
            key=key,
            interval_seconds=trigger.interval_seconds,
            start_at=trigger.start_at,
            next_fire_time=next_fire_time,
            previous_fire_time=trigger.previous_fire_time,
            state=trigger.state,
        )
