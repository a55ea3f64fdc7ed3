"""Per-job-key lock manager.

Manifesto:
    Mutations of one job key (add, delete, reconcile) must never
    interleave, while different keys proceed in parallel. A single
    global lock would serialize unrelated jobs behind a slow status
    poll, so locks are held per key.

Lock Manager Architecture::

    hold(("BA", "accuracy"))      hold(("BA", "accuracy"))     hold(("FM", "drift"))
            │                              │                          │
            ▼                              ▼                          ▼
    ┌────────────────────────────────────────────────┐      ┌─────────────────┐
    │  _Entry(lock, refs=2)                          │      │ _Entry(refs=1)  │
    │  first holder runs, second waits               │      │ runs at once    │
    └────────────────────────────────────────────────┘      └─────────────────┘

    Entries are reference counted and dropped once the last holder leaves,
    so the registry does not grow with every key ever seen.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class KeyedLockRegistry:
    """Mutual exclusion scoped to a hashable key.

    Example:
        >>> locks = KeyedLockRegistry()
        >>> with locks.hold(JobKey("BA", "accuracy")):
        ...     engine_mutation()
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock of ``key`` for the duration of the block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[key]

    def is_held(self, key: Hashable) -> bool:
        """True while some thread holds or waits for ``key``."""
        with self._guard:
            return key in self._entries

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
