"""
Epoch-millisecond timestamp utilities (stdlib-only).

Triggers, job definitions and job instances all carry integer epoch
milliseconds. Components take a ``clock`` callable defaulting to
:func:`now_ms` so tests can pin the current time.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], int]

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


def now_ms() -> int:
    """Current UTC time as integer epoch milliseconds."""
    return time.time_ns() // 1_000_000


def to_datetime(epoch_ms: int) -> datetime:
    """Convert epoch milliseconds to a timezone-aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=epoch_ms)


def from_datetime(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return (dt - EPOCH) // _ONE_MS
