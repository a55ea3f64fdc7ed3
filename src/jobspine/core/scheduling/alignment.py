"""Trigger start-time alignment.

A job submitted with a start time in the past is moved forward to the
first fire time that is still on its original period grid::

    start ──┬──────┬──────┬──────┬──────┬──────┬──── now ──┬───
            p      2p     3p     4p     5p          ▲      6p
                                                    │   aligned start

    n      = (now - start) // period_ms + 1
    start' = start + n * period_ms

``start'`` is the smallest value ≥ now congruent to ``start`` modulo the
period. A start equal to or after now is returned unchanged.
"""

from __future__ import annotations

import re

from jobspine.core.errors import ValidationError


def align_start_time(start_ms: int, period_seconds: int, now_ms: int) -> int:
    """Align ``start_ms`` forward onto its period grid so that it is ≥ ``now_ms``.

    Args:
        start_ms: Requested first fire time, epoch milliseconds.
        period_seconds: Fixed trigger interval, must be positive.
        now_ms: Current time, epoch milliseconds.

    Returns:
        Aligned first fire time, epoch milliseconds.

    Example:
        >>> align_start_time(1_000_000, 60, 1_305_000)
        1360000
    """
    if period_seconds <= 0:
        raise ValidationError(
            "period must be a positive number of seconds",
            field="period_time",
            value=period_seconds,
        )
    if start_ms >= now_ms:
        return start_ms
    period_ms = period_seconds * 1000
    n = (now_ms - start_ms) // period_ms + 1
    return start_ms + n * period_ms


_DECIMAL = re.compile(r"[+-]?[0-9]+")


def _parse_int(raw: str | int | None, field: str, expected: str) -> int:
    """Parse a plain ASCII decimal integer; no whitespace, ``_`` or other digits."""
    text = str(raw) if isinstance(raw, int) else raw
    if not isinstance(text, str) or not _DECIMAL.fullmatch(text):
        raise ValidationError(f"{field} is not {expected}: {raw!r}", field=field, value=raw)
    return int(text)


def parse_period_seconds(raw: str | int | None) -> int:
    """Parse a period given as a string of whole seconds (must be > 0)."""
    period = _parse_int(raw, "period_time", "an integer")
    if period <= 0:
        raise ValidationError(
            f"period_time must be positive: {period}",
            field="period_time",
            value=raw,
        )
    return period


def parse_start_time_ms(raw: str | int | None) -> int:
    """Parse a start time given as a string of epoch milliseconds."""
    return _parse_int(raw, "job_start_time", "epoch milliseconds")
