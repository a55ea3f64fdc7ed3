"""Typed models for jobspine tables and read models."""

from .jobs import (
    NO_FIRE_TIME,
    TERMINAL_STATES,
    InstanceState,
    JobDefinition,
    JobHealth,
    JobInstance,
    JobKey,
    JobSummary,
    TriggerInfo,
    TriggerState,
    is_terminal,
)

__all__ = [
    "NO_FIRE_TIME",
    "TERMINAL_STATES",
    "InstanceState",
    "JobDefinition",
    "JobHealth",
    "JobInstance",
    "JobKey",
    "JobSummary",
    "TriggerInfo",
    "TriggerState",
    "is_terminal",
]
