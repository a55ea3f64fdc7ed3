"""Core primitives for jobspine.

Import scheduling components from :mod:`jobspine.core.scheduling`; this
package re-exports only the cross-cutting pieces (errors, logging, models).
"""

from jobspine.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    JobSpineError,
    MalformedRemoteResponse,
    ReconciliationError,
    RemoteStatusUnavailable,
    SchedulingBackendError,
    ValidationError,
)
from jobspine.core.logging import configure_logging, get_logger
from jobspine.core.models.jobs import (
    InstanceState,
    JobDefinition,
    JobHealth,
    JobInstance,
    JobKey,
    JobSummary,
    TriggerInfo,
    TriggerState,
)

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "JobSpineError",
    "ValidationError",
    "ConfigError",
    "SchedulingBackendError",
    "RemoteStatusUnavailable",
    "MalformedRemoteResponse",
    "ReconciliationError",
    # Logging
    "configure_logging",
    "get_logger",
    # Models
    "JobKey",
    "JobDefinition",
    "JobInstance",
    "JobSummary",
    "JobHealth",
    "TriggerInfo",
    "TriggerState",
    "InstanceState",
]
