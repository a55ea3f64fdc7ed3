"""
Structured error types for jobspine.

Every error raised inside the scheduling core carries a category, a retry
flag and structured context (group, job name, session id, URL), so callers
can log it with one ``to_dict()`` call and decide what happens next.

Architecture:
    ::

        JobSpineError (category, retryable, context, cause)
          ├── TransientError ─────────── RemoteStatusUnavailable
          ├── ParseError ─────────────── MalformedRemoteResponse
          ├── ValidationError
          ├── ConfigError
          ├── OrchestrationError ─────── SchedulingBackendError
          └── DatabaseError ──────────── ReconciliationError

    Handling per kind:

        ValidationError          add_job returns False, nothing mutated
        SchedulingBackendError   add_job / delete_job return False
        RemoteStatusUnavailable  instance forced to terminal "unknown"
        MalformedRemoteResponse  instance untouched, retried next cycle
        ReconciliationError      caught per key, other keys unaffected

Examples:
    >>> raise RemoteStatusUnavailable("timed out").with_context(
    ...     group="BA", job_name="accuracy", session_id="42"
    ... )

Guardrails:
    ❌ DON'T: Raise plain Exception for expected failure modes
    ✅ DO: Pick the subclass that encodes the handling rule
    ❌ DON'T: Drop the original exception when wrapping
    ✅ DO: Pass cause= (and ``raise ... from e``)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Where an error came from; drives logging and alert routing."""

    NETWORK = "NETWORK"  # status service unreachable, timeout, non-2xx
    DATABASE = "DATABASE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"  # trigger backend
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Which job, instance and request an error relates to.

    Unknown keys passed to :meth:`JobSpineError.with_context` land in
    ``metadata``.
    """

    group: str | None = None
    job_name: str | None = None
    session_id: str | None = None
    instance_id: int | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, with ``metadata`` flattened in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        return {**result, **self.metadata}


class JobSpineError(Exception):
    """
    Base exception for all jobspine errors.

    Subclasses pin ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Examples:
        >>> JobSpineError("Something went wrong").category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category if category is not None else self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobSpineError:
        """Attach context and return ``self`` so it chains into ``raise``."""
        known = {f.name for f in fields(self.context)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Log-ready representation."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# --- Remote status service ---------------------------------------------------


class TransientError(JobSpineError):
    """Failure that may go away on its own."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class RemoteStatusUnavailable(TransientError):
    """
    Remote status poll failed (timeout, network error, non-success status).

    The underlying condition is transient, but the reconciler treats the
    session as lost: the instance is forced to the terminal ``unknown``
    state and never polled again.
    """


class ParseError(JobSpineError):
    """Data received from a collaborator could not be interpreted."""

    default_category = ErrorCategory.PARSE


class MalformedRemoteResponse(ParseError):
    """Remote status body is empty, not JSON, or not a JSON object."""

    default_retryable = True


# --- Requests and configuration ----------------------------------------------


class ValidationError(JobSpineError):
    """A schedule request or paging argument is invalid. Fix the input."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigError(JobSpineError):
    """Settings are missing or inconsistent."""

    default_category = ErrorCategory.CONFIG


# --- Trigger backend and persistence -----------------------------------------


class OrchestrationError(JobSpineError):
    """Trigger or scheduler failure."""

    default_category = ErrorCategory.ORCHESTRATION


class SchedulingBackendError(OrchestrationError):
    """The trigger backend rejected or failed a register/unregister call."""


class DatabaseError(JobSpineError):
    """Repository query or transaction failed."""

    default_category = ErrorCategory.DATABASE


class ReconciliationError(DatabaseError):
    """Repository I/O failed while reconciling instances of one job."""


def categorize_error(error: BaseException) -> ErrorCategory:
    """Category of any exception, jobspine or not."""
    if isinstance(error, JobSpineError):
        return error.category
    if isinstance(error, OSError):  # includes ConnectionError, TimeoutError
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "JobSpineError",
    "TransientError",
    "RemoteStatusUnavailable",
    "ParseError",
    "MalformedRemoteResponse",
    "ValidationError",
    "ConfigError",
    "OrchestrationError",
    "SchedulingBackendError",
    "DatabaseError",
    "ReconciliationError",
    "categorize_error",
]
