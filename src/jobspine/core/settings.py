"""Settings for jobspine services.

``SpineBaseSettings`` carries the fields every service needs (log level,
debug); ``SchedulerSettings`` adds the remote status endpoint, the
reconciliation tick interval, the trigger backend choice and the database
path.

Examples:
    >>> from jobspine.core.settings import load_scheduler_settings
    >>> settings = load_scheduler_settings()    # reads JOBSPINE_* env vars and .env
    >>> settings.status_base_uri
    'http://localhost:8998/batches'

Environment variables::

    JOBSPINE_STATUS_BASE_URI=http://livy:8998/batches
    JOBSPINE_STATUS_TIMEOUT_SECONDS=10
    JOBSPINE_RECONCILE_INTERVAL_SECONDS=60
    JOBSPINE_TRIGGER_BACKEND=apscheduler
"""

from __future__ import annotations

from typing import Any, Literal

import pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobspine.core.errors import ConfigError


class SpineBaseSettings(BaseSettings):
    """Common settings shared across services.

    Fields
    ──────
    debug        : Verbose logging
    log_level    : Minimum structlog level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level


class SchedulerSettings(SpineBaseSettings):
    """Settings for the job scheduler, reconciler and ticker."""

    model_config = SettingsConfigDict(
        env_prefix="JOBSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Remote status service ────────────────────────────────────
    status_base_uri: str = "http://localhost:8998/batches"
    status_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Reconciliation ───────────────────────────────────────────
    reconcile_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Fixed delay between background reconciliation ticks",
    )

    # ── Triggers ─────────────────────────────────────────────────
    trigger_backend: Literal["thread", "apscheduler"] = "thread"

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = ":memory:"

    @field_validator("status_base_uri")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("status_base_uri must be an http(s) URL")
        return value.rstrip("/")


def load_scheduler_settings(**overrides: Any) -> SchedulerSettings:
    """Read ``SchedulerSettings``, reporting bad values as :class:`ConfigError`."""
    try:
        return SchedulerSettings(**overrides)
    except pydantic.ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ConfigError(
            f"Invalid scheduler settings: {', '.join(fields)}", cause=e
        ).with_context(fields=fields) from e
