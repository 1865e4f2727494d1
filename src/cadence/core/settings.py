"""Process settings for cadence.

All tunables live on one ``CadenceSettings`` object read from environment
variables prefixed with ``CADENCE_`` (and an optional ``.env`` file).

Examples:
    >>> import os
    >>> os.environ["CADENCE_SHUTDOWN_GRACE_SECONDS"] = "10"
    >>> reset_settings()
    >>> get_settings().shutdown_grace_seconds
    10.0

    Queue limits are a JSON object in the environment::

        CADENCE_QUEUE_CONCURRENCY='{"notifications": 50, "recurring": 2}'

Tags:
    settings, configuration, pydantic, environment, cadence

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUEUE = "default"

DEFAULT_QUEUE_CONCURRENCY: dict[str, int] = {
    DEFAULT_QUEUE: 10,
    "notifications": 30,
    "recurring": 5,
    "scheduled_jobs": 5,
}


class CadenceSettings(BaseSettings):
    """Settings shared by the runner, scheduler and recurrence engine.

    Fields
    ──────
    database_url              : ``memory``, a SQLite path or ``sqlite:///`` URL
    pool_size                 : Upper bound on pooled database connections
    log_level / json_logs     : Structlog output
    scheduler_interval_seconds: Scheduler tick period
    catchup_lookback_hours    : How far back missed cron occurrences are enqueued
    catchup_threshold_minutes : Lateness after which an occurrence is a catch-up
    poll_interval_seconds     : Idle wait between lease attempts per queue
    job_timeout_seconds       : Default per-job deadline
    shutdown_grace_seconds    : Wait for in-flight jobs on shutdown
    queue_concurrency         : Maximum parallel jobs per queue
    expansion_horizon_days    : How far ahead recurring series are materialized
    expansion_interval_hours  : How often a series re-expands itself
    skip_test_emails          : Treat example.* addresses as delivered
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "cadence.db"
    pool_size: int = Field(default=10, ge=1)

    # ── Observability ────────────────────────────────────────────
    service_name: str = "cadence"
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=60.0, gt=0)
    catchup_lookback_hours: float = Field(default=24.0, gt=0)
    catchup_threshold_minutes: float = Field(default=60.0, ge=0)

    # ── Execution ────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    job_timeout_seconds: float = Field(default=300.0, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)
    queue_concurrency: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_QUEUE_CONCURRENCY)
    )

    # ── Recurrence ───────────────────────────────────────────────
    expansion_horizon_days: int = Field(default=90, ge=1)
    expansion_interval_hours: float = Field(default=24.0, gt=0)

    # ── Notifications ────────────────────────────────────────────
    skip_test_emails: bool = True

    @field_validator("queue_concurrency")
    @classmethod
    def _merge_queue_defaults(cls, value: dict[str, int]) -> dict[str, int]:
        merged = dict(DEFAULT_QUEUE_CONCURRENCY)
        merged.update(value)
        bad = {name: limit for name, limit in merged.items() if limit < 1}
        if bad:
            raise ValueError(f"queue concurrency must be >= 1: {bad}")
        return merged

    def concurrency_for(self, queue: str) -> int:
        """Concurrency limit for ``queue``, falling back to the default queue's."""
        return self.queue_concurrency.get(queue, self.queue_concurrency[DEFAULT_QUEUE])


_settings: CadenceSettings | None = None


def get_settings() -> CadenceSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = CadenceSettings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (for testing)."""
    global _settings
    _settings = None


__all__ = [
    "DEFAULT_QUEUE",
    "DEFAULT_QUEUE_CONCURRENCY",
    "CadenceSettings",
    "get_settings",
    "reset_settings",
]
