"""Environment-driven settings for the ``bgrunner`` command line.

Uses :mod:`pydantic_settings` to read ``BGRUNNER_*`` environment variables
(and optionally a ``.env`` file) into a validated settings object.  The field
name is the lowercase env-var name without the prefix
(``BGRUNNER_MAX_RETRIES`` → ``max_retries``).

Library users construct :class:`~bgrunner.core.config.RunnerConfig` directly;
:class:`Settings` only exists so the CLI can be configured from the
environment.

Typical usage::

    from bgrunner.core.settings import Settings

    settings = Settings()
    config = settings.to_runner_config()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bgrunner.core.config import DEFAULT_LOG_TAG, BackoffStrategy, RunnerConfig, load_config

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runner configuration loaded from the environment.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_prefix="BGRUNNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    polling_period_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between the end of one firing and the next.",
    )
    initial_delay_ms: float = Field(
        default=5000.0,
        ge=0,
        description="Milliseconds before the first firing.",
    )

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Attempts per cycle, including the first one.",
    )
    base_retry_delay_ms: float = Field(
        default=1000.0,
        ge=0,
        description="Base backoff delay in milliseconds.",
    )
    backoff_strategy: BackoffStrategy = Field(
        default=BackoffStrategy.EXPONENTIAL,
        description="exponential | linear | constant",
    )
    task_timeout_ms: float = Field(
        default=0.0,
        ge=0,
        description="Per-attempt timeout in milliseconds (0 = disabled).",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_tag: str = Field(default=DEFAULT_LOG_TAG, description="Prefix for runner log lines.")
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    @field_validator("backoff_strategy", mode="before")
    @classmethod
    def _normalise_strategy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def to_runner_config(
        self,
        *,
        on_error: Callable[..., Any] | None = None,
        logger: Any = None,
        **overrides: Any,
    ) -> RunnerConfig:
        """Build a :class:`RunnerConfig` from these settings.

        Args:
            on_error: Terminal-failure callback (not expressible in env vars).
            logger: Logger object for runner lines.
            **overrides: Values that win over the environment (CLI flags).

        Raises:
            ConfigurationError: If an override is invalid.
        """
        values: dict[str, Any] = {
            "polling_period_seconds": self.polling_period_seconds,
            "max_retries": self.max_retries,
            "base_retry_delay_ms": self.base_retry_delay_ms,
            "backoff_strategy": self.backoff_strategy,
            "initial_delay_ms": self.initial_delay_ms,
            "task_timeout_ms": self.task_timeout_ms,
            "log_tag": self.log_tag,
            "on_error": on_error,
            "logger": logger,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return load_config(values)
