"""Runner configuration model.

:class:`RunnerConfig` is the immutable, validated configuration every
:class:`~bgrunner.orchestrator.scheduler.BackgroundTaskRunner` is built from.
It is a frozen pydantic model, so no layer can change a value after
construction.  :func:`load_config` is the single place where pydantic's
``ValidationError`` becomes a :class:`~bgrunner.core.exceptions.ConfigurationError`.

Typical usage::

    from bgrunner.core.config import load_config

    config = load_config({"polling_period_seconds": 30, "max_retries": 3})
    config.polling_period_s   # 30.0
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bgrunner.core.exceptions import ConfigurationError

__all__ = [
    "BackoffStrategy",
    "DEFAULT_LOG_TAG",
    "RunnerConfig",
    "load_config",
]

logger = logging.getLogger(__name__)

#: Label used in ``[tag]`` log prefixes when none is configured.
DEFAULT_LOG_TAG: Final[str] = "background-task"


class BackoffStrategy(StrEnum):
    """How the wait between two attempts grows with the attempt number."""

    EXPONENTIAL = "exponential"
    """``2^(a-1) × base``"""

    LINEAR = "linear"
    """``a × base``"""

    CONSTANT = "constant"
    """``base``"""


class RunnerConfig(BaseModel):
    """Immutable configuration for one background task runner.

    Durations keep the unit in their name, matching the public configuration
    surface; the ``*_s`` properties convert to seconds for the asyncio timer
    APIs.

    Attributes:
        polling_period_seconds: Interval between the end of one firing and the
            start of the next.
        max_retries: Attempts per run cycle, including the first one.
        base_retry_delay_ms: Base delay fed to the backoff strategy.
        backoff_strategy: One of :class:`BackoffStrategy`.
        initial_delay_ms: Delay before the very first firing only.
        task_timeout_ms: Per-attempt timeout; ``0`` disables it.
        log_tag: Label prefixed to every runner log line as ``[tag]``.
        on_error: Optional ``(terminal_failure, context)`` callback invoked once
            per terminally-failed cycle.
        logger: Optional object with ``log`` / ``warn`` / ``error`` methods.
            ``None`` uses the stdlib logger of the scheduler module.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    polling_period_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=5, ge=1)
    base_retry_delay_ms: float = Field(default=1000.0, ge=0)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    initial_delay_ms: float = Field(default=5000.0, ge=0)
    task_timeout_ms: float = Field(default=0.0, ge=0)
    log_tag: str = DEFAULT_LOG_TAG
    on_error: Callable[..., Any] | None = None
    logger: Any = None

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def polling_period_s(self) -> float:
        return self.polling_period_seconds

    @property
    def initial_delay_s(self) -> float:
        return self.initial_delay_ms / 1000

    @property
    def task_timeout_s(self) -> float | None:
        """Per-attempt timeout in seconds, or ``None`` when unbounded."""
        if self.task_timeout_ms <= 0:
            return None
        return self.task_timeout_ms / 1000


def load_config(
    config: RunnerConfig | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> RunnerConfig:
    """Build a validated :class:`RunnerConfig`.

    Keyword *overrides* are merged over *config* (a model instance or a plain
    mapping) and over the model defaults.

    Raises:
        ConfigurationError: If any value is out of range, the backoff strategy
            is unknown, ``on_error`` is not callable, or an unknown key is
            given.
    """
    if isinstance(config, RunnerConfig):
        if not overrides:
            return config
        # Attribute access keeps on_error / logger as the same objects.
        base: dict[str, Any] = {name: getattr(config, name) for name in RunnerConfig.model_fields}
    else:
        base = dict(config or {})
    base.update(overrides)

    try:
        return RunnerConfig.model_validate(base)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid runner configuration — {problems}") from exc
