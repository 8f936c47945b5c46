"""bgrunner — run a task on a fixed interval with retry, backoff and graceful shutdown."""

from bgrunner.core.config import BackoffStrategy, RunnerConfig
from bgrunner.core.exceptions import (
    ConfigurationError,
    RunnerError,
    TaskTimeoutError,
    TerminalFailure,
)
from bgrunner.orchestrator.executor import CycleOutcome, run_cycle
from bgrunner.orchestrator.scheduler import BackgroundTaskRunner, RunnerState

__version__ = "0.1.0"

__all__ = [
    "BackgroundTaskRunner",
    "RunnerState",
    "RunnerConfig",
    "BackoffStrategy",
    "CycleOutcome",
    "run_cycle",
    "RunnerError",
    "ConfigurationError",
    "TaskTimeoutError",
    "TerminalFailure",
]
