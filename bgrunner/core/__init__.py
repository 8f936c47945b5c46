"""Configuration, settings, logging configuration, and the exception taxonomy."""

from bgrunner.core.config import BackoffStrategy, RunnerConfig, load_config
from bgrunner.core.exceptions import (
    CommandFailedError,
    ConfigurationError,
    RunnerError,
    TaskTimeoutError,
    TerminalFailure,
)
from bgrunner.core.logger_proxy import LoggerProxy
from bgrunner.core.logging_config import JsonFormatter, configure_logging
from bgrunner.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    "LoggerProxy",
    # Configuration
    "BackoffStrategy",
    "RunnerConfig",
    "load_config",
    "Settings",
    # Exceptions
    "RunnerError",
    "ConfigurationError",
    "TaskTimeoutError",
    "TerminalFailure",
    "CommandFailedError",
]
