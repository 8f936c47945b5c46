"""bgrunner exception taxonomy.

Every custom exception inherits from :class:`RunnerError` so callers can catch
at the right granularity:

    Hierarchy
    ---------
    RunnerError
    ├── ConfigurationError
    ├── TaskTimeoutError
    ├── TerminalFailure
    └── CommandFailedError

A failed attempt is any exception raised by the task (or a
:class:`TaskTimeoutError`); it is retried while budget remains.  Only the
failure of the *last* permitted attempt surfaces, wrapped in
:class:`TerminalFailure`.  A stop request mid-cycle is not an error at all —
see :class:`~bgrunner.orchestrator.executor.CycleOutcome`.

Usage:

    from bgrunner.core.exceptions import TerminalFailure

    try:
        await run_cycle(task, config, token)
    except TerminalFailure as exc:
        print(exc.attempts, exc.original_error)
"""

from __future__ import annotations

__all__ = [
    "RunnerError",
    "ConfigurationError",
    "TaskTimeoutError",
    "TerminalFailure",
    "CommandFailedError",
]


class RunnerError(Exception):
    """Root exception for all bgrunner errors."""


class ConfigurationError(RunnerError):
    """Raised when a runner is constructed with invalid arguments.

    Examples:
        - ``polling_period_seconds`` is zero or negative.
        - ``max_retries`` is below 1.
        - ``backoff_strategy`` is not one of the known strategies.
        - ``on_error`` (or the task itself) is not callable.

    Fatal at construction time; never recovered.
    """


class TaskTimeoutError(RunnerError):
    """Raised when a single attempt does not finish within ``task_timeout_ms``.

    Treated exactly like an exception raised by the task for retry purposes.

    Args:
        timeout_ms: The configured per-attempt timeout in milliseconds.
    """

    def __init__(self, timeout_ms: float) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Task timed out after {timeout_ms:g} ms")


class TerminalFailure(RunnerError):
    """Raised when the last permitted attempt of a run cycle fails.

    Args:
        original_error: The exception raised by the final attempt.
        attempts: Number of attempts made (equals ``max_retries``).
        max_retries: The configured retry ceiling.
    """

    def __init__(
        self,
        original_error: BaseException,
        attempts: int,
        max_retries: int,
    ) -> None:
        self.original_error = original_error
        self.attempts = attempts
        self.max_retries = max_retries
        super().__init__(f"Task failed after {attempts} attempts: {original_error}")


class CommandFailedError(RunnerError):
    """Raised by :class:`~bgrunner.tasks.ShellCommandTask` on a non-zero exit.

    Args:
        command: The argv that was executed.
        returncode: Process exit status.
        stderr: Trailing standard-error output (may be empty).
    """

    def __init__(self, command: list[str], returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"Command {command[0]!r} exited with status {returncode}{detail}")
