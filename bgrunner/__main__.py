"""bgrunner process entry-point.

Usage:
    python -m bgrunner [options] -- COMMAND [ARGS...]

Runs ``COMMAND`` on a fixed interval with retry and backoff until the process
receives ``SIGTERM`` or ``SIGINT``.  On either signal the runner stops
scheduling, lets the command currently in flight (retries included) finish,
and only then exits.  Pass ``--once`` to run a single cycle and exit with a
non-zero status if it terminally fails.

Every option falls back to the matching ``BGRUNNER_*`` environment variable
(see :class:`~bgrunner.core.settings.Settings`).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from pydantic import ValidationError

from bgrunner.core import configure_logging
from bgrunner.core.config import BackoffStrategy, RunnerConfig
from bgrunner.core.exceptions import ConfigurationError, TerminalFailure
from bgrunner.core.settings import Settings
from bgrunner.orchestrator.executor import run_cycle
from bgrunner.orchestrator.scheduler import BackgroundTaskRunner
from bgrunner.tasks import ShellCommandTask

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bgrunner",
        description="Run a command on a fixed interval with retry, backoff and graceful shutdown.",
    )
    parser.add_argument("--period", type=float, default=None, metavar="SECONDS",
                        help="Seconds between runs (BGRUNNER_POLLING_PERIOD_SECONDS).")
    parser.add_argument("--max-retries", type=int, default=None, metavar="N",
                        help="Attempts per run, including the first (BGRUNNER_MAX_RETRIES).")
    parser.add_argument("--retry-delay-ms", type=float, default=None, metavar="MS",
                        help="Base backoff delay (BGRUNNER_BASE_RETRY_DELAY_MS).")
    parser.add_argument("--backoff", choices=[s.value for s in BackoffStrategy], default=None,
                        help="Backoff strategy (BGRUNNER_BACKOFF_STRATEGY).")
    parser.add_argument("--initial-delay-ms", type=float, default=None, metavar="MS",
                        help="Delay before the first run (BGRUNNER_INITIAL_DELAY_MS).")
    parser.add_argument("--timeout-ms", type=float, default=None, metavar="MS",
                        help="Per-attempt timeout, 0 disables (BGRUNNER_TASK_TIMEOUT_MS).")
    parser.add_argument("--tag", default=None, help="Log tag (BGRUNNER_LOG_TAG).")
    parser.add_argument("--once", action="store_true",
                        help="Run a single cycle immediately and exit.")
    parser.add_argument("--log-level", default=None, metavar="LEVEL",
                        help="Override LOG_LEVEL (DEBUG|INFO|WARNING|ERROR).")
    parser.add_argument("--log-format", default=None, metavar="FORMAT",
                        help="Override LOG_FORMAT (text|json).")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="Command to run, after '--'.")
    return parser


async def run_forever(runner: BackgroundTaskRunner) -> None:
    """Start *runner* and block until SIGTERM/SIGINT, then shut down gracefully.

    The signal handlers only call :meth:`BackgroundTaskRunner.stop`; the
    coroutine then waits for the in-flight firing via
    :meth:`BackgroundTaskRunner.await_shutdown`.  Handlers are removed in a
    ``finally`` block so they do not leak into a later ``asyncio.run`` call.
    """
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    received: list[str] = []

    def _request_graceful_shutdown(signame: str) -> None:
        # Idempotent: repeated signals (impatient Ctrl+C) log only once.
        if not received:
            received.append(signame)
            logger.info("Received %s — graceful shutdown requested.", signame)
        runner.stop()
        stop_requested.set()

    handled: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _request_graceful_shutdown, sig.name)
            handled.append(sig)

    try:
        runner.start()
        await stop_requested.wait()
        await runner.await_shutdown()
        logger.info("Graceful shutdown complete (signal: %s).", received[0])
    finally:
        for sig in handled:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command to run is required after '--'")

    try:
        settings = Settings()
        configure_logging(
            level=args.log_level or settings.log_level,
            fmt=args.log_format or settings.log_format,
        )
    except (ValueError, ValidationError) as exc:
        print(f"bgrunner: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    task = ShellCommandTask(command)

    try:
        config: RunnerConfig = settings.to_runner_config(
            polling_period_seconds=args.period,
            max_retries=args.max_retries,
            base_retry_delay_ms=args.retry_delay_ms,
            backoff_strategy=args.backoff,
            initial_delay_ms=args.initial_delay_ms,
            task_timeout_ms=args.timeout_ms,
            log_tag=args.tag,
        )
    except ConfigurationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    logger.info("bgrunner starting for %r", task)

    if args.once:
        try:
            asyncio.run(run_cycle(task, config))
        except TerminalFailure:
            sys.exit(1)
        except KeyboardInterrupt:
            logger.info("Interrupted — exiting.")
            sys.exit(130)
        return

    asyncio.run(run_forever(BackgroundTaskRunner(task, config)))


if __name__ == "__main__":
    main()
