"""Retry executor: run one cycle of the task with bounded retry and backoff.

One *run cycle* is up to ``max_retries`` attempts of the task.  Retry
mechanics are delegated to :class:`tenacity.AsyncRetrying`:

* ``stop``  — :func:`tenacity.stop_after_attempt` with ``max_retries``;
* ``wait``  — the configured backoff policy (:func:`~bgrunner.orchestrator.backoff.make_wait`);
* ``sleep`` — :meth:`StopToken.sleep <bgrunner.orchestrator.latch.StopToken.sleep>`,
  so a stop request cuts the backoff wait short;
* ``before_sleep`` — the ``Attempt N failed ... Retrying in Xs`` warning.

Outcomes
~~~~~~~~
* :attr:`CycleOutcome.SUCCEEDED` — an attempt returned normally.
* :attr:`CycleOutcome.ABORTED` — the stop token was set before an attempt
  started.  Not a failure; ``on_error`` is not called.
* :class:`~bgrunner.core.exceptions.TerminalFailure` raised — the last
  permitted attempt failed.  ``on_error`` has already been called.

Timeouts
~~~~~~~~
With ``task_timeout_ms > 0`` each attempt races a timer.  When the timer wins
the attempt's result is discarded, the attempt is sent a cancellation request
and :class:`~bgrunner.core.exceptions.TaskTimeoutError` counts as the attempt's
failure.  Cancellation is cooperative: a coroutine that ignores it, or a plain
callable already running on a worker thread, keeps running in the background
until it finishes on its own.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from bgrunner.core.config import RunnerConfig
from bgrunner.core.exceptions import TaskTimeoutError, TerminalFailure
from bgrunner.core.logger_proxy import LoggerProxy
from bgrunner.orchestrator.backoff import make_wait
from bgrunner.orchestrator.latch import StopToken

__all__ = ["CycleOutcome", "Task", "run_cycle"]

logger = logging.getLogger(__name__)

#: A task receives the runner configuration; it may be sync or async.
Task = Callable[[RunnerConfig], Any]

#: Attempts abandoned by a timeout that have not finished yet.  Holding a
#: reference keeps them from being garbage-collected mid-flight.
_detached_attempts: set[asyncio.Future[Any]] = set()


class CycleOutcome(StrEnum):
    """Non-error results of :func:`run_cycle`."""

    SUCCEEDED = "succeeded"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Attempt helpers
# ---------------------------------------------------------------------------


def _is_async_callable(task: Task) -> bool:
    return inspect.iscoroutinefunction(task) or inspect.iscoroutinefunction(
        getattr(task, "__call__", None)
    )


async def _invoke(task: Task, config: RunnerConfig) -> Any:
    """Call *task* once; plain callables run on a worker thread."""
    if _is_async_callable(task):
        return await task(config)
    result = await asyncio.to_thread(task, config)
    if inspect.isawaitable(result):
        return await result
    return result


def _reap_detached(fut: asyncio.Future[Any]) -> None:
    _detached_attempts.discard(fut)
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.debug("Timed-out attempt finished later with %r (result discarded).", exc)


async def _run_attempt(task: Task, config: RunnerConfig) -> None:
    """Run one attempt, racing it against ``task_timeout_ms`` when configured.

    Raises:
        TaskTimeoutError: If the timer fires first.
        Exception: Whatever the task raised.
    """
    timeout_s = config.task_timeout_s
    if timeout_s is None:
        await _invoke(task, config)
        return

    attempt = asyncio.ensure_future(_invoke(task, config))
    try:
        done, _ = await asyncio.wait({attempt}, timeout=timeout_s)
    except asyncio.CancelledError:
        attempt.cancel()
        raise

    if attempt in done:
        attempt.result()
        return

    attempt.cancel()
    _detached_attempts.add(attempt)
    attempt.add_done_callback(_reap_detached)
    raise TaskTimeoutError(config.task_timeout_ms)


def _notify_on_error(
    config: RunnerConfig,
    failure: TerminalFailure,
    log: LoggerProxy,
) -> None:
    """Invoke ``on_error``; anything it raises is logged and swallowed."""
    if config.on_error is None:
        return
    context = {
        "attempts": failure.attempts,
        "max_retries": failure.max_retries,
        "log_tag": config.log_tag,
        "original_error": failure.original_error,
    }
    try:
        config.on_error(failure, context)
    except Exception as callback_exc:
        log.error(f"[{config.log_tag}] Error in on_error callback: {callback_exc}", callback_exc)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_cycle(
    task: Task,
    config: RunnerConfig,
    stop_token: StopToken | None = None,
    log: LoggerProxy | None = None,
) -> CycleOutcome:
    """Run *task* until it succeeds, the retry budget is spent, or stop is requested.

    Args:
        task: The unit of work; called with *config* on every attempt.
        config: Runner configuration (retry budget, backoff, timeout, callback).
        stop_token: Cancellation token; a fresh, never-set token if ``None``.
        log: Logger facade; built from ``config.logger`` if ``None``.

    Returns:
        :attr:`CycleOutcome.SUCCEEDED` or :attr:`CycleOutcome.ABORTED`.

    Raises:
        TerminalFailure: If the final permitted attempt failed.
    """
    token = stop_token or StopToken()
    log = log or LoggerProxy(config.logger, default=logger)
    tag = f"[{config.log_tag}]"

    def _log_retry(retry_state: RetryCallState) -> None:
        assert retry_state.outcome is not None  # noqa: S101
        exc = retry_state.outcome.exception()
        delay_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
        try:
            log.warn(
                f"{tag} Attempt {retry_state.attempt_number} failed: {exc}. "
                f"Retrying in {delay_s:g}s..."
            )
        except Exception:
            # The retry proceeds even when the configured logger raises.
            logger.warning("%s Configured logger raised while logging a retry", tag, exc_info=True)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_retries),
        wait=make_wait(config),
        sleep=token.sleep,
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_retry,
        reraise=True,
    )

    attempt_number = 0
    aborted = False
    try:
        async for attempt in retrying:
            attempt_number = attempt.retry_state.attempt_number
            if token.is_set():
                aborted = True
                break
            with attempt:
                await _run_attempt(task, config)
    except Exception as exc:
        log.error(f"{tag} Task failed after {attempt_number} attempts: {exc}", exc)
        failure = TerminalFailure(exc, attempt_number, config.max_retries)
        _notify_on_error(config, failure, log)
        raise failure from exc

    if aborted:
        log.log(f"{tag} Received stop signal inside run_cycle()")
        return CycleOutcome.ABORTED

    log.log(f"{tag} Task completed successfully on attempt {attempt_number}")
    return CycleOutcome.SUCCEEDED
