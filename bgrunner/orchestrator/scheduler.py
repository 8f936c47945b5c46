"""Scheduler and shutdown coordinator for a single background task.

:class:`BackgroundTaskRunner` fires the task on a fixed interval, runs each
firing through :func:`~bgrunner.orchestrator.executor.run_cycle`, and lets a
caller wait until the firing currently in flight (retries included) has fully
finished before the process exits.

State machine
~~~~~~~~~~~~~
::

    IDLE ──start()──▶ RUNNING ──stop()──▶ STOPPING
                        │  ▲                 │
                        └──┘ fire/reschedule │
                                             │ start()  (fresh generation)
                                             ▼
                                          RUNNING

Firing sequence
~~~~~~~~~~~~~~~
1. :meth:`_schedule_next` creates a fresh :class:`CompletionLatch` and arms a
   ``loop.call_later`` timer (``initial_delay_ms`` for the first firing,
   ``polling_period_seconds`` afterwards).
2. On expiry the firing runs in its own asyncio task.  Any exception from the
   cycle is logged as ``Unhandled task error`` and never reaches the loop's
   exception handler.
3. ``finally``: the latch is counted down, then the next firing is scheduled
   unless this firing's generation was stopped.

Every ``start()`` opens a new *generation* with its own :class:`StopToken`.
A firing from an earlier generation that is still finishing after a restart
sees its own (set) token, so it neither keeps retrying nor starts a second
scheduling chain.

Thread-safety
~~~~~~~~~~~~~
All state lives on the instance and is only touched from the event loop
thread.  Several runners can coexist on one loop.

Typical usage::

    runner = BackgroundTaskRunner(poll, polling_period_seconds=30, max_retries=3)
    runner.start()
    ...
    await runner.stop_and_wait()
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from types import TracebackType
from typing import Any

from bgrunner.core.config import RunnerConfig, load_config
from bgrunner.core.exceptions import ConfigurationError
from bgrunner.core.logger_proxy import LoggerProxy
from bgrunner.core.logging_config import FIRING_ID_CTX
from bgrunner.orchestrator.executor import Task, run_cycle
from bgrunner.orchestrator.latch import CompletionLatch, StopToken

__all__ = ["BackgroundTaskRunner", "RunnerState"]

logger = logging.getLogger(__name__)


class RunnerState(StrEnum):
    """Lifecycle state of a :class:`BackgroundTaskRunner`."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class BackgroundTaskRunner:
    """Run *task* repeatedly with retry, backoff, timeout and graceful stop.

    Args:
        task: Callable invoked with the :class:`RunnerConfig` on every attempt.
            Coroutine functions are awaited; plain callables run on a worker
            thread.
        config: A :class:`RunnerConfig` or a mapping of its fields.  Omitted
            fields take the defaults.
        **overrides: Individual configuration fields, applied over *config*.

    Raises:
        ConfigurationError: If *task* is not callable or the configuration is
            invalid.
    """

    def __init__(
        self,
        task: Task,
        config: RunnerConfig | dict[str, Any] | None = None,
        **overrides: Any,
    ) -> None:
        if not callable(task):
            raise ConfigurationError(f"task must be callable, got {type(task).__name__}")

        self._task = task
        self._config = load_config(config, **overrides)
        self._log = LoggerProxy(self._config.logger, default=logger)
        self._tag = f"[{self._config.log_tag}]"

        self._state = RunnerState.IDLE
        self._stop_token = StopToken()
        self._timer: asyncio.TimerHandle | None = None
        self._firing: asyncio.Task[None] | None = None
        self._latch: CompletionLatch | None = None
        self._firing_latch: CompletionLatch | None = None
        self._firing_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> RunnerConfig:
        return self._config

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is RunnerState.RUNNING

    @property
    def firing_in_flight(self) -> bool:
        """``True`` while a firing's run cycle has started but not finished."""
        return self._firing is not None and not self._firing.done()

    # ------------------------------------------------------------------
    # Scheduling internals
    # ------------------------------------------------------------------

    def _schedule_next(self, delay_s: float, token: StopToken) -> None:
        """Create the next firing's latch and arm its timer."""
        latch = CompletionLatch(1)
        self._latch = latch
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(delay_s, 0), self._on_timer, latch, token)

    def _on_timer(self, latch: CompletionLatch, token: StopToken) -> None:
        self._timer = None
        self._firing_latch = latch
        self._firing_count += 1
        self._firing = asyncio.get_running_loop().create_task(
            self._fire(latch, token, self._firing_count, self._firing),
            name=f"{self._config.log_tag}-firing-{self._firing_count}",
        )

    async def _fire(
        self,
        latch: CompletionLatch,
        token: StopToken,
        number: int,
        previous: asyncio.Task[None] | None,
    ) -> None:
        FIRING_ID_CTX.set(f"{self._config.log_tag}#{number}")
        cancelled = False
        try:
            # After a quick restart the previous generation may still be
            # finishing; run cycles never overlap.
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            await run_cycle(self._task, self._config, token, self._log)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as exc:
            self._log.error(f"{self._tag} Unhandled task error: {exc}", exc)
        finally:
            latch.count_down()

            if not token.is_set() and not cancelled:
                self._schedule_next(self._config.polling_period_s, token)
            else:
                self._log.log(f"{self._tag} Not scheduling for next run")
                if self._latch is latch:
                    self._latch = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduling chain; a no-op if already running.

        Must be called from inside a running event loop.

        Raises:
            RuntimeError: If no event loop is running.
        """
        if self._state is RunnerState.RUNNING:
            self._log.log(f"{self._tag} Already running, ignoring start()")
            return

        asyncio.get_running_loop()  # fail before touching state

        self._state = RunnerState.RUNNING
        self._stop_token = StopToken()
        self._log.log(
            f"{self._tag} Starting — first run in {self._config.initial_delay_s:g}s, "
            f"then every {self._config.polling_period_s:g}s"
        )
        self._schedule_next(self._config.initial_delay_s, self._stop_token)

    def stop(self) -> None:
        """Request a stop; idempotent.

        Sets the stop token (observed by the in-flight cycle before each
        attempt and during backoff waits) and cancels a pending timer.  If no
        firing is in flight the current latch is released at once so waiters
        return; otherwise the firing releases it when its cycle returns.  After
        a quick ``stop(); start(); stop()`` waiters follow the firing that is
        still running from the earlier generation.
        """
        self._log.log(f"{self._tag} stop() called")
        if self._state is RunnerState.RUNNING:
            self._state = RunnerState.STOPPING
        self._stop_token.set()

        # A pending timer owns the current latch; nothing will run for it.
        timer_pending = self._timer is not None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._latch is not None and (timer_pending or not self.firing_in_flight):
            self._log.log(f"{self._tag} Counting down latch during stop")
            self._latch.count_down()
            self._latch = None

        # After a quick restart the cancelled timer's latch is not the one
        # still running; waiters must follow the in-flight firing.
        if self._latch is None and self.firing_in_flight:
            self._latch = self._firing_latch

    async def await_shutdown(self) -> None:
        """Wait until the firing in flight (if any) has fully finished."""
        self._log.log(f"{self._tag} await_shutdown() called...")

        latch = self._latch
        if latch is None:
            self._log.log(f"{self._tag} No latch to wait for (not running)")
            return

        await latch.wait()
        self._log.log(f"{self._tag} Shutdown complete")

    async def stop_and_wait(self) -> None:
        """:meth:`stop` followed by :meth:`await_shutdown`."""
        self.stop()
        await self.await_shutdown()

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "BackgroundTaskRunner":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop_and_wait()
