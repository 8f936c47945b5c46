"""Unit tests for the scheduler / shutdown coordinator.

Tests cover:
- Construction-time validation (``ConfigurationError``).
- ``start`` — repeated firings, idempotence, restart after stop.
- ``stop`` / ``await_shutdown`` — immediate release when nothing is in flight,
  waiting for the in-flight cycle otherwise, no firing after stop.
- Failure isolation — a terminally failing cycle never ends the schedule.
- ``CompletionLatch`` and ``StopToken`` primitives.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from bgrunner.core.config import RunnerConfig
from bgrunner.core.exceptions import ConfigurationError
from bgrunner.core.logging_config import FIRING_ID_CTX
from bgrunner.orchestrator.latch import CompletionLatch, StopToken
from bgrunner.orchestrator.scheduler import BackgroundTaskRunner, RunnerState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_FAST: dict[str, Any] = {
    "polling_period_seconds": 0.01,
    "initial_delay_ms": 0,
    "base_retry_delay_ms": 1,
    "max_retries": 2,
}


def _counting_task() -> tuple[list[int], Any]:
    calls: list[int] = []

    async def task(config: RunnerConfig) -> None:
        calls.append(1)

    return calls, task


async def _wait_until(predicate: Any, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"polling_period_seconds": 0},
            {"polling_period_seconds": -5},
            {"max_retries": 0},
            {"backoff_strategy": "fibonacci"},
            {"on_error": "not-callable"},
            {"base_retry_delay_ms": -1},
            {"unknown_option": 1},
        ],
    )
    def test_invalid_config_raises(self, overrides: dict[str, Any]) -> None:
        _, task = _counting_task()
        with pytest.raises(ConfigurationError):
            BackgroundTaskRunner(task, **overrides)

    def test_non_callable_task_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="callable"):
            BackgroundTaskRunner("not a function")  # type: ignore[arg-type]

    def test_defaults(self) -> None:
        _, task = _counting_task()
        runner = BackgroundTaskRunner(task)
        assert runner.config.polling_period_seconds == 60
        assert runner.config.max_retries == 5
        assert runner.config.backoff_strategy == "exponential"
        assert runner.config.initial_delay_ms == 5000
        assert runner.config.task_timeout_ms == 0
        assert runner.config.log_tag == "background-task"
        assert runner.state is RunnerState.IDLE

    def test_accepts_config_instance_with_overrides(self) -> None:
        _, task = _counting_task()
        base = RunnerConfig(max_retries=2, log_tag="sync")
        runner = BackgroundTaskRunner(task, base, max_retries=7)
        assert runner.config.max_retries == 7
        assert runner.config.log_tag == "sync"

    def test_partial_logger_does_not_fail(self) -> None:
        class OnlyInfo:
            def info(self, msg: str) -> None:
                pass

        _, task = _counting_task()
        BackgroundTaskRunner(task, logger=OnlyInfo())

    def test_start_outside_event_loop_raises(self) -> None:
        _, task = _counting_task()
        runner = BackgroundTaskRunner(task)
        with pytest.raises(RuntimeError):
            runner.start()
        assert runner.state is RunnerState.IDLE


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TestScheduling:
    @pytest.mark.asyncio
    async def test_fires_repeatedly(self, recording_logger: Any) -> None:
        calls, task = _counting_task()
        runner = BackgroundTaskRunner(task, logger=recording_logger, **_FAST)

        runner.start()
        assert runner.is_running
        await _wait_until(lambda: len(calls) >= 3)
        await runner.stop_and_wait()

        successes = recording_logger.messages("log", "completed successfully")
        assert len(successes) == len(calls)

    @pytest.mark.asyncio
    async def test_initial_delay_applies_to_first_firing(self) -> None:
        calls, task = _counting_task()
        runner = BackgroundTaskRunner(
            task, polling_period_seconds=0.01, initial_delay_ms=10_000
        )

        runner.start()
        await asyncio.sleep(0.05)
        assert calls == []
        await runner.stop_and_wait()

    @pytest.mark.asyncio
    async def test_double_start_keeps_one_chain(self, recording_logger: Any) -> None:
        calls, task = _counting_task()
        runner = BackgroundTaskRunner(
            task, logger=recording_logger, polling_period_seconds=10, initial_delay_ms=0
        )

        runner.start()
        runner.start()
        await asyncio.sleep(0.05)

        assert len(calls) == 1
        assert recording_logger.messages("log", "Already running")
        await runner.stop_and_wait()

    @pytest.mark.asyncio
    async def test_failing_cycle_does_not_stop_schedule(self, recording_logger: Any) -> None:
        on_error = MagicMock()
        calls: list[int] = []

        async def task(config: RunnerConfig) -> None:
            calls.append(1)
            raise RuntimeError("always broken")

        runner = BackgroundTaskRunner(
            task, logger=recording_logger, on_error=on_error, **{**_FAST, "max_retries": 1}
        )

        runner.start()
        await _wait_until(lambda: len(calls) >= 3)
        await runner.stop_and_wait()

        assert on_error.call_count >= 2
        assert len(recording_logger.messages("error", "Unhandled task error")) >= 2

    @pytest.mark.asyncio
    async def test_firing_id_is_set_during_cycle(self) -> None:
        seen: list[str] = []

        async def task(config: RunnerConfig) -> None:
            seen.append(FIRING_ID_CTX.get())

        runner = BackgroundTaskRunner(task, log_tag="ids", **_FAST)
        runner.start()
        await _wait_until(lambda: len(seen) >= 2)
        await runner.stop_and_wait()

        assert seen[0] == "ids#1"
        assert seen[1] == "ids#2"
        assert FIRING_ID_CTX.get() == "-"


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    @pytest.mark.asyncio
    async def test_await_shutdown_without_start_returns(self, recording_logger: Any) -> None:
        _, task = _counting_task()
        runner = BackgroundTaskRunner(task, logger=recording_logger)

        await asyncio.wait_for(runner.await_shutdown(), timeout=0.5)
        assert recording_logger.messages("log", "No latch to wait for")

    @pytest.mark.asyncio
    async def test_stop_with_nothing_in_flight_releases_waiters(self) -> None:
        calls, task = _counting_task()
        runner = BackgroundTaskRunner(task, initial_delay_ms=10_000)

        runner.start()
        waiter = asyncio.create_task(runner.await_shutdown())
        await asyncio.sleep(0)
        runner.stop()

        await asyncio.wait_for(waiter, timeout=0.5)
        await asyncio.wait_for(runner.await_shutdown(), timeout=0.5)
        assert calls == []
        assert runner.state is RunnerState.STOPPING

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_task(self) -> None:
        gate = asyncio.Event()
        started = asyncio.Event()
        calls: list[int] = []

        async def slow(config: RunnerConfig) -> None:
            calls.append(1)
            started.set()
            await gate.wait()

        runner = BackgroundTaskRunner(slow, **_FAST)
        runner.start()
        await asyncio.wait_for(started.wait(), timeout=1)

        runner.stop()
        waiter = asyncio.create_task(runner.await_shutdown())
        await asyncio.sleep(0.05)
        assert not waiter.done(), "await_shutdown returned while the task was running"

        gate.set()
        await asyncio.wait_for(waiter, timeout=1)
        assert not runner.firing_in_flight

        await asyncio.sleep(0.05)
        assert calls == [1], "a firing was scheduled after stop()"

    @pytest.mark.asyncio
    async def test_stop_mid_backoff_waits_for_cycle_and_skips_on_error(self) -> None:
        on_error = MagicMock()
        failed_once = asyncio.Event()
        calls: list[int] = []

        async def task(config: RunnerConfig) -> None:
            calls.append(1)
            failed_once.set()
            raise RuntimeError("retry me")

        runner = BackgroundTaskRunner(
            task,
            on_error=on_error,
            polling_period_seconds=0.01,
            initial_delay_ms=0,
            base_retry_delay_ms=10_000,
            max_retries=3,
        )
        runner.start()
        await asyncio.wait_for(failed_once.wait(), timeout=1)
        await asyncio.sleep(0.01)
        assert runner.firing_in_flight

        await asyncio.wait_for(runner.stop_and_wait(), timeout=1)

        assert not runner.firing_in_flight
        assert calls == [1]
        on_error.assert_not_called()
        await asyncio.sleep(0.05)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        _, task = _counting_task()
        runner = BackgroundTaskRunner(task, **_FAST)
        runner.start()
        runner.stop()
        runner.stop()
        await asyncio.wait_for(runner.await_shutdown(), timeout=1)
        assert runner.state is RunnerState.STOPPING

    @pytest.mark.asyncio
    async def test_restart_after_stop_and_wait(self) -> None:
        calls, task = _counting_task()
        runner = BackgroundTaskRunner(task, **_FAST)

        runner.start()
        await _wait_until(lambda: len(calls) >= 1)
        await runner.stop_and_wait()
        count_after_stop = len(calls)

        runner.start()
        assert runner.state is RunnerState.RUNNING
        await _wait_until(lambda: len(calls) >= count_after_stop + 2)
        await runner.stop_and_wait()

    @pytest.mark.asyncio
    async def test_quick_restart_does_not_overlap_cycles(self) -> None:
        gate = asyncio.Event()
        started = asyncio.Event()
        active = 0
        max_active = 0
        calls: list[int] = []

        async def slow(config: RunnerConfig) -> None:
            nonlocal active, max_active
            calls.append(1)
            active += 1
            max_active = max(max_active, active)
            started.set()
            try:
                await gate.wait()
            finally:
                active -= 1

        runner = BackgroundTaskRunner(slow, polling_period_seconds=10, initial_delay_ms=0)
        runner.start()
        await asyncio.wait_for(started.wait(), timeout=1)

        runner.stop()
        runner.start()
        await asyncio.sleep(0.05)
        assert calls == [1]

        gate.set()
        await _wait_until(lambda: len(calls) == 2)
        await asyncio.wait_for(runner.stop_and_wait(), timeout=1)
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_stop_after_quick_restart_waits_for_in_flight_cycle(self) -> None:
        gate = asyncio.Event()
        started = asyncio.Event()
        finished: list[int] = []

        async def slow(config: RunnerConfig) -> None:
            started.set()
            await gate.wait()
            finished.append(1)

        runner = BackgroundTaskRunner(slow, polling_period_seconds=10, initial_delay_ms=0)
        runner.start()
        await asyncio.wait_for(started.wait(), timeout=1)

        runner.stop()
        runner.start()
        runner.stop()
        assert runner.firing_in_flight

        waiter = asyncio.create_task(runner.await_shutdown())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        gate.set()
        await asyncio.wait_for(waiter, timeout=1)
        assert finished == [1]
        assert not runner.firing_in_flight

    @pytest.mark.asyncio
    async def test_async_context_manager(self) -> None:
        calls, task = _counting_task()
        async with BackgroundTaskRunner(task, **_FAST) as runner:
            assert runner.is_running
            await _wait_until(lambda: len(calls) >= 1)
        assert runner.state is RunnerState.STOPPING
        assert not runner.firing_in_flight


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


class TestCompletionLatch:
    @pytest.mark.asyncio
    async def test_count_down_releases_waiter(self) -> None:
        latch = CompletionLatch(1)
        waiter = asyncio.create_task(latch.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        latch.count_down()
        await asyncio.wait_for(waiter, timeout=0.5)
        assert latch.released

    @pytest.mark.asyncio
    async def test_double_count_down_is_noop(self) -> None:
        latch = CompletionLatch(1)
        latch.count_down()
        latch.count_down()
        assert latch.count == 0
        await asyncio.wait_for(latch.wait(), timeout=0.1)

    @pytest.mark.asyncio
    async def test_zero_count_is_already_released(self) -> None:
        await asyncio.wait_for(CompletionLatch(0).wait(), timeout=0.1)


class TestStopToken:
    @pytest.mark.asyncio
    async def test_sleep_returns_early_when_set(self) -> None:
        token = StopToken()
        sleeper = asyncio.create_task(token.sleep(10))
        await asyncio.sleep(0.01)
        token.set()
        await asyncio.wait_for(sleeper, timeout=0.5)

    @pytest.mark.asyncio
    async def test_sleep_when_already_set_returns_immediately(self) -> None:
        token = StopToken()
        token.set()
        await asyncio.wait_for(token.sleep(10), timeout=0.1)

    @pytest.mark.asyncio
    async def test_sleep_elapses_normally(self) -> None:
        token = StopToken()
        await asyncio.wait_for(token.sleep(0.01), timeout=0.5)
        assert not token.is_set()
