"""Scheduling, retry execution, and graceful shutdown.

Public API
----------
* :class:`~bgrunner.orchestrator.scheduler.BackgroundTaskRunner` — fires the
  task on a fixed interval and coordinates graceful shutdown.
* :func:`~bgrunner.orchestrator.executor.run_cycle` — one run cycle with
  bounded retry, backoff and optional per-attempt timeout; also used directly
  by ``--once`` mode.
* :func:`~bgrunner.orchestrator.backoff.retry_delay_ms` — pure backoff policy.
* :class:`~bgrunner.orchestrator.latch.CompletionLatch` /
  :class:`~bgrunner.orchestrator.latch.StopToken` — the runner's
  synchronisation primitives.
"""

from bgrunner.orchestrator.backoff import make_wait, retry_delay_ms
from bgrunner.orchestrator.executor import CycleOutcome, Task, run_cycle
from bgrunner.orchestrator.latch import CompletionLatch, StopToken
from bgrunner.orchestrator.scheduler import BackgroundTaskRunner, RunnerState

__all__ = [
    # Coordinator
    "BackgroundTaskRunner",
    "RunnerState",
    # Retry executor
    "CycleOutcome",
    "Task",
    "run_cycle",
    # Backoff
    "make_wait",
    "retry_delay_ms",
    # Primitives
    "CompletionLatch",
    "StopToken",
]
