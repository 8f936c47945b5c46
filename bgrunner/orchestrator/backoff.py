"""Backoff policy: attempt number → wait before the next attempt.

The delay is a function of the attempt that *just failed*, applied before the
next one.  With ``base = 1000`` ms:

==========  ===========  ====  ====  ====
strategy    formula      a=1   a=2   a=3
==========  ===========  ====  ====  ====
constant    B            1000  1000  1000
linear      a × B        1000  2000  3000
exponential 2^(a-1) × B  1000  2000  4000
==========  ===========  ====  ====  ====

Pure functions — safe to test without async.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Final

from tenacity import RetryCallState

from bgrunner.core.config import BackoffStrategy, RunnerConfig

__all__ = ["retry_delay_ms", "make_wait"]

#: Cap on exponential doublings; keeps huge attempt numbers finite.
_MAX_DOUBLINGS: Final[int] = 64


def retry_delay_ms(strategy: BackoffStrategy | str, attempt: int, base_ms: float) -> float:
    """Return the backoff delay in milliseconds after *attempt* failed.

    Args:
        strategy: Backoff strategy (enum member or its string value).
        attempt: 1-indexed number of the attempt that just failed.
        base_ms: Base retry delay in milliseconds.

    Raises:
        ValueError: If *strategy* is not a known strategy.
    """
    strategy = BackoffStrategy(strategy)
    if strategy is BackoffStrategy.CONSTANT:
        return base_ms
    if strategy is BackoffStrategy.LINEAR:
        return attempt * base_ms
    if base_ms == 0:
        return 0.0
    return math.ldexp(base_ms, min(attempt - 1, _MAX_DOUBLINGS))


def make_wait(config: RunnerConfig) -> Callable[[RetryCallState], float]:
    """Return a tenacity ``wait`` callable computing delays from *config*.

    Tenacity sleeps in seconds; negative delays are clamped to zero.
    """

    def _wait(retry_state: RetryCallState) -> float:
        delay = retry_delay_ms(
            config.backoff_strategy,
            retry_state.attempt_number,
            config.base_retry_delay_ms,
        )
        return max(delay, 0) / 1000

    return _wait
