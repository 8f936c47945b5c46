"""Adapter giving any logger-like object the ``log`` / ``warn`` / ``error`` shape.

The runner writes every line through a :class:`LoggerProxy` so callers may
pass whatever logger they already have:

* a :class:`logging.Logger` or :class:`logging.LoggerAdapter` — mapped to
  ``info`` / ``warning`` / ``error``;
* a duck-typed object — ``log`` falls back to ``info``; ``warn`` falls back to
  ``warning``; any method still missing falls back to the stdlib logger of
  this module;
* ``None`` — the stdlib logger of the scheduler module.

A partial logger never makes construction fail.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

__all__ = ["LoggerProxy"]

logger = logging.getLogger(__name__)

_LogFn = Callable[..., Any]


def _resolve(target: Any, *names: str) -> _LogFn | None:
    """Return the first callable attribute of *target* among *names*."""
    for name in names:
        fn = getattr(target, name, None)
        if callable(fn):
            return fn
    return None


class LoggerProxy:
    """Uniform ``log`` / ``warn`` / ``error`` facade over a configured logger.

    Messages arrive fully formatted.  ``error`` optionally takes the exception
    that caused the line: stdlib loggers receive it as ``exc_info`` so the
    traceback is rendered; duck-typed loggers receive it as a second
    positional argument.

    Args:
        target: The user-supplied logger, or ``None``.
        default: Stdlib logger used when *target* is ``None``.
    """

    def __init__(self, target: Any = None, default: logging.Logger | None = None) -> None:
        fallback = default or logger
        if target is None:
            target = fallback

        self._stdlib = isinstance(target, (logging.Logger, logging.LoggerAdapter))
        if self._stdlib:
            self._log: _LogFn = target.info
            self._warn: _LogFn = target.warning
            self._error: _LogFn = target.error
            self._error_is_stdlib = True
        else:
            self._log = _resolve(target, "log", "info") or fallback.info
            self._warn = _resolve(target, "warn", "warning") or fallback.warning
            self._error = _resolve(target, "error") or fallback.error
            # Fallback methods are stdlib ones even on a duck-typed target.
            self._error_is_stdlib = _resolve(target, "error") is None
        self.target = target

    def log(self, msg: str) -> None:
        self._log(msg)

    def warn(self, msg: str) -> None:
        self._warn(msg)

    def error(self, msg: str, exc: BaseException | None = None) -> None:
        if exc is None:
            self._error(msg)
        elif self._error_is_stdlib:
            self._error(msg, exc_info=exc)
        else:
            self._error(msg, exc)
