"""Shared pytest fixtures and configuration for the bgrunner test suite.

This file is loaded automatically by pytest before any test module.
"""

from __future__ import annotations

import os
from typing import Any

import pytest
from pydantic_settings import SettingsConfigDict

from bgrunner.core import configure_logging
from bgrunner.core.settings import Settings


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


class RecordingLogger:
    """Duck-typed ``log`` / ``warn`` / ``error`` logger that keeps every line.

    Lines are stored as ``(level, message)`` tuples; ``level`` is the name of
    the method that was called.
    """

    def __init__(self) -> None:
        self.lines: list[tuple[str, str]] = []
        self.error_args: list[tuple[Any, ...]] = []

    def log(self, msg: str, *args: Any) -> None:
        self.lines.append(("log", msg))

    def warn(self, msg: str, *args: Any) -> None:
        self.lines.append(("warn", msg))

    def error(self, msg: str, *args: Any) -> None:
        self.lines.append(("error", msg))
        self.error_args.append(args)

    def messages(self, level: str, containing: str = "") -> list[str]:
        return [m for lvl, m in self.lines if lvl == level and containing in m]


@pytest.fixture()
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all ``BGRUNNER_*`` and logging env vars for the duration of a test.

    Also disables ``.env`` file loading so a developer's local file does not
    leak into Settings tests.
    """
    for key in list(os.environ):
        if key.startswith("BGRUNNER_") or key in {"LOG_LEVEL", "LOG_FORMAT"}:
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_prefix="BGRUNNER_",
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )
