"""Ready-made tasks.

:class:`ShellCommandTask` runs an external command once per attempt and turns
a non-zero exit status into :class:`~bgrunner.core.exceptions.CommandFailedError`,
so the runner's retry and backoff apply to it like to any other task.  The
CLI (``python -m bgrunner -- COMMAND ...``) is built on it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from bgrunner.core.config import RunnerConfig
from bgrunner.core.exceptions import CommandFailedError

__all__ = ["ShellCommandTask"]

logger = logging.getLogger(__name__)

#: Characters of stderr kept on :class:`CommandFailedError`.
_STDERR_TAIL: Final[int] = 500


class ShellCommandTask:
    """Run ``argv`` as a subprocess each time the task is invoked.

    If the attempt is cancelled (e.g. by a task timeout) the child process is
    killed before the cancellation propagates.

    Args:
        argv: Program and arguments; executed without a shell.
    """

    def __init__(self, argv: list[str]) -> None:
        if not argv:
            raise ValueError("argv must name a command to run.")
        self.argv = list(argv)

    async def __call__(self, config: RunnerConfig) -> str:
        """Run the command and return its stdout.

        Raises:
            CommandFailedError: If the command exits with a non-zero status.
            OSError: If the program cannot be executed.
        """
        proc = await asyncio.create_subprocess_exec(
            *self.argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        out = stdout.decode(errors="replace")
        if proc.returncode != 0:
            tail = stderr.decode(errors="replace").strip()[-_STDERR_TAIL:]
            raise CommandFailedError(self.argv, proc.returncode, tail)

        logger.debug(
            "[%s] Command %r finished (%d bytes of output).",
            config.log_tag,
            self.argv[0],
            len(stdout),
        )
        return out

    def __repr__(self) -> str:
        return f"ShellCommandTask({self.argv!r})"
