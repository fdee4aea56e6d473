"""Shell utilities.

Provides an async wrapper around package manager subprocesses, plus the
step banner used by the CLI.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0


class CommandResult(BaseModel):
    """Captured outcome of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> CommandResult:
    """Run a command and capture its output.

    Non-zero exit codes are returned, not raised: callers decide whether the
    output is still usable. A command that exceeds the timeout is killed and
    reported with returncode -1.

    Args:
        *args: Command and arguments (e.g., "npm", "outdated", "--json").
        cwd: Working directory for the command.
        timeout: Maximum execution time in seconds.

    Raises:
        FileNotFoundError: If the executable is not installed.
    """
    logger.debug(f"$ {' '.join(args)}")
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(
            args=list(args),
            returncode=-1,
            stderr=f"Command timed out after {timeout}s",
        )

    return CommandResult(
        args=list(args),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def step(msg: str) -> None:
    """Print a visually distinct step header."""
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")
