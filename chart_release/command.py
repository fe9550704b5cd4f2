"""Library for running external tools such as `helm` with asyncio.

Commands are started without a shell and stdout is returned as text. A
non-zero exit raises the command's configured exception with the tail of
stderr, which is where helm reports what went wrong.
"""

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import shlex
import subprocess

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

# Limits concurrent external processes across all charts in a run
_SEM = asyncio.Semaphore(8)
DEFAULT_TIMEOUT = 300.0
ERROR_LINES = 20


# No public API
__all__: list[str] = []


def _tail(output: bytes, lines: int = ERROR_LINES) -> str:
    text = output.decode("utf-8", errors="replace").strip()
    return "\n".join(text.splitlines()[-lines:])


@dataclass
class Command:
    """An external program invocation."""

    cmd: list[str]
    """Program and arguments."""

    cwd: Path | None = None
    """Working directory, or the current directory when unset."""

    exc: type[CommandException] = CommandException
    """Exception raised when the program fails or times out."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds to wait for the program to exit."""

    @property
    def string(self) -> str:
        """Render the command as a single shell quoted string."""
        return shlex.join(self.cmd)

    def __str__(self) -> str:
        if self.cwd:
            return f"({self.cwd}) {self.string}"
        return self.string

    async def run(self) -> str:
        """Run the program to completion and return its stdout."""
        _LOGGER.debug("Running command: %s", self)
        proc = await asyncio.create_subprocess_exec(
            *self.cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.cwd,
        )
        try:
            out, err = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError as error:
            proc.kill()
            await proc.wait()
            raise self.exc(
                f"Command '{self}' timed out after {self.timeout:g}s"
            ) from error
        if proc.returncode:
            message = f"Command '{self}' failed with return code {proc.returncode}"
            if details := _tail(err) or _tail(out):
                message = f"{message}\n{details}"
            _LOGGER.debug(message)
            raise self.exc(message)
        return out.decode("utf-8")


async def run(cmd: Command) -> str:
    """Run the command once a process slot is free and return stdout."""
    async with _SEM:
        return await cmd.run()
