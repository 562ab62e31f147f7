"""Command execution for external tools on the appliance."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol

from archiveloop.models import CommandResult

__all__ = [
    "Executor",
    "LocalExecutor",
    "LocalProcess",
    "Process",
]


class Process(Protocol):
    """Handle for a running process with streaming output.

    Note: stdin is intentionally not supported. Every tool the daemon runs
    (fsck in auto-repair mode, mount helpers, transfer scripts) must be
    non-interactive.
    """

    def stdout(self) -> AsyncIterator[str]:
        """Iterate over stdout lines as they arrive."""
        ...

    async def wait(self) -> CommandResult:
        """Wait for process to complete and return result."""
        ...


class Executor(Protocol):
    """Protocol for running external commands.

    LocalExecutor is the production implementation; tests substitute a fake
    that models the mount table and the external scripts.
    """

    async def run_command(
        self,
        cmd: str,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and wait for completion."""
        ...

    async def start_process(self, cmd: str) -> Process:
        """Start a process whose output is consumed line by line."""
        ...


class LocalProcess:
    """Process wrapper for local asyncio subprocess."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc

    async def stdout(self) -> AsyncIterator[str]:
        """Iterate over stdout lines as they arrive."""
        if self._proc.stdout is None:
            return
        async for line in self._proc.stdout:
            yield line.decode(errors="replace").rstrip("\n")

    async def wait(self) -> CommandResult:
        """Wait for process to complete and return result."""
        stdout_bytes, stderr_bytes = await self._proc.communicate()
        return CommandResult(
            exit_code=self._proc.returncode or 0,
            stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
        )


class LocalExecutor:
    """Executes commands on the appliance via async subprocess."""

    async def run_command(
        self,
        cmd: str,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and wait for completion.

        Args:
            cmd: Shell command to execute
            timeout: Optional timeout in seconds

        Returns:
            CommandResult with exit code, stdout, and stderr

        Raises:
            TimeoutError: If the command outlives the timeout (it is terminated first)
        """
        proc = await asyncio.create_subprocess_shell(
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=timeout,
            )
            return CommandResult(
                exit_code=proc.returncode or 0,
                stdout=stdout.decode(errors="replace") if stdout else "",
                stderr=stderr.decode(errors="replace") if stderr else "",
            )
        except TimeoutError:
            proc.terminate()
            await proc.wait()
            raise

    async def start_process(self, cmd: str) -> LocalProcess:
        """Start a process with streaming output.

        stderr is folded into stdout so repair tools can be logged as one stream.

        Args:
            cmd: Shell command to execute

        Returns:
            LocalProcess wrapper for the subprocess
        """
        proc = await asyncio.create_subprocess_shell(
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        return LocalProcess(proc)
