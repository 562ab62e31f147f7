"""External collaborators invoked as shell commands.

Each method renders one template from CommandsConfig, runs it through the
Executor and reports plain success or failure. What the scripts do internally
(transfer logic, vehicle API calls, push delivery) is not this package's concern.
"""

from __future__ import annotations

import shlex
from pathlib import Path

import structlog

from archiveloop.config import CommandsConfig
from archiveloop.executor import Executor
from archiveloop.models import CommandResult

__all__ = ["ExternalTools", "render_command"]


def render_command(template: str, **values: str | Path) -> str:
    """Substitute placeholders in a command template, shell-quoting every value.

    Args:
        template: Template such as "/root/bin/mount_snapshot.sh {image} {mountpoint}"
        **values: Placeholder values

    Returns:
        Command string safe to pass to a shell
    """
    return template.format(**{key: shlex.quote(str(value)) for key, value in values.items()})


class ExternalTools:
    """Thin async wrappers around the appliance's helper scripts."""

    def __init__(
        self,
        executor: Executor,
        commands: CommandsConfig,
        logger: structlog.stdlib.BoundLogger,
    ) -> None:
        self._executor = executor
        self._commands = commands
        self._logger = logger.bind(component="tools")

    async def _run(self, what: str, cmd: str, timeout: float | None = None) -> CommandResult:
        result = await self._executor.run_command(cmd, timeout=timeout)
        if not result.success:
            self._logger.warning(
                f"{what} failed",
                exit_code=result.exit_code,
                stderr=result.stderr.strip(),
            )
        return result

    async def probe_reachable(self, host: str) -> bool:
        """Single reachability probe of the archive endpoint, no retry."""
        cmd = render_command(self._commands.reachability_probe, host=host)
        result = await self._executor.run_command(cmd)
        return result.success

    async def connect_archive(self) -> bool:
        return (await self._run("Connecting to archive", self._commands.connect_archive)).success

    async def disconnect_archive(self) -> bool:
        return (await self._run("Disconnecting from archive", self._commands.disconnect_archive)).success

    async def archive_clips(self) -> bool:
        return (await self._run("Clip transfer", self._commands.archive_clips)).success

    async def archive_music(self) -> bool:
        return (await self._run("Music transfer", self._commands.archive_music)).success

    async def make_snapshot(self) -> bool:
        return (await self._run("Snapshot creation", self._commands.make_snapshot)).success

    async def mount_snapshot(self, image: Path, mountpoint: Path) -> bool:
        cmd = render_command(self._commands.mount_snapshot, image=image, mountpoint=mountpoint)
        return (await self._run("Snapshot mount", cmd)).success

    async def sync_time(self) -> bool:
        return (await self._run("Time synchronization", self._commands.time_sync)).success

    async def notify(self, title: str, message: str) -> bool:
        cmd = render_command(self._commands.notify, title=title, message=message)
        return (await self._run("Push notification", cmd)).success

    async def always_on_enabled(self) -> bool | None:
        """Ask the vehicle whether its always-on recording feature is enabled.

        Returns:
            True/False from the tool's output, or None if the query itself failed
        """
        result = await self._run("Always-on status query", self._commands.always_on_status)
        if not result.success:
            return None
        return result.stdout.strip().lower() == "true"

    async def enable_always_on(self) -> bool:
        return (await self._run("Enabling always-on", self._commands.always_on_enable)).success

    async def disable_always_on(self) -> bool:
        return (await self._run("Disabling always-on", self._commands.always_on_disable)).success

    async def gadget_bind(self) -> bool:
        return (await self._run("USB gadget bind", self._commands.gadget_bind)).success

    async def gadget_unbind(self) -> bool:
        return (await self._run("USB gadget unbind", self._commands.gadget_unbind)).success
