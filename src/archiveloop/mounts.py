"""Mounting, unmounting and repair of the loopback-backed volumes.

Mount state is never cached: every decision re-reads the OS mount table
through `findmnt`, so a restart of the daemon (or a mount changed behind its
back) is always seen as it really is.
"""

from __future__ import annotations

import shlex
from pathlib import Path

from archiveloop.context import DaemonContext
from archiveloop.logger import CONTINUATION_MARKER
from archiveloop.models import MountPoint
from archiveloop.retry import RetryPolicy
from archiveloop.tools import render_command

__all__ = ["MountManager"]

# fsck exit status bits: errors left uncorrected, operational error, usage error
FSCK_FAILED = 4 | 8 | 16


class MountManager:
    """Mount/unmount and filesystem repair for named volumes."""

    def __init__(self, context: DaemonContext, retry: RetryPolicy) -> None:
        self._context = context
        self._executor = context.executor
        self._retry = retry
        self._logger = context.logger.bind(component="mounts")

    async def mount_source(self, path: Path) -> str | None:
        """Look up the device mounted at `path` in the mount table.

        Returns:
            Source device (e.g. /dev/loop0), or None if nothing is mounted there
        """
        result = await self._executor.run_command(f"findmnt -n -o SOURCE --mountpoint {shlex.quote(str(path))}")
        if not result.success:
            return None
        source = result.stdout.strip()
        return source or None

    async def is_mounted(self, path: Path) -> bool:
        return await self.mount_source(path) is not None

    async def ensure_mounted(self, mount_point: MountPoint) -> bool:
        """Mount the volume once unless the mount table already shows it mounted.

        Returns:
            True if the volume is mounted afterwards
        """
        if await self.is_mounted(mount_point.path):
            self._logger.debug("Already mounted", volume=mount_point.name, path=str(mount_point.path))
            return True

        result = await self._executor.run_command(f"mount {shlex.quote(str(mount_point.path))}")
        if not result.success:
            self._logger.info(
                "Mount attempt failed",
                volume=mount_point.name,
                path=str(mount_point.path),
                stderr=result.stderr.strip(),
            )
            return False

        self._logger.info("Mounted", volume=mount_point.name, path=str(mount_point.path))
        return True

    async def mount(self, mount_point: MountPoint) -> bool:
        """Mount with the retry budget; failure is reported, never raised."""
        ok = await self._retry.retry(
            lambda: self.ensure_mounted(mount_point),
            description=f"mount {mount_point.path}",
        )
        if not ok:
            self._logger.error("Giving up on mount", volume=mount_point.name, path=str(mount_point.path))
        return ok

    async def fsck_repair(self, mount_point: MountPoint) -> bool:
        """Run the consistency checker in auto-repair mode on the volume's loop device.

        Tool output is relayed into the log line by line. Best-effort: the
        result is returned for the record, but an unrepairable volume never
        stops the caller.

        Returns:
            True if the checker reported a clean or corrected filesystem
        """
        device = await self.mount_source(mount_point.path)
        if device is None:
            self._logger.warning("Cannot repair, not mounted", volume=mount_point.name, path=str(mount_point.path))
            return False

        self._logger.info("Running fsck", volume=mount_point.name, device=device)
        process = await self._executor.start_process(render_command(self._context.config.commands.fsck, device=device))
        async for line in process.stdout():
            self._logger.info(CONTINUATION_MARKER + line)
        result = await process.wait()

        if result.exit_code & FSCK_FAILED:
            self._logger.warning("fsck did not repair the volume", volume=mount_point.name, exit_code=result.exit_code)
            return False
        self._logger.info("Finished fsck", volume=mount_point.name, exit_code=result.exit_code)
        return True

    async def unmount(self, mount_point: MountPoint) -> bool:
        """Unmount, falling back to a lazy unmount if the volume is busy.

        A lazy unmount detaches the path from the namespace even with files
        still open underneath, so on return the path is gone from the mount
        table whichever way succeeded.

        Returns:
            True if the path is absent from the mount table afterwards
        """
        path = shlex.quote(str(mount_point.path))
        if not await self.is_mounted(mount_point.path):
            return True

        result = await self._executor.run_command(f"umount {path}")
        if not result.success:
            self._logger.warning(
                "Unmount failed, detaching lazily",
                volume=mount_point.name,
                stderr=result.stderr.strip(),
            )
            await self._executor.run_command(f"umount -l {path}")

        if await self.is_mounted(mount_point.path):
            self._logger.error("Still mounted after lazy unmount", volume=mount_point.name)
            return False

        self._logger.info("Unmounted", volume=mount_point.name, path=str(mount_point.path))
        return True
