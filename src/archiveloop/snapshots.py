"""Snapshot mirror mounts and the periodic snapshot task.

Snapshot creation itself belongs to an external helper; this module only
discovers existing snapshots, mounts their images and decides when to ask for
a new one.

The periodic task shares no lock with the lifecycle loop. It relies on
snapshot directories and the live backing files being disjoint paths, so a
snapshot taken while a volume is mounted for repair only ever reads the live
image.
"""

from __future__ import annotations

import asyncio
import glob
from pathlib import Path

from archiveloop.context import DaemonContext
from archiveloop.models import Snapshot
from archiveloop.mounts import MountManager

__all__ = ["SnapshotScheduler"]


class SnapshotScheduler:
    """Mounts discovered snapshots and triggers new ones on a timer."""

    def __init__(self, context: DaemonContext, mounts: MountManager) -> None:
        self._config = context.config
        self._tools = context.tools
        self._mounts = mounts
        self._logger = context.logger.bind(component="snapshots")

    def discover(self) -> list[Snapshot]:
        """Find snapshot directories on the backing storage, oldest first."""
        root = self._config.paths.snapshot_mount_root
        return [
            Snapshot(directory=Path(directory), mount_path=root / Path(directory).name)
            for directory in sorted(glob.glob(self._config.paths.snapshot_glob))
            if Path(directory).is_dir()
        ]

    async def mount_all_snapshots(self) -> int:
        """Mount every snapshot image not already mounted.

        Returns:
            Number of snapshots newly mounted
        """
        snapshots = self.discover()
        if not snapshots:
            self._logger.debug("No snapshots to mount")
            return 0

        mounted = 0
        for snapshot in snapshots:
            if await self._mounts.is_mounted(snapshot.mount_path):
                continue
            snapshot.mount_path.mkdir(parents=True, exist_ok=True)
            if await self._tools.mount_snapshot(snapshot.image, snapshot.mount_path):
                mounted += 1
            else:
                self._logger.warning("Could not mount snapshot", snapshot=snapshot.directory.name)

        self._logger.info("Mounted snapshots", mounted=mounted, total=len(snapshots))
        return mounted

    async def take_snapshot(self) -> bool:
        """Ask the external helper for a new snapshot."""
        self._logger.info("Taking snapshot")
        ok = await self._tools.make_snapshot()
        if ok:
            self._logger.info("Snapshot taken")
        return ok

    async def run_periodic(self, interval: float | None = None) -> None:
        """Take a snapshot every `interval` seconds for the life of the process.

        Failures are logged and the timer carries on; nothing propagates out of
        this task.
        """
        interval = self._config.snapshot_interval if interval is None else interval
        self._logger.info("Starting periodic snapshots", interval=interval)
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.take_snapshot()
                except Exception:
                    self._logger.exception("Periodic snapshot failed")
        except asyncio.CancelledError:
            self._logger.debug("Periodic snapshots cancelled")
            raise
