"""Main lifecycle loop sequencing reachability, archive sessions and self-checks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from archiveloop.context import DaemonContext
from archiveloop.gadget import GadgetProbe, SysfsGadgetProbe, UsbGadgetController
from archiveloop.indicator import StatusIndicator
from archiveloop.logger import truncate_log
from archiveloop.models import ArchiveSessionState, IndicatorPattern
from archiveloop.monitor import ReachabilityMonitor
from archiveloop.mounts import MountManager
from archiveloop.retry import RetryPolicy
from archiveloop.session import ArchiveSession
from archiveloop.snapshots import SnapshotScheduler

__all__ = ["LifecycleLoop"]


class LifecycleLoop:
    """Root state machine of the daemon.

    Responsibilities:
    - Startup: mount snapshots, start periodic snapshots, pick the initial branch
    - Steady state: wait for the archive, run a session, wait for it to leave
    - Self-check: heal the gadget if the host stopped seeing the storage
    - Log housekeeping

    Everything runs sequentially on one coroutine; the periodic snapshot task
    is the only concurrent activity.
    """

    def __init__(self, context: DaemonContext, gadget_probe: GadgetProbe | None = None) -> None:
        """Wire up every component from the shared context.

        Args:
            context: Configuration, executor, tools and logger
            gadget_probe: Hardware check for gadget binding (defaults to the sysfs glob check)
        """
        self._context = context
        self._config = context.config
        self._tools = context.tools
        self._logger = context.logger.bind(component="lifecycle")

        retry = RetryPolicy(
            context.logger.bind(component="retry"),
            max_attempts=self._config.retry_attempts,
            delay=self._config.retry_delay,
        )
        self.mounts = MountManager(context, retry)
        self.monitor = ReachabilityMonitor(context, retry)
        self.gadget = UsbGadgetController(
            context,
            gadget_probe or SysfsGadgetProbe(self._config.paths.gadget_lun_glob),
        )
        self.indicator = StatusIndicator(self._config.paths.led_dir, context.logger)
        self.snapshots = SnapshotScheduler(context, self.mounts)
        self.session = ArchiveSession(context, self.mounts, self.gadget)

    async def run(self) -> None:
        """Run forever. Only process termination (task cancellation) ends this."""
        async with asyncio.TaskGroup() as tg:
            await self.startup(tg)
            while True:
                try:
                    await self.run_cycle()
                except Exception:
                    self._logger.exception("Lifecycle cycle failed")
                    await asyncio.sleep(self._config.poll_interval)

    async def startup(self, task_group: asyncio.TaskGroup | None = None) -> None:
        """Bring the appliance into a known state and choose the initial branch.

        Args:
            task_group: Group that will own the periodic snapshot task; None skips starting it
        """
        self._logger.info("Starting", archive_host=self._config.archive_host_name)
        self.indicator.set(IndicatorPattern.WAITING)

        await self._contained("Mounting snapshots", self.snapshots.mount_all_snapshots)
        if self._config.snapshots_enabled:
            await self._contained("Snapshot", self.snapshots.take_snapshot)
            if task_group is not None:
                task_group.create_task(self.snapshots.run_periodic())

        if await self.monitor.probe():
            self._logger.info("Archive reachable at startup")
            self.indicator.set(IndicatorPattern.ACTIVE)
            await self._contained("Time synchronization", self._tools.sync_time)
            await self._run_session()
            self.indicator.set(IndicatorPattern.DONE)
            await self._wait_for_departure()
        else:
            self._logger.info("Archive unreachable at startup")
            self.indicator.set(IndicatorPattern.WAITING)
            await self._contained("Repair pass", self._detach_and_repair)
            await self._contained("Connecting USB drives", self.gadget.connect)

    async def run_cycle(self) -> ArchiveSessionState | None:
        """One pass of the steady-state loop.

        Returns:
            The session record, or None if the session raised
        """
        self.indicator.set(IndicatorPattern.WAITING)
        await self.monitor.wait_until_reachable()

        self.indicator.set(IndicatorPattern.ACTIVE)
        await self._contained("Time synchronization", self._tools.sync_time)
        self._logger.info("Letting the network settle", delay=self._config.archive_delay)
        await asyncio.sleep(self._config.archive_delay)

        if self._config.snapshots_enabled:
            await self._contained("Snapshot", self.snapshots.take_snapshot)

        state = await self._run_session()
        try:
            self.truncate_log()
        except OSError:
            self._logger.exception("Log truncation failed")

        self.indicator.set(IndicatorPattern.DONE)
        await self._wait_for_departure()
        return state

    async def repair_volumes(self) -> None:
        """Repair-only pass: mount, fsck and unmount each volume, without the archive.

        The gadget must already be detached; while the host still sees the
        storage the pass does nothing.
        """
        if self.gadget.is_exposed_to_host():
            self._logger.error("Host still sees the storage, skipping repair")
            return
        for volume in (self.session.cam, self.session.music):
            if volume is self.session.music and not self._config.paths.music_backing_file.exists():
                continue
            if not await self.mounts.mount(volume):
                continue
            try:
                await self.mounts.fsck_repair(volume)
            finally:
                await self.mounts.unmount(volume)

    def truncate_log(self) -> None:
        if truncate_log(self._config.paths.log_file, self._config.log_max_lines):
            self._logger.info("Log truncated", max_lines=self._config.log_max_lines)

    async def _contained(self, what: str, op: Callable[[], Awaitable[Any]]) -> Any:
        """Run one phase, logging instead of propagating any exception it raises."""
        try:
            return await op()
        except Exception:
            self._logger.exception(f"{what} failed")
            return None

    async def _detach_and_repair(self) -> None:
        if await self.gadget.disconnect():
            await self.repair_volumes()

    async def _run_session(self) -> ArchiveSessionState | None:
        # The session's own cleanup has already reattached the host when this returns None
        return await self._contained("Archive session", self.session.run)

    async def _wait_for_departure(self) -> None:
        await self.monitor.wait_until_unreachable()
        await self._contained("USB self-check", lambda: self.gadget.verify_exposed(self.repair_volumes))
