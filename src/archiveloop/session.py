"""One archive session: detach from the host, repair, offload, reattach."""

from __future__ import annotations

import shlex
from datetime import datetime
from pathlib import Path

from archiveloop.context import DaemonContext
from archiveloop.gadget import UsbGadgetController
from archiveloop.models import ArchiveSessionState, MountPoint, SessionState, VolumeOutcome
from archiveloop.mounts import MountManager

__all__ = ["ArchiveSession", "count_pending_clips"]

NOTIFICATION_TITLE = "archiveloop"


def count_pending_clips(cam_mount: Path, clip_dirs: list[str]) -> tuple[int, int]:
    """Count event folders and the files inside them.

    Event folders are the directories directly under each clip subtree; files
    are counted one level below, inside those folders.

    Args:
        cam_mount: Where the camera volume is mounted
        clip_dirs: Clip subtrees relative to the mount (e.g. "TeslaCam/SavedClips")

    Returns:
        Tuple of (event folder count, file count)
    """
    events = 0
    files = 0
    for clip_dir in clip_dirs:
        root = cam_mount / clip_dir
        if not root.is_dir():
            continue
        for event_dir in root.iterdir():
            if not event_dir.is_dir():
                continue
            events += 1
            files += sum(1 for entry in event_dir.iterdir() if entry.is_file())
    return events, files


class ArchiveSession:
    """Runs one complete disconnect-repair-transfer-reconnect cycle.

    The host must never see a half-updated filesystem: the gadget is detached
    before any local mount and reattached only after every local unmount, on
    every path out of run(), including failures and exceptions.
    """

    def __init__(
        self,
        context: DaemonContext,
        mounts: MountManager,
        gadget: UsbGadgetController,
    ) -> None:
        self._config = context.config
        self._executor = context.executor
        self._tools = context.tools
        self._mounts = mounts
        self._gadget = gadget
        self._logger = context.logger.bind(component="session")
        self.cam = MountPoint(name="cam", path=self._config.paths.cam_mount)
        self.music = MountPoint(name="music", path=self._config.paths.music_mount)

    async def run(self) -> ArchiveSessionState:
        """Execute one session.

        Returns:
            The session record with visited states and per-volume outcomes
        """
        state = ArchiveSessionState()
        self._logger.info("Starting archive session")
        try:
            if not await self._gadget.disconnect():
                state.advance(SessionState.DISCONNECT_FAILED)
                self._logger.error("Host still sees the storage, leaving local volumes untouched")
                return state
            state.advance(SessionState.DISCONNECTED)

            if not await self._tools.connect_archive():
                state.advance(SessionState.ARCHIVE_CONNECT_FAILED)
                self._logger.error("Could not connect to archive, leaving local volumes untouched")
                return state
            state.advance(SessionState.ARCHIVE_CONNECTED)

            try:
                await self._archive_clips(state)
                await self._archive_music(state)
            finally:
                await self._tools.disconnect_archive()
                state.advance(SessionState.ARCHIVE_DISCONNECTED)
        finally:
            await self._gadget.connect()
            state.advance(SessionState.HOST_RECONNECTED)
            state.advance(SessionState.IDLE)
            self._logger.info(
                "Archive session finished",
                volumes={name: outcome.value for name, outcome in state.volumes.items()},
            )

        return state

    async def _archive_clips(self, state: ArchiveSessionState) -> None:
        if not await self._mounts.mount(self.cam):
            state.volumes[self.cam.name] = VolumeOutcome.MOUNT_FAILED
            self._logger.error("Skipping clip archiving, camera volume would not mount")
            return
        state.advance(SessionState.CAM_MOUNTED)

        try:
            await self._mounts.fsck_repair(self.cam)
            state.advance(SessionState.CAM_REPAIRED)

            state.event_count, state.file_count = count_pending_clips(self.cam.path, self._config.paths.clip_dirs)
            if state.event_count == 0 and state.file_count == 0:
                self._logger.info("No pending clips, skipping transfer")
                state.advance(SessionState.SKIPPED_EMPTY)
                state.volumes[self.cam.name] = VolumeOutcome.SKIPPED
            else:
                state.advance(SessionState.TRANSFERRING)
                ok = await self._transfer_clips(state)
                state.volumes[self.cam.name] = VolumeOutcome.SUCCESS if ok else VolumeOutcome.TRANSFER_FAILED
        finally:
            await self._mounts.unmount(self.cam)
            state.advance(SessionState.CAM_UNMOUNTED)

    async def _transfer_clips(self, state: ArchiveSessionState) -> bool:
        message = (
            f"Archiving {state.event_count} event folder(s) with {state.file_count} file(s) "
            f"starting at {datetime.now():%Y-%m-%d %H:%M:%S}"
        )
        self._logger.info(message)
        await self._tools.notify(NOTIFICATION_TITLE, message)

        # Keep the vehicle awake (and the appliance powered) for the transfer
        state.always_on_prior = await self._tools.always_on_enabled()
        if state.always_on_prior is False:
            self._logger.info("Enabling always-on for the transfer")
            await self._tools.enable_always_on()

        try:
            ok = await self._tools.archive_clips()
        finally:
            if state.always_on_prior is False:
                self._logger.info("Restoring always-on to disabled")
                await self._tools.disable_always_on()

        if ok:
            self._logger.info("Clip transfer finished")
        return ok

    async def _music_available(self) -> bool:
        """Check, time-boxed, that both the music archive and the music volume exist."""
        if not self._config.paths.music_backing_file.exists():
            return False
        try:
            result = await self._executor.run_command(
                f"stat {shlex.quote(str(self._config.paths.music_archive))}/*",
                timeout=self._config.music_check_timeout,
            )
        except TimeoutError:
            self._logger.warning("Music archive check timed out", timeout=self._config.music_check_timeout)
            return False
        return result.success

    async def _archive_music(self, state: ArchiveSessionState) -> None:
        if not await self._music_available():
            self._logger.debug("No music archive or music volume, skipping music")
            return

        if not await self._mounts.mount(self.music):
            state.volumes[self.music.name] = VolumeOutcome.MOUNT_FAILED
            self._logger.error("Skipping music, music volume would not mount")
            return
        state.advance(SessionState.MUSIC_MOUNTED)

        try:
            await self._mounts.fsck_repair(self.music)
            state.advance(SessionState.MUSIC_REPAIRED)

            state.advance(SessionState.TRANSFERRING)
            if await self._tools.archive_music():
                state.volumes[self.music.name] = VolumeOutcome.SUCCESS
                self._logger.info("Music copy finished")
            else:
                state.volumes[self.music.name] = VolumeOutcome.TRANSFER_FAILED
        finally:
            await self._mounts.unmount(self.music)
            state.advance(SessionState.MUSIC_UNMOUNTED)
