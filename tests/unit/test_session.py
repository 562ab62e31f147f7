"""Unit tests for one archive session."""

from __future__ import annotations

import shlex
from pathlib import Path

import pytest
from fakes import FakeHost, add_event_folders
from freezegun import freeze_time
from structlog.testing import capture_logs

from archiveloop.context import DaemonContext
from archiveloop.models import CommandResult, SessionState, VolumeOutcome
from archiveloop.orchestrator import LifecycleLoop
from archiveloop.session import ArchiveSession, count_pending_clips

FAILED = CommandResult(exit_code=1, stdout="", stderr="")


@pytest.fixture
def session(lifecycle: LifecycleLoop) -> ArchiveSession:
    return lifecycle.session


@pytest.fixture
def cam_mount(context: DaemonContext) -> Path:
    return context.config.paths.cam_mount


@pytest.fixture
def with_clips(cam_mount: Path) -> None:
    add_event_folders(cam_mount, "TeslaCam/SavedClips", folders=2, files_per_folder=4)
    add_event_folders(cam_mount, "TeslaCam/SentryClips", folders=1, files_per_folder=4)


@pytest.fixture
def with_music(context: DaemonContext) -> None:
    backing = context.config.paths.music_backing_file
    backing.parent.mkdir(parents=True, exist_ok=True)
    backing.touch()


class TestCountPendingClips:
    """Tests for counting event folders and their files."""

    def test_counts_across_clip_dirs(self, cam_mount: Path) -> None:
        add_event_folders(cam_mount, "TeslaCam/SavedClips", folders=2, files_per_folder=3)
        add_event_folders(cam_mount, "TeslaCam/SentryClips", folders=1, files_per_folder=5)
        assert count_pending_clips(cam_mount, ["TeslaCam/SavedClips", "TeslaCam/SentryClips"]) == (3, 11)

    def test_ignores_loose_files_and_missing_dirs(self, cam_mount: Path) -> None:
        (cam_mount / "TeslaCam/SavedClips").mkdir(parents=True)
        (cam_mount / "TeslaCam/SavedClips/thumb.png").touch()
        assert count_pending_clips(cam_mount, ["TeslaCam/SavedClips", "TeslaCam/SentryClips"]) == (0, 0)


class TestSessionSequence:
    """Tests for the order of a complete session."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_clips_archived_with_notification(
        self, session: ArchiveSession, fake_host: FakeHost
    ) -> None:
        """Three event folders with twelve files should be announced and transferred."""
        fake_host.gadget_bound = True

        with freeze_time("2025-01-15 10:30:00"):
            state = await session.run()

        notify = fake_host.commands_for("send-push")
        assert len(notify) == 1
        title, message = shlex.split(notify[0])[1:]
        assert title == "archiveloop"
        assert message == "Archiving 3 event folder(s) with 12 file(s) starting at 2025-01-15 10:30:00"

        assert (state.event_count, state.file_count) == (3, 12)
        assert state.volumes == {"cam": VolumeOutcome.SUCCESS}
        assert state.history == [
            SessionState.DISCONNECTED,
            SessionState.ARCHIVE_CONNECTED,
            SessionState.CAM_MOUNTED,
            SessionState.CAM_REPAIRED,
            SessionState.TRANSFERRING,
            SessionState.CAM_UNMOUNTED,
            SessionState.ARCHIVE_DISCONNECTED,
            SessionState.HOST_RECONNECTED,
            SessionState.IDLE,
        ]
        assert state.state == SessionState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_host_never_sees_local_mounts(
        self, session: ArchiveSession, fake_host: FakeHost, cam_mount: Path
    ) -> None:
        """The gadget should be unbound before the first mount and rebound after the last unmount."""
        fake_host.gadget_bound = True

        await session.run()

        programs = fake_host.programs()
        assert fake_host.mounted_while_bound == []
        assert programs.index("gadget-unbind") < programs.index("mount")
        last_umount = max(i for i, p in enumerate(programs) if p == "umount")
        assert programs.index("gadget-bind") > last_umount
        assert fake_host.gadget_bound
        assert str(cam_mount) not in fake_host.mount_table

    @pytest.mark.asyncio
    async def test_no_clips_skips_transfer(
        self, session: ArchiveSession, fake_host: FakeHost, cam_mount: Path
    ) -> None:
        """With nothing pending, no notification or always-on change should happen."""
        fake_host.always_on = False

        state = await session.run()

        programs = fake_host.programs()
        assert "send-push" not in programs
        assert "archive-clips" not in programs
        assert not any(p.startswith("always-on") for p in programs)
        assert SessionState.SKIPPED_EMPTY in state.history
        assert state.volumes == {"cam": VolumeOutcome.SKIPPED}
        assert str(cam_mount) not in fake_host.mount_table
        assert fake_host.count("disconnect-archive") == 1


class TestAlwaysOn:
    """Tests for keeping the vehicle awake during a transfer."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_enabled_for_transfer_then_restored(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        fake_host.always_on = False

        state = await session.run()

        assert state.always_on_prior is False
        assert fake_host.always_on is False
        programs = fake_host.programs()
        assert programs.index("always-on-enable") < programs.index("archive-clips") < programs.index(
            "always-on-disable"
        )

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_restored_when_transfer_fails(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        fake_host.always_on = False
        fake_host.overrides["archive-clips"] = FAILED

        state = await session.run()

        assert fake_host.always_on is False
        assert fake_host.count("always-on-disable") == 1
        assert state.volumes == {"cam": VolumeOutcome.TRANSFER_FAILED}

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_restored_when_transfer_raises(
        self, session: ArchiveSession, fake_host: FakeHost, cam_mount: Path
    ) -> None:
        """An exception mid-transfer should still restore always-on, unmount and reattach the host."""
        fake_host.always_on = False
        fake_host.gadget_bound = True
        fake_host.raising["archive-clips"] = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            await session.run()

        assert fake_host.always_on is False
        assert str(cam_mount) not in fake_host.mount_table
        assert fake_host.count("disconnect-archive") == 1
        assert fake_host.gadget_bound

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_already_enabled_left_alone(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        fake_host.always_on = True

        state = await session.run()

        assert state.always_on_prior is True
        assert fake_host.count("always-on-enable") == 0
        assert fake_host.count("always-on-disable") == 0
        assert fake_host.always_on is True

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_failed_query_leaves_feature_untouched(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        fake_host.overrides["always-on-status"] = FAILED

        state = await session.run()

        assert state.always_on_prior is None
        assert fake_host.count("always-on-enable") == 0
        assert fake_host.count("always-on-disable") == 0
        assert fake_host.count("archive-clips") == 1


class TestFailurePaths:
    """Tests for sessions that cannot complete."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_failed_unbind_leaves_volumes_alone(
        self, session: ArchiveSession, fake_host: FakeHost
    ) -> None:
        """While the host still sees the storage, nothing may be mounted locally."""
        fake_host.gadget_bound = True
        fake_host.overrides["gadget-unbind"] = FAILED

        state = await session.run()

        assert fake_host.mounted_while_bound == []
        assert fake_host.count("mount") == 0
        assert fake_host.count("connect-archive") == 0
        assert fake_host.count("archive-clips") == 0
        assert fake_host.gadget_bound
        assert state.history == [
            SessionState.DISCONNECT_FAILED,
            SessionState.HOST_RECONNECTED,
            SessionState.IDLE,
        ]

    @pytest.mark.asyncio
    async def test_archive_connect_failure_leaves_volumes_alone(
        self, session: ArchiveSession, fake_host: FakeHost
    ) -> None:
        fake_host.gadget_bound = True
        fake_host.overrides["connect-archive"] = FAILED

        state = await session.run()

        assert fake_host.count("mount") == 0
        assert fake_host.count("disconnect-archive") == 0
        assert fake_host.gadget_bound
        assert state.history == [
            SessionState.DISCONNECTED,
            SessionState.ARCHIVE_CONNECT_FAILED,
            SessionState.HOST_RECONNECTED,
            SessionState.IDLE,
        ]

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_clips")
    async def test_cam_mount_failure_skips_clips(
        self, session: ArchiveSession, fake_host: FakeHost, cam_mount: Path
    ) -> None:
        fake_host.failing_mounts[str(cam_mount)] = 100

        with capture_logs() as logs:
            state = await session.run()

        assert state.volumes == {"cam": VolumeOutcome.MOUNT_FAILED}
        assert fake_host.count("archive-clips") == 0
        assert fake_host.count("fsck") == 0
        assert fake_host.count("disconnect-archive") == 1
        assert fake_host.gadget_bound
        assert any(log["log_level"] == "error" for log in logs)


class TestMusic:
    """Tests for the optional music copy."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_music")
    async def test_music_copied_when_available(
        self, session: ArchiveSession, fake_host: FakeHost, context: DaemonContext
    ) -> None:
        state = await session.run()

        assert fake_host.count("archive-music") == 1
        assert state.volumes["music"] == VolumeOutcome.SUCCESS
        assert SessionState.MUSIC_UNMOUNTED in state.history
        assert str(context.config.paths.music_mount) not in fake_host.mount_table

    @pytest.mark.asyncio
    async def test_no_backing_file_skips_music(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        state = await session.run()

        assert "music" not in state.volumes
        assert fake_host.count("stat") == 0
        assert fake_host.count("archive-music") == 0

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_music")
    async def test_empty_music_archive_skips_music(self, session: ArchiveSession, fake_host: FakeHost) -> None:
        fake_host.music_archive_present = False

        state = await session.run()

        assert "music" not in state.volumes
        assert fake_host.count("archive-music") == 0

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("with_music")
    async def test_hung_music_archive_check_skips_music(
        self, session: ArchiveSession, fake_host: FakeHost
    ) -> None:
        """A music archive check that times out should skip music, not stall the session."""
        fake_host.stat_hangs = True

        with capture_logs() as logs:
            state = await session.run()

        assert "music" not in state.volumes
        assert fake_host.count("archive-music") == 0
        assert fake_host.gadget_bound
        assert any(log["event"] == "Music archive check timed out" for log in logs)
