"""Shared unit test fixtures for archiveloop tests.

Provides:
- A Configuration pointing every path into tmp_path, with zero delays
- A DaemonContext running all commands on the FakeHost
- A fully wired LifecycleLoop
"""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from archiveloop.config import CommandsConfig, Configuration, PathsConfig
from archiveloop.context import DaemonContext
from archiveloop.orchestrator import LifecycleLoop
from archiveloop.tools import ExternalTools
from fakes import FakeGadgetProbe, FakeHost


@pytest.fixture
def test_commands() -> CommandsConfig:
    """Command templates using the program names FakeHost understands."""
    return CommandsConfig(
        reachability_probe="probe-archive {host}",
        connect_archive="connect-archive",
        disconnect_archive="disconnect-archive",
        archive_clips="archive-clips",
        archive_music="archive-music",
        make_snapshot="make-snapshot",
        mount_snapshot="mount-snapshot {image} {mountpoint}",
        time_sync="time-sync",
        notify="send-push {title} {message}",
        always_on_status="always-on-status",
        always_on_enable="always-on-enable",
        always_on_disable="always-on-disable",
        gadget_bind="gadget-bind",
        gadget_unbind="gadget-unbind",
        fsck="fsck {device} -- -a",
    )


@pytest.fixture
def config(tmp_path: Path, test_commands: CommandsConfig) -> Configuration:
    """Configuration rooted in tmp_path with every wait reduced to zero."""
    paths = PathsConfig(
        cam_mount=tmp_path / "mnt/cam",
        music_mount=tmp_path / "mnt/music",
        music_archive=tmp_path / "mnt/musicarchive",
        music_backing_file=tmp_path / "backingfiles/music_disk.bin",
        snapshot_glob=str(tmp_path / "backingfiles/snapshots/snap-*"),
        snapshot_mount_root=tmp_path / "snapshots",
        log_file=tmp_path / "archiveloop.log",
        reachable_marker=tmp_path / "archive_is_reachable",
        unreachable_marker=tmp_path / "archive_is_unreachable",
        led_dir=tmp_path / "leds/led0",
        gadget_lun_glob=str(tmp_path / "gadget/lun0/file"),
    )
    paths.cam_mount.mkdir(parents=True)
    paths.music_mount.mkdir(parents=True)
    paths.led_dir.mkdir(parents=True)
    (paths.led_dir / "trigger").write_text("none")

    return Configuration(
        archive_host_name="archive.test",
        archive_delay=0,
        paths=paths,
        commands=test_commands,
        poll_interval=0,
        retry_delay=0,
    )


@pytest.fixture
def context(config: Configuration, fake_host: FakeHost) -> DaemonContext:
    logger = structlog.get_logger("tests")
    return DaemonContext(
        config=config,
        executor=fake_host,
        tools=ExternalTools(fake_host, config.commands, logger),
        logger=logger,
    )


@pytest.fixture
def lifecycle(context: DaemonContext, gadget_probe: FakeGadgetProbe) -> LifecycleLoop:
    return LifecycleLoop(context, gadget_probe)
