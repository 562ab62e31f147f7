"""Core types and dataclasses for archiveloop."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from pathlib import Path

__all__ = [
    "EXIT_ALREADY_RUNNING",
    "EXIT_CONFIG_ERROR",
    "EXIT_OK",
    "ArchiveSessionState",
    "CommandResult",
    "ConfigError",
    "IndicatorPattern",
    "LogLevel",
    "MountPoint",
    "SessionState",
    "Snapshot",
    "VolumeOutcome",
]

# Process exit codes
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_ALREADY_RUNNING = 99


class LogLevel(IntEnum):
    """Log levels accepted in the configuration file, valued as stdlib levels."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass(frozen=True)
class CommandResult:
    """Result of executing a command via an Executor."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ConfigError:
    """A single problem found while loading the configuration file."""

    path: str  # Dotted key path, or the file path for load errors
    message: str


@dataclass(frozen=True)
class MountPoint:
    """A named local volume backed by a loopback disk image.

    The mounted state and backing device are never stored here; they are read
    back from the OS mount table every time they are needed.
    """

    name: str  # e.g. "cam", "music"
    path: Path  # e.g. /mnt/cam


@dataclass(frozen=True)
class Snapshot:
    """A snapshot directory discovered on the backing storage."""

    directory: Path  # e.g. /backingfiles/snapshots/snap-000042
    mount_path: Path  # e.g. /tmp/snapshots/snap-000042

    @property
    def image(self) -> Path:
        return self.directory / "snap.bin"


class IndicatorPattern(StrEnum):
    """Status LED patterns, the only real-time operator signal."""

    WAITING = "waiting"  # slow pulse
    ACTIVE = "active"  # fast pulse
    DONE = "done"  # heartbeat


class SessionState(StrEnum):
    """States of one archive session, in the order they are visited."""

    IDLE = "idle"
    DISCONNECTED = "disconnected"
    DISCONNECT_FAILED = "disconnect_failed"
    ARCHIVE_CONNECT_FAILED = "archive_connect_failed"
    ARCHIVE_CONNECTED = "archive_connected"
    CAM_MOUNTED = "cam_mounted"
    CAM_REPAIRED = "cam_repaired"
    TRANSFERRING = "transferring"
    SKIPPED_EMPTY = "skipped_empty"
    CAM_UNMOUNTED = "cam_unmounted"
    MUSIC_MOUNTED = "music_mounted"
    MUSIC_REPAIRED = "music_repaired"
    MUSIC_UNMOUNTED = "music_unmounted"
    ARCHIVE_DISCONNECTED = "archive_disconnected"
    HOST_RECONNECTED = "host_reconnected"


class VolumeOutcome(StrEnum):
    """Per-volume result of an archive session."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    MOUNT_FAILED = "mount_failed"
    TRANSFER_FAILED = "transfer_failed"


@dataclass
class ArchiveSessionState:
    """Transient record of one disconnect-repair-transfer-reconnect cycle."""

    state: SessionState = SessionState.IDLE
    event_count: int = 0
    file_count: int = 0
    always_on_prior: bool | None = None  # None when never queried or the query failed
    volumes: dict[str, VolumeOutcome] = field(default_factory=dict)
    history: list[SessionState] = field(default_factory=list)

    def advance(self, new_state: SessionState) -> None:
        """Transition to a new session state and remember it."""
        self.state = new_state
        self.history.append(new_state)
