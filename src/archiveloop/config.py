"""Configuration loading and validation for archiveloop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from pytimeparse2 import parse as parse_duration_seconds

from archiveloop.models import ConfigError, LogLevel

__all__ = [
    "CommandsConfig",
    "Configuration",
    "ConfigurationError",
    "PathsConfig",
]

DEFAULT_ARCHIVE_DELAY = 20
DEFAULT_SNAPSHOT_INTERVAL = 3500


@dataclass
class PathsConfig:
    """Filesystem locations used by the daemon."""

    cam_mount: Path = Path("/mnt/cam")
    music_mount: Path = Path("/mnt/music")
    music_archive: Path = Path("/mnt/musicarchive")
    music_backing_file: Path = Path("/backingfiles/music_disk.bin")
    snapshot_glob: str = "/backingfiles/snapshots/snap-*"
    snapshot_mount_root: Path = Path("/tmp/snapshots")
    log_file: Path = Path("/mutable/archiveloop.log")
    reachable_marker: Path = Path("/tmp/archive_is_reachable")
    unreachable_marker: Path = Path("/tmp/archive_is_unreachable")
    led_dir: Path = Path("/sys/class/leds/led0")
    gadget_lun_glob: str = "/sys/devices/platform/soc/*.usb/gadget/lun0/file"
    clip_dirs: list[str] = field(default_factory=lambda: ["TeslaCam/SavedClips", "TeslaCam/SentryClips"])


@dataclass
class CommandsConfig:
    """Shell templates for every external collaborator.

    Placeholders ({host}, {device}, {image}, {mountpoint}, {title}, {message})
    are substituted shell-quoted by ExternalTools.
    """

    reachability_probe: str = "/root/bin/archive-is-reachable.sh {host}"
    connect_archive: str = "/root/bin/connect-archive.sh"
    disconnect_archive: str = "/root/bin/disconnect-archive.sh"
    archive_clips: str = "/root/bin/archive-clips.sh"
    archive_music: str = "/root/bin/copy-music.sh"
    make_snapshot: str = "/root/bin/make_snapshot.sh"
    mount_snapshot: str = "/root/bin/mount_snapshot.sh {image} {mountpoint}"
    time_sync: str = "/root/bin/timesync.sh"
    notify: str = "/root/bin/send-push-message {title} {message}"
    always_on_status: str = "/root/bin/tesla_api.py is_sentry_mode_enabled"
    always_on_enable: str = "/root/bin/tesla_api.py enable_sentry_mode"
    always_on_disable: str = "/root/bin/tesla_api.py disable_sentry_mode"
    gadget_bind: str = "/root/bin/enable_gadget.sh"
    gadget_unbind: str = "/root/bin/disable_gadget.sh"
    fsck: str = "/sbin/fsck {device} -- -a"


@dataclass
class Configuration:
    """Parsed and validated configuration from YAML file."""

    archive_host_name: str
    snapshots_enabled: bool = True
    archive_delay: float = DEFAULT_ARCHIVE_DELAY  # Seconds to let the network settle
    snapshot_interval: float = DEFAULT_SNAPSHOT_INTERVAL
    log_file_level: LogLevel = LogLevel.INFO
    log_cli_level: LogLevel = LogLevel.INFO
    paths: PathsConfig = field(default_factory=PathsConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)

    # Timing constants, not exposed in the YAML schema
    poll_interval: float = 1.0
    retry_attempts: int = 10
    retry_delay: float = 1.0
    music_check_timeout: float = 5.0
    log_max_lines: int = 10_000

    @classmethod
    def from_yaml(cls, path: Path) -> Configuration:
        """Load and validate configuration from YAML file.

        Args:
            path: Path to archiveloop.yaml

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: If the file is missing, YAML is invalid or schema validation fails
        """
        errors: list[ConfigError] = []

        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            message = f"Configuration file not found: {path}"
            raise ConfigurationError([ConfigError(path=str(path), message=message)]) from None
        except yaml.YAMLError as e:
            error_msg = str(e)
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None)
            if mark is not None and problem is not None:
                error_msg = f"YAML syntax error at line {mark.line + 1}, column {mark.column + 1}: {problem}"
            raise ConfigurationError([ConfigError(path=str(path), message=error_msg)]) from e

        # Handle empty file; the schema then reports the missing required key
        if data is None:
            data = {}

        validator = jsonschema.Draft7Validator(_load_schema())
        for error in validator.iter_errors(data):
            path_parts = list(error.absolute_path)
            path_str = ".".join(str(p) for p in path_parts) if path_parts else "root"
            errors.append(ConfigError(path=path_str, message=error.message))

        if errors:
            raise ConfigurationError(errors)

        archive_delay = _duration_or_error(data.get("ARCHIVE_DELAY", DEFAULT_ARCHIVE_DELAY), "ARCHIVE_DELAY", errors)
        snapshot_interval = _duration_or_error(
            data.get("SNAPSHOT_INTERVAL", DEFAULT_SNAPSHOT_INTERVAL), "SNAPSHOT_INTERVAL", errors
        )

        if errors:
            raise ConfigurationError(errors)

        return cls(
            archive_host_name=data["ARCHIVE_HOST_NAME"],
            snapshots_enabled=data.get("SNAPSHOTS_ENABLED", True),
            archive_delay=archive_delay,
            snapshot_interval=snapshot_interval,
            log_file_level=LogLevel[data.get("LOG_FILE_LEVEL", "INFO")],
            log_cli_level=LogLevel[data.get("LOG_CLI_LEVEL", "INFO")],
            paths=_build_paths(data.get("paths", {})),
            commands=CommandsConfig(**data.get("commands", {})),
        )

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default config file path."""
        return Path("/root/archiveloop.yaml")


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors: list[ConfigError]) -> None:
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


def _load_schema() -> dict[str, Any]:
    """Load the config schema from package resources."""
    schema_path = Path(__file__).parent / "schemas" / "config-schema.yaml"
    with schema_path.open() as f:
        return yaml.safe_load(f)


def _build_paths(data: dict[str, Any]) -> PathsConfig:
    """Map the `paths` section onto PathsConfig, converting path-like entries."""
    defaults = PathsConfig()
    values: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(getattr(defaults, key), Path):
            values[key] = Path(value)
        else:
            values[key] = value
    return PathsConfig(**values)


def _duration_or_error(value: int | str, key: str, errors: list[ConfigError]) -> float:
    """Parse integer seconds or a duration string like "20s" or "58m20s"."""
    if isinstance(value, int):
        return float(value)
    seconds = parse_duration_seconds(value)
    if seconds is None:
        errors.append(ConfigError(path=key, message=f"Invalid duration: {value!r}"))
        return 0.0
    # pytimeparse2 returns int, float, or timedelta
    return seconds.total_seconds() if isinstance(seconds, timedelta) else float(seconds)
