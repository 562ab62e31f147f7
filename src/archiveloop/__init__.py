"""archiveloop: keeps dashcam storage exposed over USB and offloads it whenever the archive is reachable."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("archiveloop")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
