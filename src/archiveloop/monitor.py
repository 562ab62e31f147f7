"""Archive endpoint reachability polling."""

from __future__ import annotations

import asyncio
from pathlib import Path

from archiveloop.context import DaemonContext
from archiveloop.retry import RetryPolicy

__all__ = ["ReachabilityMonitor"]


class ReachabilityMonitor:
    """Detects transitions of the archive endpoint between reachable and unreachable.

    Both waits poll at `poll_interval` and have no upper bound. Marker files
    let a tester force either transition; a marker is deleted once observed.
    """

    def __init__(self, context: DaemonContext, retry: RetryPolicy) -> None:
        self._config = context.config
        self._tools = context.tools
        self._retry = retry
        self._logger = context.logger.bind(component="monitor")

    @property
    def host(self) -> str:
        return self._config.archive_host_name

    async def probe(self) -> bool:
        """Probe the archive endpoint once."""
        return await self._tools.probe_reachable(self.host)

    def _consume_marker(self, marker: Path) -> bool:
        if not marker.exists():
            return False
        marker.unlink(missing_ok=True)
        self._logger.info("Simulation marker found", marker=str(marker))
        return True

    async def wait_until_reachable(self) -> None:
        """Block until a probe succeeds or the reachable marker appears."""
        self._logger.info("Waiting for archive to be reachable", host=self.host)
        while True:
            if await self.probe():
                break
            if self._consume_marker(self._config.paths.reachable_marker):
                break
            await asyncio.sleep(self._config.poll_interval)
        self._logger.info("Archive is reachable", host=self.host)

    async def wait_until_unreachable(self) -> None:
        """Block until the archive has failed a full retry budget of consecutive probes.

        A single failed probe is treated as a blip: only when every attempt of
        one RetryPolicy round fails is the archive considered gone.
        """
        self._logger.info("Waiting for archive to be unreachable", host=self.host)
        while await self._retry.retry(self.probe, description=f"probe {self.host}"):
            if self._consume_marker(self._config.paths.unreachable_marker):
                break
            await asyncio.sleep(self._config.poll_interval)
        self._logger.info("Archive is unreachable", host=self.host)
