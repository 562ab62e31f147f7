"""USB mass-storage gadget control."""

from __future__ import annotations

import glob
from collections.abc import Awaitable, Callable
from typing import Protocol

from archiveloop.context import DaemonContext

__all__ = [
    "GadgetProbe",
    "SysfsGadgetProbe",
    "UsbGadgetController",
]


class GadgetProbe(Protocol):
    """Hardware check for whether the host currently sees the storage."""

    def is_bound(self) -> bool: ...


class SysfsGadgetProbe:
    """Looks for the gadget's logical-unit node in sysfs.

    The mass-storage function only creates `lun0/file` while bound to the UDC,
    so presence of the node is taken as "exposed to host".
    """

    def __init__(self, lun_glob: str) -> None:
        self._lun_glob = lun_glob

    def is_bound(self) -> bool:
        return bool(glob.glob(self._lun_glob))


class UsbGadgetController:
    """Binds and unbinds the backing files to the host-facing USB interface."""

    def __init__(self, context: DaemonContext, probe: GadgetProbe) -> None:
        self._tools = context.tools
        self._probe = probe
        self._logger = context.logger.bind(component="gadget")

    def is_exposed_to_host(self) -> bool:
        return self._probe.is_bound()

    async def connect(self) -> bool:
        """Expose the backing files to the host. Connecting twice is a logged no-op.

        Returns:
            True if the gadget is bound afterwards
        """
        if self.is_exposed_to_host():
            self._logger.info("USB drives already connected to host")
            return True

        self._logger.info("Connecting USB drives to host")
        await self._tools.gadget_bind()
        bound = self.is_exposed_to_host()
        if not bound:
            self._logger.error("USB gadget did not bind")
        return bound

    async def disconnect(self) -> bool:
        """Withdraw the storage from the host so it can be mounted locally.

        The unbind helper runs even when the probe already reports the gadget
        unbound.

        Returns:
            True if the host no longer sees the storage afterwards
        """
        self._logger.info("Disconnecting USB drives from host")
        await self._tools.gadget_unbind()
        if self.is_exposed_to_host():
            self._logger.error("USB drives still connected to host after unbind")
            return False
        return True

    async def verify_exposed(self, repair_volumes: Callable[[], Awaitable[None]]) -> bool:
        """Self-check during steady state, healing an unexpectedly unbound gadget.

        If the host does not see the storage, run the corrective sequence:
        disconnect, repair the volumes, reconnect. The repair is skipped if the
        unbind did not take. Nothing is raised; the outcome only shows in the log.

        Args:
            repair_volumes: Coroutine function running the repair-only pass

        Returns:
            True if the gadget was already bound, False if a heal was performed
        """
        if self.is_exposed_to_host():
            return True

        self._logger.warning("USB drives not connected to host, repairing and reconnecting")
        if await self.disconnect():
            await repair_volumes()
        await self.connect()
        return False
