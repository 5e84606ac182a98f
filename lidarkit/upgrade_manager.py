"""Firmware upgrade of several lidars from one package file."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Callable, Iterable, Optional, Union

from lidarkit.firmware import Firmware, FirmwareError
from lidarkit.upgrader import LidarUpgrader, UpgradeCommands, UpgradeEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, UpgradeEvent, int], None]


class UpgradeManager:
    """Holds the firmware package and upgrades a set of lidars with it."""

    poll_interval = 0.1

    def __init__(self, commands: UpgradeCommands) -> None:
        self._commands = commands
        self.firmware = Firmware()
        self._loaded = False
        self._callback: Optional[ProgressCallback] = None

    def set_firmware_path(self, path: Union[str, "os.PathLike[str]"]) -> None:
        """Open and check the firmware package; raises FirmwareError when it is unusable."""
        firmware = Firmware()
        try:
            firmware.open(path)
        except FirmwareError:
            firmware.close()
            logger.error("open firmware path %s failed", path)
            raise
        self.firmware.close()
        self.firmware = firmware
        self._loaded = True

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Set the function called as ``callback(handle, event, progress)`` during upgrades."""
        self._callback = callback

    def _make_observer(self) -> ProgressCallback:
        callback = self._callback

        def observer(handle: int, event: UpgradeEvent, progress: int) -> None:
            if callback is not None:
                callback(handle, event, progress)

        return observer

    @staticmethod
    def _run(upgrader: LidarUpgrader) -> None:
        try:
            upgrader.handle_event(UpgradeEvent.REQUEST_UPGRADE, 10)
        except Exception:
            logger.exception("upgrade of lidar %d failed", upgrader.handle)
            upgrader.handle_event(UpgradeEvent.ERR, 100)

    def upgrade_lidars(self, handles: Iterable[int]) -> dict[int, bool]:
        """Upgrade every lidar in ``handles`` and wait until each one finishes.

        Returns, for each handle, whether its upgrade succeeded.
        """
        if not self._loaded:
            raise FirmwareError("no firmware package has been loaded")

        upgraders = []
        for handle in handles:
            upgrader = LidarUpgrader(self.firmware, handle, self._commands)
            upgrader.add_progress_observer(self._make_observer())
            upgraders.append(upgrader)

        threads = [
            threading.Thread(target=self._run, args=(upgrader,), daemon=True)
            for upgrader in upgraders
        ]
        for thread in threads:
            thread.start()

        results: dict[int, bool] = {}
        for upgrader, thread in zip(upgraders, threads):
            thread.join()
            while not (upgrader.is_error() or upgrader.is_complete()):
                time.sleep(self.poll_interval)
            if upgrader.is_error():
                logger.error("lidar %d upgrade error, try again please", upgrader.handle)
                results[upgrader.handle] = False
            else:
                logger.info("lidar %d upgrade successfully", upgrader.handle)
                results[upgrader.handle] = True

        self.close_firmware()
        return results

    def close_firmware(self) -> None:
        """Close the firmware package file."""
        self.firmware.close()