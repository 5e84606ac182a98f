"""State machine that drives the firmware upgrade of one lidar."""

from __future__ import annotations

import logging
import threading
import time
from enum import IntEnum
from typing import Any, Callable, Mapping, Optional, Protocol

from lidarkit.firmware import (
    ENL_FILE_VERSION_V3,
    GENERAL_TRY_COUNT_LIMIT,
    GET_PROCESS_TRY_COUNT_LIMIT,
    Firmware,
    FirmwareError,
    RequestUpgradeReturnCode,
)

logger = logging.getLogger(__name__)

ERASE_FIRMWARE = 0x34
DEFAULT_READ_LENGTH = 1024

Response = Optional[Mapping[str, Any]]
ResponseCallback = Callable[[bool, Response], None]
ProgressObserver = Callable[[int, "UpgradeEvent", int], None]


class UpgradeEvent(IntEnum):
    """Events fed into the upgrade state machine."""

    REQUEST_UPGRADE = 0
    XFER_FIRMWARE = 1
    COMPLETE_XFER_FIRMWARE = 2
    GET_UPGRADE_PROGRESS = 3
    COMPLETE = 4
    REINIT = 5
    TIMEOUT = 6
    ERR = 7
    UNDEF = 8


class UpgradeState(IntEnum):
    """States of the upgrade state machine."""

    IDLE = 0
    REQUEST = 1
    XFER_FIRMWARE = 2
    COMPLETE_XFER_FIRMWARE = 3
    GET_UPGRADE_PROGRESS = 4
    COMPLETE = 5
    TIMEOUT = 6
    ERR = 7
    UNDEF = 8


class UpgradeCommands(Protocol):
    """Sends upgrade commands to a lidar; replies arrive through ``callback(ok, response)``."""

    def start_upgrade(self, handle: int, request: dict, callback: ResponseCallback) -> Any: ...

    def xfer_firmware(self, handle: int, request: dict, callback: ResponseCallback) -> Any: ...

    def complete_xfer_firmware(self, handle: int, request: dict, callback: ResponseCallback) -> Any: ...

    def get_upgrade_progress(self, handle: int, callback: ResponseCallback) -> Any: ...

    def request_reboot(self, handle: int, callback: ResponseCallback) -> Any: ...


_E = UpgradeEvent
_S = UpgradeState

# (state, event) -> (handler method name or None, next state)
_TRANSITIONS: dict[tuple[UpgradeState, UpgradeEvent], tuple[Optional[str], UpgradeState]] = {
    (_S.IDLE, _E.REQUEST_UPGRADE): ("start_upgrade", _S.REQUEST),
    (_S.REQUEST, _E.REQUEST_UPGRADE): ("start_upgrade", _S.REQUEST),
    (_S.REQUEST, _E.XFER_FIRMWARE): ("xfer_firmware", _S.XFER_FIRMWARE),
    (_S.XFER_FIRMWARE, _E.XFER_FIRMWARE): ("xfer_firmware", _S.XFER_FIRMWARE),
    (_S.XFER_FIRMWARE, _E.COMPLETE_XFER_FIRMWARE): ("complete_xfer_firmware", _S.COMPLETE_XFER_FIRMWARE),
    (_S.COMPLETE_XFER_FIRMWARE, _E.COMPLETE_XFER_FIRMWARE): ("complete_xfer_firmware", _S.COMPLETE_XFER_FIRMWARE),
    (_S.COMPLETE_XFER_FIRMWARE, _E.GET_UPGRADE_PROGRESS): ("get_upgrade_progress", _S.GET_UPGRADE_PROGRESS),
    (_S.GET_UPGRADE_PROGRESS, _E.GET_UPGRADE_PROGRESS): ("get_upgrade_progress", _S.GET_UPGRADE_PROGRESS),
    (_S.GET_UPGRADE_PROGRESS, _E.COMPLETE): ("upgrade_complete", _S.COMPLETE),
    (_S.COMPLETE, _E.COMPLETE): ("upgrade_complete", _S.COMPLETE),
    (_S.COMPLETE, _E.REINIT): (None, _S.IDLE),
}


def _ret_code(response: Response) -> int:
    if response is None:
        return 0
    return int(response.get("ret_code", 0))


class LidarUpgrader:
    """Upgrades one lidar with a firmware package, one command at a time."""

    xfer_delay = 0.005
    erase_delay = 1.0

    def __init__(self, firmware: Firmware, handle: int, commands: UpgradeCommands) -> None:
        self.firmware = firmware
        self.handle = handle
        self._commands = commands
        self.read_offset = 0
        self.read_length = DEFAULT_READ_LENGTH
        self.state = UpgradeState.IDLE
        self._progress = 0
        self._try_count = 0
        self._observer: Optional[ProgressObserver] = None
        self._lock = threading.RLock()

    def add_progress_observer(self, observer: Optional[ProgressObserver]) -> None:
        """Set the function called as ``observer(handle, event, progress)`` after each event."""
        self._observer = observer

    def _change_state(self, event: UpgradeEvent) -> None:
        if event < UpgradeEvent.UNDEF:
            self.state = UpgradeState(int(event))

    def handle_event(self, event: UpgradeEvent, progress: int) -> None:
        """Feed one event to the state machine and run the handler of the transition."""
        event = UpgradeEvent(event)
        with self._lock:
            if event in (UpgradeEvent.TIMEOUT, UpgradeEvent.ERR):
                self._change_state(event)
            logger.debug("lidar %d state %s event %s", self.handle, self.state.name, event.name)
            handler_name: Optional[str] = None
            transition = _TRANSITIONS.get((self.state, event))
            if transition is not None:
                handler_name, self.state = transition
                logger.debug("lidar %d new state %s", self.handle, self.state.name)
        if handler_name is not None:
            getattr(self, handler_name)()
        if self._observer is not None:
            self._observer(self.handle, event, progress)

    def start_upgrade(self) -> Any:
        """Ask the lidar to prepare for receiving the firmware."""
        self.read_offset = 0
        self._progress = 0
        header = self.firmware.header
        request: dict[str, Any] = {
            "firmware_type": header.firmware_type,
            "firmware_length": header.firmware_length,
            "encrypt_type": header.encrypt_type,
            "dev_type": header.device_type,
        }
        if self.firmware.package_version() == ENL_FILE_VERSION_V3:
            request["firmware_version"] = header.firmware_version
            request["firmware_buildtime"] = header.modify_time
            request["hw_whitelist"] = bytes(header.hw_whitelist)
        logger.info("start upgrade, lidar %d device type %d", self.handle, header.device_type)
        return self._commands.start_upgrade(self.handle, request, self.on_start_upgrade)

    def xfer_firmware(self) -> Any:
        """Send the next chunk of firmware data."""
        length = self.firmware.header.firmware_length
        if self.read_offset >= length:
            raise FirmwareError(
                f"lidar {self.handle} xfer firmware failed, read offset {self.read_offset} "
                f"is past firmware length {length}"
            )
        chunk = min(self.read_length, length - self.read_offset)
        request = {
            "offset": self.read_offset,
            "length": chunk,
            "encrypt_type": self.firmware.header.encrypt_type,
            "data": bytes(self.firmware.data[self.read_offset:self.read_offset + chunk]),
        }
        if self.xfer_delay:
            time.sleep(self.xfer_delay)
        logger.debug("lidar %d xfer firmware offset %d", self.handle, self.read_offset)
        return self._commands.xfer_firmware(self.handle, request, self.on_xfer_firmware)

    def complete_xfer_firmware(self) -> Any:
        """Tell the lidar that all data was sent, with the package checksum."""
        header = self.firmware.header
        request = {
            "checksum_type": header.checksum_type,
            "checksum_length": header.checksum_length,
            "checksum": bytes(header.checksum[:header.checksum_length]),
        }
        return self._commands.complete_xfer_firmware(self.handle, request, self.on_complete_xfer)

    def get_upgrade_progress(self) -> Any:
        """Ask the lidar how far the flashing has gone."""
        return self._commands.get_upgrade_progress(self.handle, self.on_progress)

    def upgrade_complete(self) -> Any:
        """Ask the lidar to reboot into the new firmware."""
        return self._commands.request_reboot(self.handle, self.on_reboot)

    def _retry(self, event: UpgradeEvent, progress: int, limit: int,
               exhausted: UpgradeEvent = UpgradeEvent.ERR) -> None:
        self._try_count += 1
        if self._try_count < limit:
            self.handle_event(event, progress)
        else:
            self._try_count = 0
            logger.error("lidar %d exceeded retry limit at %s", self.handle, event.name)
            self.handle_event(exhausted, 100)

    def on_start_upgrade(self, ok: bool, response: Response) -> None:
        """Reply to the start-upgrade request."""
        if not ok:
            logger.warning("start upgrade of lidar %d timed out, try %d", self.handle, self._try_count)
            self._retry(UpgradeEvent.REQUEST_UPGRADE, 10, GENERAL_TRY_COUNT_LIMIT)
            return
        self._try_count = 0
        code = _ret_code(response)
        if code == 0:
            self.handle_event(UpgradeEvent.XFER_FIRMWARE, 20)
        elif code == RequestUpgradeReturnCode.SYSTEM_IS_NOT_READY:
            logger.info("lidar %d is busy, requesting again", self.handle)
            self.handle_event(UpgradeEvent.REQUEST_UPGRADE, 10)
        elif code == ERASE_FIRMWARE:
            if self.erase_delay:
                time.sleep(self.erase_delay)
            logger.info("lidar %d is erasing its firmware", self.handle)
            self.handle_event(UpgradeEvent.REQUEST_UPGRADE, 10)
        else:
            logger.error("start upgrade of lidar %d failed, ret_code %d", self.handle, code)
            self.handle_event(UpgradeEvent.ERR, 100)

    def on_xfer_firmware(self, ok: bool, response: Response) -> None:
        """Reply to one firmware data chunk."""
        if not ok:
            logger.warning("xfer firmware to lidar %d timed out, try %d", self.handle, self._try_count)
            self._retry(UpgradeEvent.XFER_FIRMWARE, 20, GENERAL_TRY_COUNT_LIMIT)
            return
        self._try_count = 0
        code = _ret_code(response)
        if code:
            logger.error("xfer firmware to lidar %d failed, ret_code %d", self.handle, code)
            self.handle_event(UpgradeEvent.ERR, 100)
            return
        self.read_offset += self.read_length
        if self.read_offset < self.firmware.header.firmware_length:
            self.handle_event(UpgradeEvent.XFER_FIRMWARE, 20)
        else:
            logger.info("xfer firmware to lidar %d done, last offset %d", self.handle, self.read_offset)
            self.handle_event(UpgradeEvent.COMPLETE_XFER_FIRMWARE, 40)

    def on_complete_xfer(self, ok: bool, response: Response) -> None:
        """Reply to the end-of-transfer request."""
        if not ok:
            logger.warning("complete xfer of lidar %d timed out, try %d", self.handle, self._try_count)
            self._retry(UpgradeEvent.COMPLETE_XFER_FIRMWARE, 50, GENERAL_TRY_COUNT_LIMIT)
            return
        self._try_count = 0
        code = _ret_code(response)
        if code:
            logger.error("complete xfer of lidar %d failed, ret_code %d", self.handle, code)
            self.handle_event(UpgradeEvent.ERR, 100)
        else:
            self.handle_event(UpgradeEvent.GET_UPGRADE_PROGRESS, 50)

    def on_progress(self, ok: bool, response: Response) -> None:
        """Reply to a progress query."""
        if not ok:
            self._retry(UpgradeEvent.GET_UPGRADE_PROGRESS, self._progress // 2 + 50,
                        GET_PROCESS_TRY_COUNT_LIMIT)
            return
        self._try_count = 0
        code = _ret_code(response)
        if code:
            logger.error("get progress of lidar %d failed, ret_code %d", self.handle, code)
            self.handle_event(UpgradeEvent.ERR, 100)
            return
        progress = int(response.get("progress", 0)) if response is not None else 0
        logger.info("lidar %d upgrade progress %d", self.handle, progress)
        if progress < 100:
            self.handle_event(UpgradeEvent.GET_UPGRADE_PROGRESS, progress // 2 + 50)
        else:
            self.handle_event(UpgradeEvent.COMPLETE, 100)

    def on_reboot(self, ok: bool, response: Response) -> None:
        """Reply to the reboot request that ends the upgrade."""
        if not ok:
            logger.warning("reboot of lidar %d timed out, try %d", self.handle, self._try_count)
            self._retry(UpgradeEvent.COMPLETE, 100, GENERAL_TRY_COUNT_LIMIT,
                        exhausted=UpgradeEvent.REINIT)
            return
        self._try_count = 0
        code = _ret_code(response)
        if code:
            logger.error("reboot of lidar %d failed, ret_code %d", self.handle, code)
            self.handle_event(UpgradeEvent.ERR, 100)
        else:
            logger.info("lidar %d upgrade complete", self.handle)
            self.handle_event(UpgradeEvent.REINIT, 100)

    def is_complete(self) -> bool:
        """Whether the machine is back at rest (finished, or never started)."""
        return self.state == UpgradeState.IDLE

    def is_error(self) -> bool:
        """Whether the upgrade ended in a timeout or an error."""
        return self.state in (UpgradeState.TIMEOUT, UpgradeState.ERR)