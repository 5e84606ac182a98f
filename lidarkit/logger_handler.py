"""Writing of log files pushed by one lidar into per-type directories."""

from __future__ import annotations

import logging
import os
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import BinaryIO, Callable, Optional

from lidarkit.file_manager import (
    change_current_file_name,
    directory_exists,
    make_directory,
)

logger = logging.getLogger(__name__)

_WRITE_INTERVAL = 0.1


class LogFlag(IntEnum):
    """What a pushed log bag asks the handler to do."""

    CREATE_FILE = 0
    TRANSFER_DATA = 1
    END_FILE = 2


@dataclass
class LogFilePush:
    """One log bag pushed by a lidar."""

    log_type: int
    file_index: int
    trans_index: int
    data: bytes = b""
    flag: int = 0


@dataclass
class WriteBuffer:
    """A queued log bag waiting to be written."""

    log_type: int
    flag: int = 0
    file_index: int = 0
    trans_index: int = 0
    data: bytes = b""


@dataclass
class CurrentFileInfo:
    """State of the file currently being written for one log type."""

    flag: int = 0
    file_index: int = 0
    trans_index: int = 0
    fp: Optional[BinaryIO] = None
    file_name: str = ""


def format_time(moment: datetime) -> str:
    """Timestamp used at the start of log file names."""
    return moment.strftime("%Y-%m-%d_%H-%M-%S")


class LoggerHandler:
    """Queues log bags of one lidar and writes them to files in the background."""

    def __init__(
        self,
        log_root_path: str,
        serial_num: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.log_root_path = os.fspath(log_root_path)
        self.serial_num = serial_num
        self._clock = clock or datetime.now
        self.branch_paths: dict[int, str] = {}
        self.current_files: defaultdict[int, CurrentFileInfo] = defaultdict(CurrentFileInfo)
        self._queue: list[WriteBuffer] = []
        self._queue_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "LoggerHandler":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Start the background thread that writes queued bags."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._save_to_file, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and close every open file."""
        if self._thread is not None:
            self._stop_event.set()
            self._thread.join()
            self._thread = None
        for info in self.current_files.values():
            if info.fp is not None:
                info.fp.close()
                info.fp = None

    def _save_to_file(self) -> None:
        while not self._stop_event.is_set():
            self.write()
            self._stop_event.wait(_WRITE_INTERVAL)

    def store_log_bag(self, request: LogFilePush, flag: int) -> None:
        """Queue a pushed bag to be handled as ``flag``."""
        logger.info("transform data length: %d", len(request.data))
        buffer = WriteBuffer(
            log_type=request.log_type,
            flag=int(flag),
            file_index=request.file_index,
            trans_index=request.trans_index,
            data=bytes(request.data),
        )
        with self._queue_lock:
            self._queue.append(buffer)

    def _branch_path(self, log_type: int) -> str:
        sep = "" if self.log_root_path.endswith("/") else "/"
        return f"{self.log_root_path}{sep}type_{log_type}"

    def create_file(self, buffer: WriteBuffer) -> None:
        """Close the current file of the bag's type and start a new one."""
        now_str = format_time(self._clock())
        log_type = buffer.log_type
        branch = self._branch_path(log_type)
        self.branch_paths[log_type] = branch
        if not directory_exists(branch):
            try:
                make_directory(branch)
            except OSError:
                logger.error("can not create dir %s", branch)
                return

        info = self.current_files[log_type]
        if info.fp is not None:
            if info.trans_index + 1 != buffer.trans_index:
                logger.warning(
                    "the terminal command to end log file %d has been lost", info.file_index
                )
            info.fp.close()
            info.fp = None
            change_current_file_name(branch, info.file_name)

        file_name = f".{now_str}_{self.serial_num}_{log_type}_{buffer.file_index}.dat"
        file_path = f"{branch}/{file_name}"
        logger.info("file path: %s", file_path)
        try:
            info.fp = open(file_path, "ab")
        except OSError as exc:
            logger.error("can not open %s: %s", file_path, exc)
            info.fp = None
        if info.fp is not None:
            info.fp.write(buffer.data)
            info.fp.flush()
        info.flag = buffer.flag
        info.file_index = buffer.file_index
        info.trans_index = buffer.trans_index
        info.file_name = file_name
        logger.info("create file index: %d", buffer.file_index)

    def write_file(self, buffer: WriteBuffer) -> None:
        """Append the bag to the current file of its type."""
        info = self.current_files[buffer.log_type]
        if info.file_index != buffer.file_index:
            logger.warning(
                "log type %d file index error: last %d, current %d",
                buffer.log_type, info.file_index, buffer.file_index,
            )
            return
        if info.trans_index + 1 != buffer.trans_index and buffer.trans_index != 1:
            logger.warning(
                "log type %d trans index error: last %d, current %d",
                buffer.log_type, info.trans_index, buffer.trans_index,
            )
        if info.fp is not None:
            info.fp.write(buffer.data)
            info.fp.flush()
        else:
            logger.error(
                "no file was started by the lidar, trans_index: %d", buffer.trans_index
            )
        info.flag = buffer.flag
        info.trans_index = buffer.trans_index

    def stop_file(self, buffer: WriteBuffer) -> None:
        """Close the current file of the bag's type and make it visible."""
        log_type = buffer.log_type
        info = self.current_files[log_type]
        if info.flag == LogFlag.END_FILE and info.trans_index + 1 != buffer.trans_index:
            logger.error("repeated end-of-file commands with discontinuous trans_index")
        if info.fp is not None:
            info.fp.close()
            info.fp = None
            change_current_file_name(self.branch_paths.get(log_type, self._branch_path(log_type)),
                                     info.file_name)
        info.flag = buffer.flag
        info.trans_index = buffer.trans_index

    def write(self) -> None:
        """Handle every bag queued so far, in order."""
        with self._queue_lock:
            pending, self._queue = self._queue, []
        for buffer in pending:
            info = self.current_files[buffer.log_type]
            if buffer.trans_index < info.trans_index and buffer.flag != LogFlag.CREATE_FILE:
                continue
            if buffer.flag == LogFlag.CREATE_FILE:
                self.create_file(buffer)
            elif buffer.flag == LogFlag.END_FILE:
                self.stop_file(buffer)
            elif buffer.flag == LogFlag.TRANSFER_DATA:
                self.write_file(buffer)