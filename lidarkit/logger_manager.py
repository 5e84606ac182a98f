"""Coordination of lidar log collection: commands, per-lidar writers and cache limits."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional

from lidarkit.config import LoggerConfig
from lidarkit.file_manager import (
    change_hidden_files,
    collect_file_names,
    dir_total_size,
    directory_exists,
    make_directory,
)
from lidarkit.logger_handler import LogFilePush, LogFlag, LoggerHandler

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
MAX_EXCEPTION_LOG_CACHE_SIZE_MB = 200
EXCEPTION_LOG_CACHE_RATIO = 1
REALTIME_LOG_CACHE_RATIO = 3
MAX_LOG_CACHE_SIZE_MB = 1_000_000_000
CYCLE_DELETE_INTERVAL = 600.0

COMMAND_COLLECTION_LOG = "collection_log"
COMMAND_PUSH_LOG_ACK = "push_log_ack"

_FLAG_ACK = 1 << 0
_FLAG_CREATE = 1 << 1
_FLAG_STOP = 1 << 2

Sender = Callable[[int, str, dict, Optional[Callable[..., Any]]], Any]


class LogType(IntEnum):
    """Kinds of logs a lidar can push."""

    REALTIME = 0
    EXCEPTION = 1


@dataclass
class DeviceInfo:
    """What the manager knows about a detected lidar."""

    sn: str
    dev_type: int
    lidar_ip: str
    cmd_port: int


def cache_sizes(cache_size_mb: int) -> tuple[int, int]:
    """Split a cache budget in MB into (realtime, exception) byte limits."""
    total_ratio = EXCEPTION_LOG_CACHE_RATIO + REALTIME_LOG_CACHE_RATIO
    threshold = MAX_EXCEPTION_LOG_CACHE_SIZE_MB * total_ratio // EXCEPTION_LOG_CACHE_RATIO
    if cache_size_mb > threshold:
        exception = MAX_EXCEPTION_LOG_CACHE_SIZE_MB * MIB
        realtime = (cache_size_mb - MAX_EXCEPTION_LOG_CACHE_SIZE_MB) * MIB
    else:
        realtime = (cache_size_mb * REALTIME_LOG_CACHE_RATIO // total_ratio) * MIB
        exception = (cache_size_mb * EXCEPTION_LOG_CACHE_RATIO // total_ratio) * MIB
    return realtime, exception


class LoggerManager:
    """Starts and stops lidar logging and stores what the lidars push.

    ``sender`` is called as ``sender(handle, command, fields, callback)`` to
    send a logger command to a lidar; its result is passed back to the caller.
    """

    def __init__(self, sender: Sender) -> None:
        self._sender = sender
        self._log_enable = False
        self.log_root_path = "./"
        self.max_realtime_log_cache_size = 150 * MIB
        self.max_exception_log_cache_size = 50 * MIB
        self.devices: dict[int, DeviceInfo] = {}
        self.handlers: dict[int, LoggerHandler] = {}
        self._cond = threading.Condition()
        self._wake = False
        self._cycle_enable = False
        self._cycle_thread: Optional[threading.Thread] = None
        self._destroyed = False

    def init(self, logger_config: Optional[LoggerConfig]) -> None:
        """Apply a logger configuration; raises OSError if the log dir can not be made."""
        if logger_config is None or not logger_config.lidar_log_enable:
            self._log_enable = False
            return
        size = logger_config.lidar_log_cache_size
        if size == 0 or size > MAX_LOG_CACHE_SIZE_MB:
            self._log_enable = False
            return

        self.max_realtime_log_cache_size, self.max_exception_log_cache_size = cache_sizes(size)
        try:
            self._init_save_path(logger_config.lidar_log_path)
        except OSError:
            logger.error("init logger save path failed")
            self._log_enable = False
            raise
        self._log_enable = True

        try:
            change_hidden_files(logger_config.lidar_log_path)
        except (OSError, ValueError):
            logger.error("change hidden files to normal files failed")

        self._cycle_enable = True
        self._destroyed = False
        self._cycle_thread = threading.Thread(target=self._cycle_delete, daemon=True)
        self._cycle_thread.start()

    def _init_save_path(self, root: str) -> None:
        root = os.fspath(root)
        sep = "" if root.endswith("/") else "/"
        log_dir = f"{root}{sep}lidar_log/"
        if not directory_exists(log_dir):
            make_directory(log_dir)
        self.log_root_path = log_dir

    def log_enable(self) -> bool:
        """Whether log collection is enabled."""
        return self._log_enable

    def add_device(self, handle: int, info: DeviceInfo) -> None:
        """Remember a detected lidar; the first registration wins."""
        self.devices.setdefault(handle, info)

    def remove_device(self, handle: int) -> None:
        """Forget a lidar."""
        self.devices.pop(handle, None)

    def start_logger(self, handle: int, log_type: int, callback: Optional[Callable[..., Any]] = None) -> Any:
        """Ask a lidar to start pushing logs; returns None when logging is disabled."""
        if not self._log_enable:
            logger.info("logger disabled")
            return None
        logger.info("start logger handle: %d, log_type: %d", handle, int(log_type))
        fields = {"log_type": int(log_type), "enable": True}
        return self._sender(handle, COMMAND_COLLECTION_LOG, fields, callback)

    def stop_logger(self, handle: int, log_type: int, callback: Optional[Callable[..., Any]] = None) -> Any:
        """Ask a lidar to stop pushing logs."""
        logger.info("stop logger handle: %d, log_type: %d", handle, int(log_type))
        fields = {"log_type": int(log_type), "enable": False}
        return self._sender(handle, COMMAND_COLLECTION_LOG, fields, callback)

    def handle_push(self, handle: int, request: LogFilePush) -> None:
        """Handle one log bag pushed by a lidar."""
        if not self._log_enable:
            return
        flag = request.flag
        if flag & _FLAG_ACK:
            ack = {
                "ret_code": 0,
                "log_type": request.log_type,
                "file_index": request.file_index,
                "trans_index": request.trans_index,
            }
            self._sender(handle, COMMAND_PUSH_LOG_ACK, ack, None)

        if flag & _FLAG_CREATE:
            self._on_create(handle, request)
        elif flag & _FLAG_STOP:
            self._on_stop(handle, request)
        else:
            self._on_transfer(handle, request)

    def _on_create(self, handle: int, request: LogFilePush) -> None:
        if handle not in self.handlers:
            device = self.devices.get(handle)
            if device is None:
                logger.error("log type %d: unknown lidar %d", request.log_type, handle)
                return
            handler = LoggerHandler(self.log_root_path, device.sn)
            handler.start()
            self.handlers[handle] = handler
        self.handlers[handle].store_log_bag(request, LogFlag.CREATE_FILE)

    def _on_stop(self, handle: int, request: LogFilePush) -> None:
        handler = self.handlers.get(handle)
        if handler is None:
            logger.info("log type %d stop, file was not created", request.log_type)
            return
        handler.store_log_bag(request, LogFlag.END_FILE)
        with self._cond:
            self._wake = True
            self._cond.notify()

    def _on_transfer(self, handle: int, request: LogFilePush) -> None:
        handler = self.handlers.get(handle)
        if handler is None:
            logger.error("log type %d file was not created", request.log_type)
            return
        handler.store_log_bag(request, LogFlag.TRANSFER_DATA)

    def _type_path(self, log_type: LogType) -> str:
        sep = "" if self.log_root_path.endswith("/") else "/"
        return f"{self.log_root_path}{sep}type_{int(log_type)}"

    @staticmethod
    def _trim(path: str, limit: int) -> list[str]:
        removed: list[str] = []
        if not directory_exists(path) or dir_total_size(path) <= limit:
            return removed
        try:
            files = collect_file_names(path)
        except OSError:
            logger.error("can not get file names in %s", path)
            files = []
        for _, name in files:
            if dir_total_size(path) <= limit:
                break
            target = os.path.join(path, name)
            try:
                os.remove(target)
                removed.append(target)
            except OSError as exc:
                logger.warning("remove %s failed: %s", target, exc)
        return removed

    def cycle_delete_once(self) -> list[str]:
        """Delete the oldest log files while a log type exceeds its cache limit."""
        removed = self._trim(self._type_path(LogType.REALTIME), self.max_realtime_log_cache_size)
        removed += self._trim(self._type_path(LogType.EXCEPTION), self.max_exception_log_cache_size)
        return removed

    def _cycle_delete(self) -> None:
        while self._cycle_enable:
            with self._cond:
                self._cond.wait_for(lambda: self._wake, timeout=CYCLE_DELETE_INTERVAL)
                self._wake = False
            if not self._cycle_enable:
                break
            self.cycle_delete_once()

    def _stop_all_loggers(self) -> None:
        if not self._log_enable:
            return
        for handle in list(self.devices):
            self.stop_logger(handle, LogType.REALTIME, None)

    def destroy(self) -> None:
        """Stop every writer and background task, and make log files visible."""
        if self._destroyed:
            return
        self._cycle_enable = False
        with self._cond:
            self._wake = True
            self._cond.notify()
        if self._cycle_thread is not None:
            self._cycle_thread.join()
            self._cycle_thread = None

        for handler in self.handlers.values():
            handler.stop()
        self.handlers.clear()

        self._stop_all_loggers()
        if self._log_enable:
            try:
                change_hidden_files(self.log_root_path)
            except (OSError, ValueError):
                logger.error("change hidden files in %s failed", self.log_root_path)
        self._log_enable = False
        self._destroyed = True

    def __enter__(self) -> "LoggerManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()