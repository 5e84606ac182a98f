import os
import time

import pytest

from lidarkit.config import LoggerConfig
from lidarkit.logger_handler import LogFilePush
from lidarkit.logger_manager import (
    COMMAND_COLLECTION_LOG,
    COMMAND_PUSH_LOG_ACK,
    MIB,
    DeviceInfo,
    LoggerManager,
    LogType,
    cache_sizes,
)


class FakeSender:
    def __init__(self):
        self.calls = []

    def __call__(self, handle, command, fields, callback):
        self.calls.append((handle, command, dict(fields), callback))
        return "sent"


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def manager(sender, tmp_path):
    mgr = LoggerManager(sender)
    mgr.init(LoggerConfig(lidar_log_enable=True, lidar_log_cache_size=4,
                          lidar_log_path=str(tmp_path)))
    yield mgr
    mgr.destroy()


DEVICE = DeviceInfo(sn="TESTSN0001", dev_type=9, lidar_ip="192.168.1.12", cmd_port=56100)


def test_cache_sizes_large_budget_caps_exception_share():
    realtime, exception = cache_sizes(1000)
    assert exception == 200 * MIB
    assert realtime + exception == 1000 * MIB


def test_cache_sizes_small_budget_is_split_by_ratio():
    for mb in (1, 4, 10, 800):
        realtime, exception = cache_sizes(mb)
        assert realtime + exception <= mb * MIB
        assert realtime >= exception


def test_disabled_config_keeps_logging_off(sender):
    mgr = LoggerManager(sender)
    mgr.init(LoggerConfig(lidar_log_enable=False))
    assert mgr.log_enable() is False
    assert mgr.start_logger(1, LogType.REALTIME, None) is None
    assert sender.calls == []


def test_zero_cache_size_keeps_logging_off(sender, tmp_path):
    mgr = LoggerManager(sender)
    mgr.init(LoggerConfig(lidar_log_enable=True, lidar_log_cache_size=0,
                          lidar_log_path=str(tmp_path)))
    assert mgr.log_enable() is False
    assert not (tmp_path / "lidar_log").exists()


def test_init_creates_log_dir_and_unhides_files(sender, tmp_path):
    (tmp_path / ".old.dat").write_bytes(b"x")
    mgr = LoggerManager(sender)
    mgr.init(LoggerConfig(lidar_log_enable=True, lidar_log_cache_size=4,
                          lidar_log_path=str(tmp_path)))
    try:
        assert mgr.log_enable() is True
        assert (tmp_path / "lidar_log").is_dir()
        assert (tmp_path / "old.dat").read_bytes() == b"x"
        sizes = (mgr.max_realtime_log_cache_size, mgr.max_exception_log_cache_size)
        assert sizes == cache_sizes(4)
    finally:
        mgr.destroy()


def test_start_and_stop_logger_send_commands(manager, sender):
    assert manager.start_logger(7, LogType.EXCEPTION, None) == "sent"
    assert manager.stop_logger(7, LogType.EXCEPTION, None) == "sent"
    assert sender.calls[0][:3] == (7, COMMAND_COLLECTION_LOG, {"log_type": 1, "enable": True})
    assert sender.calls[1][:3] == (7, COMMAND_COLLECTION_LOG, {"log_type": 1, "enable": False})


def test_push_with_ack_bit_sends_ack(manager, sender):
    manager.add_device(3, DEVICE)
    assert manager.handlers == {}
    manager.handle_push(3, LogFilePush(log_type=0, file_index=2, trans_index=1,
                                       data=b"a", flag=0b11))
    acks = [c for c in sender.calls if c[1] == COMMAND_PUSH_LOG_ACK]
    assert acks == [(3, COMMAND_PUSH_LOG_ACK,
                     {"ret_code": 0, "log_type": 0, "file_index": 2, "trans_index": 1}, None)]
    assert list(manager.handlers) == [3]


def test_create_without_device_makes_no_handler(manager):
    manager.handle_push(5, LogFilePush(log_type=0, file_index=1, trans_index=1,
                                       data=b"a", flag=0b10))
    assert manager.handlers == {}


def test_push_when_disabled_is_ignored(sender):
    mgr = LoggerManager(sender)
    mgr.add_device(3, DEVICE)
    mgr.handle_push(3, LogFilePush(log_type=0, file_index=1, trans_index=1,
                                   data=b"a", flag=0b11))
    assert mgr.handlers == {}
    assert sender.calls == []


def test_create_transfer_stop_writes_visible_file(manager, tmp_path):
    manager.add_device(3, DEVICE)
    manager.handle_push(3, LogFilePush(log_type=0, file_index=1, trans_index=1,
                                       data=b"abc", flag=0b10))
    assert list(manager.handlers) == [3]
    manager.handle_push(3, LogFilePush(log_type=0, file_index=1, trans_index=2,
                                       data=b"def", flag=0))
    manager.handle_push(3, LogFilePush(log_type=0, file_index=1, trans_index=3,
                                       data=b"", flag=0b100))
    assert list(manager.handlers) == [3]
    type_dir = tmp_path / "lidar_log" / "type_0"
    deadline = time.monotonic() + 5
    visible = []
    while time.monotonic() < deadline:
        if type_dir.is_dir():
            visible = [p for p in type_dir.iterdir() if not p.name.startswith(".")]
            if visible:
                break
        time.sleep(0.05)
    assert len(visible) == 1
    assert visible[0].read_bytes() == b"abcdef"
    assert "_TESTSN0001_0_1.dat" in visible[0].name


def test_cycle_delete_removes_oldest_over_limit(manager, tmp_path):
    type_dir = tmp_path / "lidar_log" / "type_0"
    type_dir.mkdir()
    old = type_dir / "2023-01-01_00-00-00_SN_0_1.dat"
    new = type_dir / "2023-01-02_00-00-00_SN_0_2.dat"
    for path in (new, old):
        with open(path, "wb") as f:
            f.truncate(2 * MIB)
    removed = manager.cycle_delete_once()
    assert removed == [os.path.join(str(type_dir), old.name)]
    assert not old.exists()
    assert new.exists()


def test_cycle_delete_keeps_files_under_limit(manager, tmp_path):
    type_dir = tmp_path / "lidar_log" / "type_1"
    type_dir.mkdir()
    (type_dir / "2023-01-01_00-00-00_SN_1_1.dat").write_bytes(b"small")
    assert manager.cycle_delete_once() == []
    assert len(list(type_dir.iterdir())) == 1


def test_destroy_stops_devices_and_is_idempotent(sender, tmp_path):
    mgr = LoggerManager(sender)
    mgr.init(LoggerConfig(lidar_log_enable=True, lidar_log_cache_size=4,
                          lidar_log_path=str(tmp_path)))
    mgr.add_device(3, DEVICE)
    mgr.add_device(4, DEVICE)
    mgr.remove_device(4)
    mgr.destroy()
    stops = [c[:3] for c in sender.calls]
    assert stops == [(3, COMMAND_COLLECTION_LOG, {"log_type": 0, "enable": False})]
    assert mgr.log_enable() is False
    mgr.destroy()
    assert len(sender.calls) == 1


def test_add_device_keeps_first_registration(sender):
    mgr = LoggerManager(sender)
    mgr.add_device(3, DEVICE)
    mgr.add_device(3, DeviceInfo(sn="OTHER", dev_type=10, lidar_ip="192.168.1.13", cmd_port=1))
    assert mgr.devices[3] == DEVICE