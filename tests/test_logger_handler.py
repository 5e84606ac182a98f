import time
from datetime import datetime

import pytest

from lidarkit.logger_handler import (
    LogFilePush,
    LogFlag,
    LoggerHandler,
    WriteBuffer,
    format_time,
)

MOMENT = datetime(2023, 1, 2, 3, 4, 5)
SERIAL = "TESTSN0001"


def _handler(root):
    return LoggerHandler(str(root), SERIAL, clock=lambda: MOMENT)


def _name(log_type, file_index):
    return f"{format_time(MOMENT)}_{SERIAL}_{log_type}_{file_index}.dat"


def test_format_time():
    assert format_time(MOMENT) == "2023-01-02_03-04-05"


def test_full_file_cycle(tmp_path):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(0, 1, 1, b"abc"), LogFlag.CREATE_FILE)
    handler.store_log_bag(LogFilePush(0, 1, 2, b"def"), LogFlag.TRANSFER_DATA)
    handler.store_log_bag(LogFilePush(0, 1, 3, b""), LogFlag.END_FILE)
    handler.write()
    final = tmp_path / "type_0" / _name(0, 1)
    assert final.read_bytes() == b"abcdef"
    assert not (tmp_path / "type_0" / ("." + _name(0, 1))).exists()


def test_open_file_stays_hidden(tmp_path):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(1, 4, 1, b"xy"), LogFlag.CREATE_FILE)
    handler.write()
    hidden = tmp_path / "type_1" / ("." + _name(1, 4))
    handler.stop()
    assert hidden.read_bytes() == b"xy"
    assert handler.current_files[1].fp is None


def test_second_create_unhides_previous(tmp_path):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(0, 1, 1, b"a"), LogFlag.CREATE_FILE)
    handler.store_log_bag(LogFilePush(0, 2, 2, b"b"), LogFlag.CREATE_FILE)
    handler.write()
    handler.stop()
    assert (tmp_path / "type_0" / _name(0, 1)).read_bytes() == b"a"
    assert (tmp_path / "type_0" / ("." + _name(0, 2))).read_bytes() == b"b"


def test_transfer_with_other_file_index_is_ignored(tmp_path):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(0, 1, 1, b"a"), LogFlag.CREATE_FILE)
    handler.store_log_bag(LogFilePush(0, 7, 2, b"zzz"), LogFlag.TRANSFER_DATA)
    handler.write()
    handler.stop()
    assert (tmp_path / "type_0" / ("." + _name(0, 1))).read_bytes() == b"a"
    assert handler.current_files[0].trans_index == 1


def test_old_trans_index_is_dropped(tmp_path):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(0, 1, 5, b"a"), LogFlag.CREATE_FILE)
    handler.store_log_bag(LogFilePush(0, 1, 2, b"old"), LogFlag.TRANSFER_DATA)
    handler.store_log_bag(LogFilePush(0, 1, 6, b"b"), LogFlag.TRANSFER_DATA)
    handler.write()
    handler.stop()
    assert (tmp_path / "type_0" / ("." + _name(0, 1))).read_bytes() == b"ab"


def test_root_with_trailing_slash(tmp_path):
    handler = LoggerHandler(str(tmp_path) + "/", SERIAL, clock=lambda: MOMENT)
    handler.create_file(WriteBuffer(log_type=2, flag=LogFlag.CREATE_FILE, file_index=3,
                                    trans_index=1, data=b"q"))
    handler.stop()
    assert handler.branch_paths[2] == str(tmp_path) + "/type_2"
    assert (tmp_path / "type_2" / ("." + _name(2, 3))).read_bytes() == b"q"


def test_stop_file_updates_state(tmp_path):
    handler = _handler(tmp_path)
    handler.create_file(WriteBuffer(0, LogFlag.CREATE_FILE, 1, 1, b"z"))
    handler.stop_file(WriteBuffer(0, LogFlag.END_FILE, 1, 2, b""))
    info = handler.current_files[0]
    assert info.flag == LogFlag.END_FILE
    assert info.trans_index == 2
    assert (tmp_path / "type_0" / _name(0, 1)).exists()


def test_background_thread_writes(tmp_path):
    handler = _handler(tmp_path)
    hidden = tmp_path / "type_0" / ("." + _name(0, 1))
    with handler:
        handler.store_log_bag(LogFilePush(0, 1, 1, b"data"), LogFlag.CREATE_FILE)
        deadline = time.monotonic() + 5
        while not hidden.exists() and time.monotonic() < deadline:
            time.sleep(0.02)
    assert hidden.read_bytes() == b"data"


@pytest.mark.parametrize("flag", [LogFlag.TRANSFER_DATA, LogFlag.END_FILE])
def test_no_file_without_create(tmp_path, flag):
    handler = _handler(tmp_path)
    handler.store_log_bag(LogFilePush(0, 0, 1, b"x"), flag)
    handler.write()
    assert not (tmp_path / "type_0").exists()
    assert handler.current_files[0].trans_index == 1