import pytest

from lidarkit.config import DeviceType, HostNetInfo, LidarConfig, LidarNetInfo
from lidarkit.params_check import (
    MID360_CMD_PORT,
    MID360_IMU_DATA_PORT,
    MID360_LOG_PORT,
    MID360_POINT_DATA_PORT,
    MID360_PUSH_MSG_PORT,
    ParamsError,
    check_lidar_ips,
    check_multicast_ips,
    check_params,
    fix_mid360_ports,
    ip_to_bytes,
)


def make_cfg(device_type=DeviceType.HAP, lidar_ip="", multicast_ip="", ports=(1, 2, 3, 4, 5)):
    return LidarConfig(
        device_type=device_type,
        lidar_net_info=LidarNetInfo(*ports, lidar_ipaddr=lidar_ip),
        host_net_info=HostNetInfo(host_ip="192.168.1.5", multicast_ip=multicast_ip),
    )


def test_ip_to_bytes():
    assert ip_to_bytes("192.168.1.50") == bytes([192, 168, 1, 50])


@pytest.mark.parametrize("bad", ["1.2.3", "1.2.3.4.5", "a.b.c.d", "1.2.3.256", ""])
def test_ip_to_bytes_rejects(bad):
    with pytest.raises(ParamsError):
        ip_to_bytes(bad)


def test_check_params_both_none():
    with pytest.raises(ParamsError):
        check_params(None, None)


def test_check_params_both_empty():
    with pytest.raises(ParamsError):
        check_params([], [])


def test_type_entries_without_ip_are_allowed():
    lidars = [make_cfg(), make_cfg()]
    check_lidar_ips(lidars, [])
    assert [c.lidar_net_info.lidar_ipaddr for c in lidars] == ["", ""]


def test_custom_entry_needs_ip():
    with pytest.raises(ParamsError):
        check_lidar_ips([], [make_cfg(lidar_ip="")])


def test_duplicate_ip_between_lists():
    with pytest.raises(ParamsError):
        check_lidar_ips([make_cfg(lidar_ip="192.168.1.10")], [make_cfg(lidar_ip="192.168.1.10")])


def test_duplicate_ip_in_custom():
    with pytest.raises(ParamsError):
        check_params(None, [make_cfg(lidar_ip="192.168.1.10"), make_cfg(lidar_ip="192.168.1.10")])


@pytest.mark.parametrize("ip", ["224.0.0.1", "239.255.255.255", "230.1.2.3"])
def test_multicast_accepted(ip):
    cfg = make_cfg(multicast_ip=ip)
    check_multicast_ips([cfg], [])
    assert cfg.host_net_info.multicast_ip == ip


@pytest.mark.parametrize("ip", ["224.0.0.0", "240.0.0.0", "192.168.1.1", "not-an-ip"])
def test_multicast_rejected(ip):
    with pytest.raises(ParamsError):
        check_multicast_ips([], [make_cfg(lidar_ip="192.168.1.10", multicast_ip=ip)])


def test_fix_mid360_ports_corrects_all():
    info = LidarNetInfo(1, 2, 3, 4, 5)
    corrected = fix_mid360_ports(DeviceType.MID360, info)
    assert len(corrected) == 5
    assert (info.cmd_data_port, info.push_msg_port, info.point_data_port,
            info.imu_data_port, info.log_data_port) == (
        MID360_CMD_PORT, MID360_PUSH_MSG_PORT, MID360_POINT_DATA_PORT,
        MID360_IMU_DATA_PORT, MID360_LOG_PORT)


def test_fix_mid360_ports_leaves_correct_ports():
    info = LidarNetInfo(MID360_CMD_PORT, MID360_PUSH_MSG_PORT, MID360_POINT_DATA_PORT,
                        MID360_IMU_DATA_PORT, 7)
    assert fix_mid360_ports(DeviceType.MID360, info) == ["log_data_port"]
    assert info.log_data_port == MID360_LOG_PORT


def test_fix_ports_ignores_hap():
    info = LidarNetInfo(1, 2, 3, 4, 5)
    assert fix_mid360_ports(DeviceType.HAP, info) == []
    assert info.cmd_data_port == 1


def test_check_params_fixes_mid360_custom_entry():
    cfg = make_cfg(device_type=DeviceType.MID360, lidar_ip="192.168.1.12")
    check_params([], [cfg])
    assert cfg.lidar_net_info.point_data_port == MID360_POINT_DATA_PORT


def test_check_params_rejects_bad_multicast_after_fix():
    cfg = make_cfg(device_type=DeviceType.MID360, multicast_ip="224.0.0.0")
    with pytest.raises(ParamsError):
        check_params([cfg], [])
    assert cfg.lidar_net_info.cmd_data_port == MID360_CMD_PORT