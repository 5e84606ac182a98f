"""Validation of lidar configuration entries before they are put to use."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from lidarkit.config import DeviceType, LidarConfig, LidarNetInfo

logger = logging.getLogger(__name__)

MID360_CMD_PORT = 56100
MID360_PUSH_MSG_PORT = 56200
MID360_POINT_DATA_PORT = 56300
MID360_IMU_DATA_PORT = 56400
MID360_LOG_PORT = 56500

_MID360_PORTS = (
    ("cmd_data_port", MID360_CMD_PORT),
    ("push_msg_port", MID360_PUSH_MSG_PORT),
    ("point_data_port", MID360_POINT_DATA_PORT),
    ("imu_data_port", MID360_IMU_DATA_PORT),
    ("log_data_port", MID360_LOG_PORT),
)

_MULTICAST_LOW = 0xE0000000
_MULTICAST_HIGH = 0xEFFFFFFF


class ParamsError(ValueError):
    """Raised when the lidar configuration entries are inconsistent."""


def ip_to_bytes(ip: str) -> bytes:
    """Convert a dotted IPv4 address into its four bytes, most significant first."""
    parts = ip.split(".")
    if len(parts) != 4:
        raise ParamsError(f"invalid ip address: {ip!r}")
    try:
        values = [int(part) for part in parts]
    except ValueError as exc:
        raise ParamsError(f"invalid ip address: {ip!r}") from exc
    if any(not 0 <= value <= 255 for value in values):
        raise ParamsError(f"invalid ip address: {ip!r}")
    return bytes(values)


def check_lidar_ips(lidars: Iterable[LidarConfig], custom_lidars: Iterable[LidarConfig]) -> None:
    """Reject duplicated lidar addresses and custom entries without an address."""
    seen: set[str] = set()
    for cfg in lidars:
        ip = cfg.lidar_net_info.lidar_ipaddr
        if not ip:
            continue
        if ip in seen:
            raise ParamsError(f"lidar ip conflict: {ip}")
        seen.add(ip)

    for cfg in custom_lidars:
        ip = cfg.lidar_net_info.lidar_ipaddr
        if not ip:
            raise ParamsError("custom lidar ip address is empty")
        if ip in seen:
            raise ParamsError(f"lidar ip conflict: {ip}")
        seen.add(ip)


def _check_multicast(cfg: LidarConfig, label: str) -> None:
    multicast_ip = cfg.host_net_info.multicast_ip
    if not multicast_ip:
        logger.info("%s point cloud and IMU data unicast is enabled", label)
        return
    net_ip = int.from_bytes(ip_to_bytes(multicast_ip), "big")
    if net_ip <= _MULTICAST_LOW or net_ip > _MULTICAST_HIGH:
        raise ParamsError(f"lidar multicast ip error: {multicast_ip}")
    logger.info("%s point cloud and IMU data multicast ip: %s", label, multicast_ip)


def check_multicast_ips(lidars: Iterable[LidarConfig], custom_lidars: Iterable[LidarConfig]) -> None:
    """Reject multicast addresses outside 224.0.0.1 to 239.255.255.255."""
    for cfg in lidars:
        _check_multicast(cfg, f"device type {int(cfg.device_type)}")
    for cfg in custom_lidars:
        _check_multicast(cfg, f"lidar ip {cfg.lidar_net_info.lidar_ipaddr}")


def fix_mid360_ports(device_type: int, net_info: LidarNetInfo) -> list[str]:
    """Force the fixed Mid-360 lidar ports; return the names of corrected fields."""
    if device_type != DeviceType.MID360:
        return []
    corrected = []
    for name, port in _MID360_PORTS:
        if getattr(net_info, name) != port:
            logger.error("Mid360 lidar %s must be %d", name, port)
            setattr(net_info, name, port)
            corrected.append(name)
    return corrected


def check_params(
    lidars: Optional[Sequence[LidarConfig]],
    custom_lidars: Optional[Sequence[LidarConfig]],
) -> None:
    """Validate both lists of entries, correcting Mid-360 ports in place."""
    if lidars is None and custom_lidars is None:
        raise ParamsError("no lidar configuration given")
    lidars = lidars or []
    custom_lidars = custom_lidars or []
    if not lidars and not custom_lidars:
        raise ParamsError("all lidar configuration lists are empty")

    check_lidar_ips(lidars, custom_lidars)

    for cfg in (*lidars, *custom_lidars):
        fix_mid360_ports(cfg.device_type, cfg.lidar_net_info)

    check_multicast_ips(lidars, custom_lidars)