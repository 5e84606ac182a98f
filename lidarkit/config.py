"""Reading of the JSON configuration file that describes lidars and the host."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from os import PathLike
from typing import Any, Mapping, Union

logger = logging.getLogger(__name__)

_UINT32_MAX = 0xFFFFFFFF
_UINT16_MASK = 0xFFFF


class ConfigError(ValueError):
    """Raised when a configuration file or document is invalid."""


class DeviceType(IntEnum):
    """Lidar models that may be described in a configuration file."""

    MID360 = 9
    HAP = 10


@dataclass
class LidarNetInfo:
    """Ports on the lidar side, and the lidar address for custom entries."""

    cmd_data_port: int = 0
    push_msg_port: int = 0
    point_data_port: int = 0
    imu_data_port: int = 0
    log_data_port: int = 0
    lidar_ipaddr: str = ""


@dataclass
class HostNetInfo:
    """Address and ports on the host side."""

    host_ip: str = ""
    multicast_ip: str = ""
    cmd_data_port: int = 0
    push_msg_port: int = 0
    point_data_port: int = 0
    imu_data_port: int = 0
    log_data_port: int = 0


@dataclass
class LidarConfig:
    """Network settings of one lidar, or of every lidar of a type."""

    device_type: DeviceType
    lidar_net_info: LidarNetInfo = field(default_factory=LidarNetInfo)
    host_net_info: HostNetInfo = field(default_factory=HostNetInfo)


@dataclass
class LoggerConfig:
    """Settings for storing logs pushed by lidars."""

    lidar_log_enable: bool = False
    lidar_log_cache_size: int = 0
    lidar_log_path: str = "./"


@dataclass
class FrameworkConfig:
    """Whether this instance is the master SDK that owns the command ports."""

    master_sdk: bool = True


@dataclass
class SdkConfig:
    """Everything read from one configuration document.

    ``lidars`` holds per-type entries (no lidar address), ``custom_lidars``
    holds entries bound to a specific lidar address.
    """

    lidars: list[LidarConfig] = field(default_factory=list)
    custom_lidars: list[LidarConfig] = field(default_factory=list)
    logger: LoggerConfig = field(default_factory=LoggerConfig)
    framework: FrameworkConfig = field(default_factory=FrameworkConfig)


def _is_uint(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= _UINT32_MAX
    )


def _port(obj: Mapping[str, Any], key: str, where: str) -> int:
    value = obj.get(key)
    if not _is_uint(value):
        raise ConfigError(f"{where}: missing {key} or {key} is not uint")
    # Ports are 16-bit fields; wider values wrap as they would on assignment.
    return value & _UINT16_MASK


def _parse_lidar_net_info(obj: Mapping[str, Any]) -> LidarNetInfo:
    net = obj.get("lidar_net_info")
    if not isinstance(net, dict):
        raise ConfigError("lidar_net_info is missing or is not an object")
    where = "lidar net info"
    return LidarNetInfo(
        cmd_data_port=_port(net, "cmd_data_port", where),
        push_msg_port=_port(net, "push_msg_port", where),
        point_data_port=_port(net, "point_data_port", where),
        imu_data_port=_port(net, "imu_data_port", where),
        log_data_port=_port(net, "log_data_port", where),
    )


def _parse_host_net_info(obj: Any) -> HostNetInfo:
    if not isinstance(obj, dict):
        raise ConfigError("host net info entry is not an object")
    if "host_ip" not in obj and "cmd_data_ip" not in obj:
        raise ConfigError("host net info has neither host_ip nor cmd_data_ip")
    for key in ("host_ip", "cmd_data_ip"):
        if key in obj and not isinstance(obj[key], str):
            raise ConfigError(f"host net info {key} is not a string")

    host_ip = obj.get("host_ip", obj.get("cmd_data_ip", ""))

    multicast_ip = obj.get("multicast_ip", "")
    if not isinstance(multicast_ip, str):
        raise ConfigError("host net info multicast_ip is not a string")

    where = "host net info"
    return HostNetInfo(
        host_ip=host_ip,
        multicast_ip=multicast_ip,
        cmd_data_port=_port(obj, "cmd_data_port", where),
        push_msg_port=_port(obj, "push_msg_port", where),
        point_data_port=_port(obj, "point_data_port", where),
        imu_data_port=_port(obj, "imu_data_port", where),
        log_data_port=_port(obj, "log_data_port", where),
    )


def _parse_type_config(
    section: Mapping[str, Any],
    host_obj: Any,
    device_type: DeviceType,
    lidar_ip: str = "",
) -> LidarConfig:
    lidar_net_info = _parse_lidar_net_info(section)
    lidar_net_info.lidar_ipaddr = lidar_ip
    return LidarConfig(
        device_type=device_type,
        lidar_net_info=lidar_net_info,
        host_net_info=_parse_host_net_info(host_obj),
    )


def _parse_section(section: Mapping[str, Any], device_type: DeviceType, config: SdkConfig) -> None:
    host_info = section.get("host_net_info")
    if isinstance(host_info, list):
        for entry in host_info:
            lidar_ips = entry.get("lidar_ip") if isinstance(entry, dict) else None
            if not isinstance(lidar_ips, list):
                config.lidars.append(_parse_type_config(section, entry, device_type))
                continue
            for lidar_ip in lidar_ips:
                if not isinstance(lidar_ip, str):
                    raise ConfigError("lidar_ip entry is not a string")
                config.custom_lidars.append(
                    _parse_type_config(section, entry, device_type, lidar_ip)
                )
    elif isinstance(host_info, dict):
        config.lidars.append(_parse_type_config(section, host_info, device_type))
    else:
        raise ConfigError("host_net_info is missing or is neither an object nor an array")


def _parse_framework(doc: Mapping[str, Any]) -> FrameworkConfig:
    if "master_sdk" not in doc:
        logger.info("master sdk by default")
        return FrameworkConfig(master_sdk=True)
    master = doc["master_sdk"]
    if not isinstance(master, bool):
        raise ConfigError("master_sdk is not a bool")
    logger.info("set sdk to %s sdk", "master" if master else "slave")
    return FrameworkConfig(master_sdk=master)


def _parse_logger(doc: Mapping[str, Any]) -> LoggerConfig:
    if "lidar_log_enable" not in doc:
        cfg = LoggerConfig(lidar_log_enable=False, lidar_log_cache_size=0, lidar_log_path="./")
        path = doc.get("lidar_log_path")
        if isinstance(path, str):
            cfg.lidar_log_path = path
        logger.info("lidar logger disabled")
        return cfg

    enable = doc["lidar_log_enable"]
    if not isinstance(enable, bool):
        raise ConfigError("lidar_log_enable is not a bool")
    cache_size = doc.get("lidar_log_cache_size_MB")
    if not _is_uint(cache_size):
        raise ConfigError("lidar_log_cache_size_MB is missing or is not uint")
    path = doc.get("lidar_log_path")
    if not isinstance(path, str):
        raise ConfigError("lidar_log_path is missing or is not a string")
    return LoggerConfig(lidar_log_enable=enable, lidar_log_cache_size=cache_size, lidar_log_path=path)


def parse_config_document(doc: Any) -> SdkConfig:
    """Build an :class:`SdkConfig` from an already decoded JSON document."""
    if not isinstance(doc, dict):
        raise ConfigError("configuration document is not an object")
    config = SdkConfig(framework=_parse_framework(doc), logger=_parse_logger(doc))
    for name in ("HAP", "MID360"):
        section = doc.get(name)
        if isinstance(section, dict):
            _parse_section(section, DeviceType[name], config)
    return config


def parse_config(path: Union[str, "PathLike[str]"]) -> SdkConfig:
    """Read and parse the JSON configuration file at ``path``."""
    try:
        with open(path, "rb") as handle:
            doc = json.load(handle)
    except OSError as exc:
        raise ConfigError(f"can not open config file {path}: {exc}") from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"config file {path} is not valid JSON: {exc}") from exc
    return parse_config_document(doc)