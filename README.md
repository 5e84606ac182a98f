# lidarkit

Host-side building blocks for working with networked lidars: reading and
checking the configuration file, storing log files that a lidar pushes, and
driving a firmware upgrade.

## Modules

- `lidarkit.config`: reads the JSON configuration file. `parse_config(path)`
  (or `parse_config_document(doc)` for an already decoded document) returns
  an `SdkConfig` with `lidars` (per-type entries), `custom_lidars` (entries
  bound to a lidar address from a `lidar_ip` list), `logger`
  (`LoggerConfig`) and `framework` (`FrameworkConfig`, `master_sdk`
  defaulting to `True`). The `HAP` and `MID360` sections are read; their
  `host_net_info` may be an object or an array. Invalid documents and
  unreadable files raise `ConfigError`.
- `lidarkit.params_check`: `check_params(lidars, custom_lidars)` rejects
  empty input, duplicate lidar addresses, custom entries without an address,
  and multicast addresses outside 224.0.0.1–239.255.255.255, raising
  `ParamsError`. It corrects Mid-360 lidar ports to their fixed values in
  place (`fix_mid360_ports` returns the names of the fields it changed).
  `ip_to_bytes` turns a dotted address into four bytes.
- `lidarkit.file_manager`: directory helpers for log storage:
  `dir_total_size`, `collect_file_names` (visible files as
  `(time key, name)` pairs, oldest first), `change_hidden_files` and
  `change_current_file_name` (drop the leading dot of in-progress files),
  `delete_hidden_files`, `make_directory` and `directory_exists`.
- `lidarkit.logger_handler`: `LoggerHandler` queues `LogFilePush` bags of
  one lidar and writes them in a background thread under
  `<root>/type_<log type>/`. Files are written as hidden `.name.dat` files
  and made visible when they are closed.
- `lidarkit.logger_manager`: `LoggerManager(sender)` applies a
  `LoggerConfig` (`init`), creates `lidar_log/` under the configured path,
  splits the cache budget between realtime and exception logs
  (`cache_sizes`), starts and stops device logging, dispatches pushed bags
  to one `LoggerHandler` per device (`handle_push`), and removes the oldest
  files when a log type exceeds its limit (`cycle_delete_once`, also run by
  a background thread). The sender is called as
  `sender(handle, command, fields, callback)`.
- `lidarkit.firmware`: `Firmware.open(path)` reads a firmware package,
  checks its header with CRC-16/MCRF4XX (`crc16_mcrf4xx`) and exposes
  `header` (`FirmwareHeader`), `data` and `tail`. Problems raise
  `FirmwareError`.
- `lidarkit.upgrader`: `LidarUpgrader(firmware, handle, commands)` is the
  upgrade state machine: request upgrade, transfer the firmware in 1024-byte
  chunks, confirm the transfer, poll progress, reboot. Failed replies are
  retried up to a limit. An observer set with `add_progress_observer` is
  called as `observer(handle, event, progress)`.
- `lidarkit.upgrade_manager`: `UpgradeManager(commands)` loads a package
  with `set_firmware_path`, runs one `LidarUpgrader` per handle with
  `upgrade_lidars(handles)` and returns `{handle: succeeded}`.

## Example

```python
from lidarkit.config import parse_config
from lidarkit.params_check import check_params

config = parse_config("mid360_config.json")
check_params(config.lidars, config.custom_lidars)
for lidar in config.custom_lidars:
    print(lidar.lidar_net_info.lidar_ipaddr, lidar.host_net_info.host_ip)
```

The `commands` object given to `LidarUpgrader` and `UpgradeManager` provides
`start_upgrade(handle, request, callback)`,
`xfer_firmware(handle, request, callback)`,
`complete_xfer_firmware(handle, request, callback)`,
`get_upgrade_progress(handle, callback)` and
`request_reboot(handle, callback)`; replies are delivered by calling
`callback(ok, response)`, where `response` is a mapping that may hold
`ret_code` and, for progress, `progress`.

## What this package does not do

There is no network layer: no sockets, no device discovery, no packet
encoding or decoding, and no point cloud or IMU data handling. The logger
and upgrade classes send everything through the sender or command object
supplied by the caller, so a transport has to be provided to talk to a real
device. There is no command-line program.

## Installation

```
pip install .
```

## Tests

```
pip install .[test]
pytest
```