"""Reading and checking of encrypted lidar firmware package files."""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, ClassVar, Optional, Union

logger = logging.getLogger(__name__)

MD5_SIGNATURE_LENGTH = 16
ENL_FILE_VERSION_V2 = 0x02000000
ENL_FILE_VERSION_V3 = 0x03000000

GENERAL_TRY_COUNT_LIMIT = 10
GET_PROCESS_TRY_COUNT_LIMIT = 30
GET_PROGRESS_TRY_COUNT_LIMIT = 10


class FirmwareError(Exception):
    """Raised when a firmware file can not be opened or is malformed."""


class FirmwareType(IntEnum):
    """Kind of image held by a firmware package."""

    MULTI_APP = 0
    APP = 1
    LOADER = 2
    UNKNOWN = 3


class RequestUpgradeReturnCode(IntEnum):
    """Return codes of an upgrade request."""

    EVERYTHING_IS_OK = 0
    FIRMWARE_OUT_OF_LENGTH = 1
    SYSTEM_IS_NOT_READY = 2
    FIRMWARE_TYPE_MISMATCH = 3
    UPGRADE_STATE_MISMATCH = 4


def crc16_mcrf4xx(data: bytes) -> int:
    """CRC-16/MCRF4XX of ``data``."""
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0x8408 if crc & 1 else crc >> 1
    return crc


_HEADER_STRUCT = struct.Struct("<IIIBBB2sBH128s128sQH")


@dataclass
class FirmwareHeader:
    """Fixed-size header at the start of a firmware package."""

    SIZE: ClassVar[int] = _HEADER_STRUCT.size

    file_version: int = 0
    firmware_version: int = 0
    firmware_length: int = 0
    firmware_type: int = 0
    device_type: int = 0
    encrypt_type: int = 0
    rsvd: bytes = b"\x00\x00"
    checksum_type: int = 0
    checksum_length: int = 0
    checksum: bytes = bytes(128)
    hw_whitelist: bytes = bytes(128)
    modify_time: int = 0
    header_checksum: int = 0

    @classmethod
    def parse(cls, data: bytes) -> "FirmwareHeader":
        """Decode a header from the first bytes of ``data``."""
        if len(data) < cls.SIZE:
            raise FirmwareError("firmware header is truncated")
        return cls(*_HEADER_STRUCT.unpack_from(data))

    def pack(self) -> bytes:
        """Encode the header, with the stored header checksum."""
        return _HEADER_STRUCT.pack(
            self.file_version,
            self.firmware_version,
            self.firmware_length,
            self.firmware_type,
            self.device_type,
            self.encrypt_type,
            self.rsvd,
            self.checksum_type,
            self.checksum_length,
            self.checksum,
            self.hw_whitelist,
            self.modify_time,
            self.header_checksum,
        )

    def computed_checksum(self) -> int:
        """CRC over every header byte before the header checksum field."""
        return crc16_mcrf4xx(self.pack()[:-2])


class Firmware:
    """A firmware package: header, image data and signature tail."""

    def __init__(self) -> None:
        self.header = FirmwareHeader()
        self.data = b""
        self.tail = bytes(MD5_SIGNATURE_LENGTH)
        self.file_size = 0
        self._file: Optional[BinaryIO] = None

    def __enter__(self) -> "Firmware":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    def min_file_size() -> int:
        return FirmwareHeader.SIZE + MD5_SIGNATURE_LENGTH + 1

    def open(self, path: Union[str, "os.PathLike[str]", None]) -> None:
        """Open the package at ``path`` and read its header, data and tail."""
        if path is None:
            raise FirmwareError("no firmware path given")
        self.close()
        try:
            self._file = open(path, "rb")
        except OSError as exc:
            raise FirmwareError(f"open {path} firmware file fail: {exc}") from exc
        self.file_size = os.fstat(self._file.fileno()).st_size
        if self.file_size < self.min_file_size():
            raise FirmwareError("firmware file size is too small")

        header = FirmwareHeader.parse(self._file.read(FirmwareHeader.SIZE))
        logger.info("this firmware is used for device %d", header.device_type)
        crc = header.computed_checksum()
        if crc != header.header_checksum:
            raise FirmwareError(
                f"header checksum [{crc:04x} {header.header_checksum:04x}] error"
            )
        self.header = header
        self.data = self._file.read(header.firmware_length)
        self.tail = self._file.read(MD5_SIGNATURE_LENGTH)
        if len(self.data) == header.firmware_length and len(self.tail) == MD5_SIGNATURE_LENGTH:
            logger.info("all firmware data have been read successfully")
        else:
            logger.warning("read firmware fail, file is shorter than its header says")

    def close(self) -> None:
        """Close the package file; data already read stays available."""
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def closed(self) -> bool:
        return self._file is None

    def package_version(self) -> int:
        """Version of the package file format."""
        return self.header.file_version