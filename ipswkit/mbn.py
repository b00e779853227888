"""Reading and re-signing of .mbn baseband firmware images.

Four container layouts are recognised by their leading magic bytes: two MBN
header versions, a plain ``bin`` image and a 32-bit little-endian ELF file.
All header fields are little-endian 32-bit unsigned integers.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, fields
from typing import ClassVar, Union

__all__ = [
    "MBN_V1_MAGIC",
    "MBN_V2_MAGIC",
    "BIN_MAGIC",
    "ELF_MAGIC",
    "MbnError",
    "MbnHeaderV1",
    "MbnHeaderV2",
    "BinHeader",
    "ElfHeader",
    "MbnFile",
]

_log = logging.getLogger(__name__)

MBN_V1_MAGIC = b"\x0A\x00\x00\x00"
MBN_V2_MAGIC = b"\xD1\xDC\x4B\x84\x34\x10\xD7\x73"
BIN_MAGIC = b"\x7D\x04\x00\xEA\x6C\x69\x48\x55"
# ELF magic, 32 bit, little endian, SYSV
ELF_MAGIC = b"\x7F\x45\x4C\x46\x01\x01\x01\x00"

_U32_MASK = 0xFFFFFFFF


class MbnError(ValueError):
    """An MBN image or signature blob cannot be handled."""


def _unpack_fields(cls, fmt: str, data: bytes):
    layout = struct.Struct(fmt)
    if len(data) < layout.size:
        raise MbnError(
            f"{cls.__name__} needs {layout.size} bytes, got {len(data)}"
        )
    values = layout.unpack_from(data)
    return cls(*values)


@dataclass(frozen=True)
class MbnHeaderV1:
    """Version 1 MBN header (40 bytes)."""

    FORMAT: ClassVar[str] = "<10I"
    SIZE: ClassVar[int] = struct.calcsize("<10I")

    type: int
    unk_0x04: int
    unk_0x08: int
    unk_0x0c: int
    data_size: int
    sig_offset: int
    unk_0x18: int
    unk_0x1c: int
    unk_0x20: int
    unk_0x24: int

    @classmethod
    def unpack(cls, data: bytes) -> "MbnHeaderV1":
        """Read the header from the start of ``data``."""
        return _unpack_fields(cls, cls.FORMAT, data)


@dataclass(frozen=True)
class MbnHeaderV2:
    """Version 2 MBN header (80 bytes)."""

    FORMAT: ClassVar[str] = "<8s18I"
    SIZE: ClassVar[int] = struct.calcsize("<8s18I")

    magic1: bytes
    unk_0x08: int
    unk_0x0c: int
    unk_0x10: int
    header_size: int
    unk_0x18: int
    data_size: int
    sig_offset: int
    unk_0x24: int
    unk_0x28: int
    unk_0x2c: int
    unk_0x30: int
    unk_0x34: int
    unk_0x38: int
    unk_0x3c: int
    unk_0x40: int
    unk_0x44: int
    unk_0x48: int
    unk_0x4c: int

    @classmethod
    def unpack(cls, data: bytes) -> "MbnHeaderV2":
        """Read the header from the start of ``data``."""
        return _unpack_fields(cls, cls.FORMAT, data)


@dataclass(frozen=True)
class BinHeader:
    """Header of a plain ``bin`` image (24 bytes)."""

    FORMAT: ClassVar[str] = "<8s4I"
    SIZE: ClassVar[int] = struct.calcsize("<8s4I")

    magic: bytes
    unk_0x08: int
    version: int
    total_size: int
    unk_0x14: int

    @classmethod
    def unpack(cls, data: bytes) -> "BinHeader":
        """Read the header from the start of ``data``."""
        return _unpack_fields(cls, cls.FORMAT, data)


@dataclass(frozen=True)
class ElfHeader:
    """The leading identification bytes of an ELF file."""

    FORMAT: ClassVar[str] = "<8s"
    SIZE: ClassVar[int] = struct.calcsize("<8s")

    magic: bytes

    @classmethod
    def unpack(cls, data: bytes) -> "ElfHeader":
        """Read the header from the start of ``data``."""
        return _unpack_fields(cls, cls.FORMAT, data)


Header = Union[MbnHeaderV1, MbnHeaderV2, BinHeader, ElfHeader]


@dataclass
class MbnFile:
    """A parsed image with a private, writable copy of its bytes.

    ``version`` is 1 or 2 for MBN headers, 3 for ``bin`` images, 4 for ELF
    files and 0 when the format is not recognised.
    """

    version: int
    header: Header | None
    parsed_size: int
    data: bytearray
    parsed_sig_offset: int = 0

    @property
    def size(self) -> int:
        """Number of bytes in the image."""
        return len(self.data)

    @classmethod
    def parse(cls, data: bytes) -> "MbnFile":
        """Identify the format of ``data`` and read its header.

        An unknown format is not an error; a size that disagrees with the
        header only logs a warning.
        """
        buffer = bytearray(data)
        header: Header | None = None
        version = 0
        parsed_size = 0

        if buffer.startswith(MBN_V2_MAGIC):
            version = 2
            header = MbnHeaderV2.unpack(buffer)
            parsed_size = (header.data_size + MbnHeaderV2.SIZE) & _U32_MASK
        elif buffer.startswith(MBN_V1_MAGIC):
            version = 1
            header = MbnHeaderV1.unpack(buffer)
            parsed_size = (header.data_size + MbnHeaderV1.SIZE) & _U32_MASK
        elif buffer.startswith(BIN_MAGIC):
            version = 3
            header = BinHeader.unpack(buffer)
            parsed_size = header.total_size
        elif buffer.startswith(ELF_MAGIC):
            version = 4
            header = ElfHeader.unpack(buffer)
            # The ELF contents are not parsed; the whole file is taken as is.
            parsed_size = len(buffer)
        else:
            _log.debug("Unknown file format passed to MbnFile.parse")

        if parsed_size != len(buffer):
            _log.warning("size mismatch when parsing MBN file. Continuing anyway.")

        return cls(
            version=version,
            header=header,
            parsed_size=parsed_size,
            data=buffer,
        )

    def update_sig_blob(self, sigdata: bytes) -> None:
        """Overwrite the tail of the image with ``sigdata``."""
        siglen = len(sigdata)
        if siglen > self.size:
            raise MbnError("signature is larger than mbn file size")
        self.parsed_sig_offset = self.size - siglen
        self.data[self.parsed_sig_offset:self.size] = sigdata

    def __bytes__(self) -> bytes:
        return bytes(self.data)


def _field_names(header_cls) -> list[str]:
    return [f.name for f in fields(header_cls)]