"""TFTP packet structures and their wire encoding."""

from __future__ import annotations

import enum
import re
import struct
from dataclasses import dataclass, field
from typing import Union

DATA_HEADER_SIZE = 4
DEFAULT_PORT = 69
DEFAULT_BLOCK_SIZE = 512
DEFAULT_TIMEOUT = 5
MODE_OCTET = "octet"
MODE_NETASCII = "netascii"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INT_PREFIX = re.compile(rb"[ \t\n\v\f\r]*([+-]?[0-9]+)")


class Opcode(enum.IntEnum):
    """Packet type carried in the first two bytes."""

    RRQ = 1
    WRQ = 2
    DATA = 3
    ACK = 4
    ERROR = 5
    OACK = 6


class ErrorCode(enum.IntEnum):
    """Error codes carried by ERROR packets."""

    NOT_DEFINED = 0
    FILE_NOT_FOUND = 1
    ACCESS_VIOLATION = 2
    DISK_FULL = 3
    ILLEGAL_OPERATION = 4
    UNKNOWN_TID = 5
    FILE_EXISTS = 6
    NO_USER = 7
    OPTIONS_FAILED = 8


class OptionName(str, enum.Enum):
    """Supported transfer options."""

    BLKSIZE = "blksize"
    TSIZE = "tsize"
    TIMEOUT = "timeout"


class CheckResult(enum.Enum):
    """Outcome of checking a DATA or ACK packet against the expected block."""

    OK = "ok"
    DUPLICATE = "duplicate"


class TftpError(Exception):
    """A protocol error with the TFTP error code to report to the peer."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _as_opcode(value: int) -> Union[Opcode, int]:
    try:
        return Opcode(value)
    except ValueError:
        return value


def _pack_u16(value: int) -> bytes:
    return struct.pack("!H", value & 0xFFFF)


def _read_u16(data: bytes, pos: int) -> int:
    chunk = data[pos:pos + 2].ljust(2, b"\x00")
    return struct.unpack("!H", chunk)[0]


def _read_cstring(data: bytes, pos: int) -> tuple[bytes, int]:
    """Read up to the next NUL (or the end); return the text and the position after it."""
    end = data.find(b"\x00", pos)
    if end < 0:
        return data[pos:], len(data) + 1
    return data[pos:end], end + 1


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _raw(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _parse_int(raw: bytes) -> int | None:
    match = _INT_PREFIX.match(raw)
    if match is None:
        return None
    value = int(match.group(1))
    if not _INT32_MIN <= value <= _INT32_MAX:
        return None
    return value & 0xFFFFFFFF


def read_opcode(data: bytes) -> Union[Opcode, int]:
    """Return the opcode of a raw packet (missing bytes read as zero)."""
    return _as_opcode(_read_u16(data, 0))


@dataclass
class Options:
    """Transfer options and whether each one is in use."""

    blocksize: int = DEFAULT_BLOCK_SIZE
    transfer_size: int = 0
    timeout: int = DEFAULT_TIMEOUT
    use_blocksize: bool = False
    use_transfer_size: bool = False
    use_timeout: bool = False
    order: list[OptionName] = field(default_factory=list)

    def encode(self) -> bytes:
        """Serialise the enabled options as NUL-terminated name/value pairs."""
        parts = []
        if self.use_transfer_size:
            parts.append((OptionName.TSIZE, self.transfer_size))
        if self.use_timeout:
            parts.append((OptionName.TIMEOUT, self.timeout))
        if self.use_blocksize:
            parts.append((OptionName.BLKSIZE, self.blocksize))
        return b"".join(
            name.value.encode("ascii") + b"\x00" + str(value).encode("ascii") + b"\x00"
            for name, value in parts
        )

    @classmethod
    def decode(cls, data: bytes) -> "Options":
        """Parse name/value pairs; unknown names and non-numeric values are skipped."""
        options = cls()
        pos = 0
        while pos < len(data) and data[pos] != 0:
            name_raw, pos = _read_cstring(data, pos)
            value_raw, pos = _read_cstring(data, pos)
            value = _parse_int(value_raw)
            if value is None:
                continue
            name = name_raw.lower()
            if name == b"blksize":
                options.use_blocksize = True
                options.blocksize = value
                options._record(OptionName.BLKSIZE)
            elif name == b"timeout":
                options.use_timeout = True
                options.timeout = value
                options._record(OptionName.TIMEOUT)
            elif name == b"tsize":
                options.use_transfer_size = True
                options.transfer_size = value
                options._record(OptionName.TSIZE)
        return options

    def _record(self, name: OptionName) -> None:
        if name not in self.order:
            self.order.append(name)

    def any_requested(self) -> bool:
        """True when at least one option is enabled."""
        return self.use_blocksize or self.use_timeout or self.use_transfer_size


@dataclass
class RequestPacket:
    """Read (RRQ) or write (WRQ) request."""

    opcode: Union[Opcode, int]
    filename: str
    mode: str = MODE_OCTET
    options: Options = field(default_factory=Options)

    def encode(self) -> bytes:
        return (
            _pack_u16(self.opcode)
            + _raw(self.filename)
            + b"\x00"
            + _raw(self.mode)
            + b"\x00"
            + self.options.encode()
        )

    @classmethod
    def decode(cls, data: bytes) -> "RequestPacket":
        opcode = read_opcode(data)
        filename, pos = _read_cstring(data, 2)
        mode, pos = _read_cstring(data, pos)
        options = Options.decode(data[pos:])
        return cls(opcode, _text(filename), _text(mode.lower()), options)

    def validate(self) -> None:
        """Raise TftpError if the opcode or the mode is not acceptable."""
        if self.opcode not in (Opcode.RRQ, Opcode.WRQ):
            raise TftpError(ErrorCode.ILLEGAL_OPERATION, "Expected RRQ or WRQ packet")
        if self.mode not in (MODE_OCTET, MODE_NETASCII):
            raise TftpError(ErrorCode.ILLEGAL_OPERATION, "Expected 'octed' or 'netascii'")


@dataclass
class DataPacket:
    """A numbered block of file data."""

    block: int
    data: bytes = b""
    opcode: Union[Opcode, int] = Opcode.DATA

    def encode(self) -> bytes:
        return _pack_u16(self.opcode) + _pack_u16(self.block) + bytes(self.data)

    @classmethod
    def decode(cls, data: bytes) -> "DataPacket":
        return cls(_read_u16(data, 2), bytes(data[DATA_HEADER_SIZE:]), read_opcode(data))

    def check(self, expected_block: int) -> CheckResult:
        """Compare with the expected block; raise TftpError on a protocol violation."""
        expected = expected_block & 0xFFFF
        if self.opcode != Opcode.DATA:
            raise TftpError(ErrorCode.ILLEGAL_OPERATION, "Expected DATA packet")
        if self.block < 1:
            raise TftpError(
                ErrorCode.ILLEGAL_OPERATION,
                "DATA packet block number has to be greater than 0 ",
            )
        if self.block > expected:
            raise TftpError(
                ErrorCode.ILLEGAL_OPERATION,
                "DATA packet block number cannot be higher than the expected block number",
            )
        if self.block < expected:
            return CheckResult.DUPLICATE
        return CheckResult.OK


@dataclass
class AckPacket:
    """Acknowledgement of a data block."""

    block: int
    opcode: Union[Opcode, int] = Opcode.ACK

    def encode(self) -> bytes:
        return _pack_u16(self.opcode) + _pack_u16(self.block)

    @classmethod
    def decode(cls, data: bytes) -> "AckPacket":
        return cls(_read_u16(data, 2), read_opcode(data))

    def check(self, expected_block: int) -> CheckResult:
        """Compare with the expected block; raise TftpError on a protocol violation."""
        expected = expected_block & 0xFFFF
        if self.opcode != Opcode.ACK:
            raise TftpError(ErrorCode.ILLEGAL_OPERATION, "Expected ACK packet")
        if self.block > expected:
            raise TftpError(
                ErrorCode.ILLEGAL_OPERATION,
                "Inconsistent acknowledgement - Expected block number is bigger than recieved.",
            )
        if self.block < expected:
            return CheckResult.DUPLICATE
        return CheckResult.OK


@dataclass
class ErrorPacket:
    """Error report with a code and a message."""

    code: int
    message: str = ""
    opcode: Union[Opcode, int] = Opcode.ERROR

    def encode(self) -> bytes:
        return _pack_u16(self.opcode) + _pack_u16(self.code) + _raw(self.message) + b"\x00"

    @classmethod
    def decode(cls, data: bytes) -> "ErrorPacket":
        message, _ = _read_cstring(data, 4)
        return cls(_read_u16(data, 2), _text(message), read_opcode(data))


@dataclass
class OackPacket:
    """Option acknowledgement."""

    options: Options = field(default_factory=Options)
    opcode: Union[Opcode, int] = Opcode.OACK

    def encode(self) -> bytes:
        return _pack_u16(self.opcode) + self.options.encode()

    @classmethod
    def decode(cls, data: bytes) -> "OackPacket":
        return cls(Options.decode(data[2:]), read_opcode(data))


Packet = Union[RequestPacket, DataPacket, AckPacket, ErrorPacket, OackPacket]


def parse_packet(data: bytes) -> Packet:
    """Decode a raw packet into the structure matching its opcode."""
    opcode = read_opcode(data)
    if opcode in (Opcode.RRQ, Opcode.WRQ):
        return RequestPacket.decode(data)
    if opcode == Opcode.DATA:
        return DataPacket.decode(data)
    if opcode == Opcode.ACK:
        return AckPacket.decode(data)
    if opcode == Opcode.ERROR:
        return ErrorPacket.decode(data)
    if opcode == Opcode.OACK:
        return OackPacket.decode(data)
    raise TftpError(ErrorCode.ILLEGAL_OPERATION, f"Unknown opcode {int(opcode)}")