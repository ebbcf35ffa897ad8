"""
NBD wire protocol encoding and decoding.

This module defines every fixed-layout structure exchanged with an NBD
server during fixed new-style negotiation and the transmission phase.
All integers are big-endian (network byte order).

Negotiation Structures:
    Opening header (18 bytes, server -> client):
        0-7     uint64  NBDMAGIC          0x4e42444d41474943 ("NBDMAGIC")
        8-15    uint64  IHAVEOPT          0x49484156454F5054 ("IHAVEOPT")
        16-17   uint16  handshake flags   bit 0 = FIXED_NEWSTYLE

    Client flags (4 bytes, client -> server):
        0-3     uint32  client flags      bit 0 = C_FIXED_NEWSTYLE

    Option request (16 bytes + payload, client -> server):
        0-7     uint64  IHAVEOPT
        8-11    uint32  option id
        12-15   uint32  payload length

    Option reply (20 bytes + payload, server -> client):
        0-7     uint64  reply magic       0x3e889045565a9
        8-11    uint32  echoed option id
        12-15   uint32  reply type        bit 31 = error
        16-19   uint32  payload length

    Export details (10 bytes + 124 reserved, reply to EXPORT_NAME):
        0-7     uint64  export size
        8-9     uint16  transmission flags

Transmission Structures:
    Request (28 bytes, client -> server):
        0-3     uint32  request magic     0x25609513
        4-5     uint16  command flags
        6-7     uint16  command type
        8-15    uint64  handle
        16-23   uint64  offset
        24-27   uint32  length

    Simple reply (16 bytes + payload for reads, server -> client):
        0-3     uint32  reply magic       0x67446698
        4-7     uint32  error
        8-15    uint64  handle

Decoders consume exactly the declared width and never check magic values;
the negotiation engines compare them so the failing step can be reported.
"""

import enum
import struct
from dataclasses import dataclass
from typing import Union

from .errors import ErrorCodes, ProtocolMismatch, ValidationError


# Magic numbers
NBD_MAGIC = 0x4E42444D41474943          # "NBDMAGIC"
NBD_OPTS_MAGIC = 0x49484156454F5054     # "IHAVEOPT"
NBD_CLISERV_MAGIC = 0x00420281861253    # old-style negotiation, not supported
NBD_REP_MAGIC = 0x3E889045565A9
NBD_REQUEST_MAGIC = 0x25609513
NBD_REPLY_MAGIC = 0x67446698
NBD_STRUCTURED_REPLY_MAGIC = 0x668E33EF

NBD_DEFAULT_PORT = 10809

# Reserved zero padding following the export details. Only the
# NO_ZEROES negotiation variant shortens it, and that variant is never
# requested by this client.
EXPORT_RESERVED_SIZE = 124

# The client keeps a single command in flight, so one handle suffices.
DEFAULT_HANDLE = 0

MAX_UINT16 = 0xFFFF
MAX_UINT32 = 0xFFFFFFFF
MAX_UINT64 = 0xFFFFFFFFFFFFFFFF


class Command(enum.IntEnum):
    """Transmission-phase command types."""
    READ = 0
    WRITE = 1
    DISC = 2
    FLUSH = 3
    TRIM = 4
    WRITE_ZEROES = 5
    CLOSE = 7


class CommandFlag(enum.IntFlag):
    """Per-request command flags."""
    FUA = 1 << 0
    NO_HOLE = 1 << 1
    DF = 1 << 2


class TransmissionFlag(enum.IntFlag):
    """Export flags returned with the export details."""
    HAS_FLAGS = 1 << 0
    READ_ONLY = 1 << 1
    SEND_FLUSH = 1 << 2
    SEND_FUA = 1 << 3
    ROTATIONAL = 1 << 4
    SEND_TRIM = 1 << 5
    SEND_WRITE_ZEROES = 1 << 6
    SEND_DF = 1 << 7
    SEND_CLOSE = 1 << 8


class HandshakeFlag(enum.IntFlag):
    """Server handshake flags from the opening header."""
    FIXED_NEWSTYLE = 1 << 0
    NO_ZEROES = 1 << 1


class ClientFlag(enum.IntFlag):
    """Client flags sent in reply to the opening header."""
    C_FIXED_NEWSTYLE = 1 << 0
    C_NO_ZEROES = 1 << 1


class Option(enum.IntEnum):
    """Negotiation options."""
    EXPORT_NAME = 1
    ABORT = 2
    LIST = 3
    PEEK_EXPORT = 4
    STARTTLS = 5
    INFO = 6
    GO = 7
    STRUCTURED_REPLY = 8


NBD_REP_FLAG_ERROR = 1 << 31


class OptionReplyType(enum.IntEnum):
    """Option reply types. Error types have bit 31 set."""
    ACK = 1
    SERVER = 2
    INFO = 3
    ERR_UNSUP = 1 | NBD_REP_FLAG_ERROR
    ERR_POLICY = 2 | NBD_REP_FLAG_ERROR
    ERR_INVALID = 3 | NBD_REP_FLAG_ERROR
    ERR_PLATFORM = 4 | NBD_REP_FLAG_ERROR
    ERR_TLS_REQD = 5 | NBD_REP_FLAG_ERROR
    ERR_UNKNOWN = 6 | NBD_REP_FLAG_ERROR
    ERR_SHUTDOWN = 7 | NBD_REP_FLAG_ERROR
    ERR_BLOCK_SIZE_REQD = 8 | NBD_REP_FLAG_ERROR


class ServerErrno(enum.IntEnum):
    """Error numbers a server may place in a command reply."""
    EPERM = 1
    EIO = 5
    ENOMEM = 12
    EINVAL = 22
    ENOSPC = 28
    EOVERFLOW = 75
    ENOTSUP = 95
    ESHUTDOWN = 108


def is_error_reply(reply_type: int) -> bool:
    """True if an option reply type has the error bit set."""
    return bool(reply_type & NBD_REP_FLAG_ERROR)


def reply_type_name(reply_type: int) -> str:
    """Symbolic name for an option reply type, or its hex value."""
    try:
        return f"NBD_REP_{OptionReplyType(reply_type).name}"
    except ValueError:
        return f"0x{reply_type:08x}"


def errno_name(errno: int) -> str:
    """Symbolic name for a command reply error number."""
    try:
        return ServerErrno(errno).name
    except ValueError:
        return f"errno {errno}"


def _check_size(data: bytes, expected: int, what: str) -> None:
    if len(data) != expected:
        raise ProtocolMismatch(
            f"{what} must be exactly {expected} bytes, got {len(data)}",
            field=what, expected=expected, actual=len(data)
        )


def _check_range(value: int, maximum: int, name: str) -> None:
    if not isinstance(value, int) or value < 0 or value > maximum:
        raise ValidationError(
            f"{name} must be an integer in 0..{maximum}, got {value!r}",
            field_name=name,
            error_code=ErrorCodes.OUT_OF_RANGE
        )


@dataclass(frozen=True)
class NewStyleHeader:
    """Opening header sent by the server."""

    STRUCT = struct.Struct(">QQH")

    magic: int
    opts_magic: int
    handshake_flags: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "NewStyleHeader":
        _check_size(data, cls.STRUCT.size, "opening header")
        return cls(*cls.STRUCT.unpack(data))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.magic, self.opts_magic, self.handshake_flags)


MAGIC_STRUCT = struct.Struct(">Q")
HANDSHAKE_FLAGS_STRUCT = struct.Struct(">H")
CLIENT_FLAGS_STRUCT = struct.Struct(">I")


def encode_client_flags(flags: int) -> bytes:
    """Encode the 4-byte client flags word."""
    _check_range(int(flags), MAX_UINT32, "client flags")
    return CLIENT_FLAGS_STRUCT.pack(int(flags))


def decode_magic(data: bytes, what: str = "magic") -> int:
    """Decode one 8-byte magic field of the opening header."""
    _check_size(data, MAGIC_STRUCT.size, what)
    return MAGIC_STRUCT.unpack(data)[0]


def decode_handshake_flags(data: bytes) -> int:
    _check_size(data, HANDSHAKE_FLAGS_STRUCT.size, "handshake flags")
    return HANDSHAKE_FLAGS_STRUCT.unpack(data)[0]


def decode_client_flags(data: bytes) -> int:
    _check_size(data, CLIENT_FLAGS_STRUCT.size, "client flags")
    return CLIENT_FLAGS_STRUCT.unpack(data)[0]


@dataclass(frozen=True)
class OptionRequest:
    """Option request envelope plus its payload."""

    STRUCT = struct.Struct(">QII")

    option: int
    payload: bytes = b""
    magic: int = NBD_OPTS_MAGIC

    def to_bytes(self) -> bytes:
        _check_range(int(self.option), MAX_UINT32, "option id")
        _check_range(len(self.payload), MAX_UINT32, "option length")
        header = self.STRUCT.pack(self.magic, int(self.option), len(self.payload))
        return header + self.payload

    @classmethod
    def decode_header(cls, data: bytes) -> tuple:
        """Decode (magic, option, length) from a 16-byte envelope."""
        _check_size(data, cls.STRUCT.size, "option request")
        return cls.STRUCT.unpack(data)


@dataclass(frozen=True)
class OptionReplyHeader:
    """Option reply envelope; the payload is read separately."""

    STRUCT = struct.Struct(">QIII")

    magic: int
    option: int
    reply_type: int
    length: int

    @property
    def is_error(self) -> bool:
        return is_error_reply(self.reply_type)

    @classmethod
    def from_bytes(cls, data: bytes) -> "OptionReplyHeader":
        _check_size(data, cls.STRUCT.size, "option reply")
        return cls(*cls.STRUCT.unpack(data))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.magic, self.option, self.reply_type, self.length)


@dataclass(frozen=True)
class ExportDetails:
    """Size and transmission flags returned for NBD_OPT_EXPORT_NAME."""

    STRUCT = struct.Struct(">QH")

    size: int
    flags: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "ExportDetails":
        _check_size(data, cls.STRUCT.size, "export details")
        return cls(*cls.STRUCT.unpack(data))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.size, self.flags)


@dataclass(frozen=True)
class Request:
    """Transmission-phase command request."""

    STRUCT = struct.Struct(">IHHQQI")

    command: int
    offset: int = 0
    length: int = 0
    handle: int = DEFAULT_HANDLE
    flags: int = 0
    magic: int = NBD_REQUEST_MAGIC

    def to_bytes(self) -> bytes:
        _check_range(int(self.flags), MAX_UINT16, "command flags")
        _check_range(int(self.command), MAX_UINT16, "command type")
        _check_range(self.handle, MAX_UINT64, "handle")
        _check_range(self.offset, MAX_UINT64, "offset")
        _check_range(self.length, MAX_UINT32, "length")
        return self.STRUCT.pack(
            self.magic,
            int(self.flags),
            int(self.command),
            self.handle,
            self.offset,
            self.length,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Request":
        _check_size(data, cls.STRUCT.size, "request")
        magic, flags, command, handle, offset, length = cls.STRUCT.unpack(data)
        return cls(
            command=command,
            offset=offset,
            length=length,
            handle=handle,
            flags=flags,
            magic=magic,
        )

    @classmethod
    def read(cls, offset: int, length: int, handle: int = DEFAULT_HANDLE) -> "Request":
        return cls(command=Command.READ, offset=offset, length=length, handle=handle)

    @classmethod
    def disconnect(cls) -> "Request":
        return cls(command=Command.DISC)


@dataclass(frozen=True)
class SimpleReply:
    """Transmission-phase simple reply header."""

    STRUCT = struct.Struct(">IIQ")

    magic: int
    error: int
    handle: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "SimpleReply":
        _check_size(data, cls.STRUCT.size, "simple reply")
        return cls(*cls.STRUCT.unpack(data))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(self.magic, self.error, self.handle)


def encode_export_name(name: Union[str, bytes]) -> bytes:
    """Export names go on the wire as raw UTF-8 with no terminator."""
    if isinstance(name, str):
        return name.encode("utf-8")
    if isinstance(name, (bytes, bytearray)):
        return bytes(name)
    raise ValidationError(
        f"Export name must be str or bytes, got {type(name).__name__}",
        field_name="export_name"
    )
