"""
Transmission-phase command exchange.

Requests are framed, sent, and answered synchronously: one request is
written, its simple reply header is read and checked, and for reads the
payload follows. The reply's error field is checked before any payload
byte is consumed; a server error reply carries no payload.

Request/reply correlation goes through PendingCommands, a handle table
limited to a single in-flight command. Handle 0 is the only handle ever
issued while that limit stays at one.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from .errors import ErrorCodes, ProtocolMismatch, ServerCommandError, ValidationError
from .nbd_protocol import (
    DEFAULT_HANDLE,
    MAX_UINT32,
    MAX_UINT64,
    NBD_REPLY_MAGIC,
    Request,
    SimpleReply,
    errno_name,
)
from .tcp_connection import NBDConnection

logger = logging.getLogger(__name__)


def validate_read_range(offset: int, length: int) -> None:
    """
    Check a read range before anything is sent.

    Raises:
        ValidationError: If offset is not a uint64 or length not a uint32
    """
    if isinstance(offset, bool) or not isinstance(offset, int) or not 0 <= offset <= MAX_UINT64:
        raise ValidationError(f"Offset must be an unsigned 64-bit integer, got {offset!r}",
                              field_name="offset", error_code=ErrorCodes.OUT_OF_RANGE)
    if isinstance(length, bool) or not isinstance(length, int) or not 0 <= length <= MAX_UINT32:
        raise ValidationError(f"Length must be an unsigned 32-bit integer, got {length!r}",
                              field_name="length", error_code=ErrorCodes.OUT_OF_RANGE)


@dataclass
class PendingCommand:
    """A request awaiting its reply."""
    handle: int
    request: Request
    sent_at: float = field(default_factory=time.monotonic)


class PendingCommands:
    """
    Handle table mapping in-flight handles to their requests.

    Raises RuntimeError if more than max_in_flight commands are registered;
    the session never pipelines, so hitting the limit is a programming error.
    """

    def __init__(self, max_in_flight: int = 1):
        self.max_in_flight = max_in_flight
        self._pending: Dict[int, PendingCommand] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def allocate(self) -> int:
        """Return a free handle."""
        if len(self._pending) >= self.max_in_flight:
            raise RuntimeError(
                f"{len(self._pending)} command(s) already in flight "
                f"(limit {self.max_in_flight})"
            )
        handle = DEFAULT_HANDLE
        while handle in self._pending:
            handle += 1
        return handle

    def register(self, request: Request) -> PendingCommand:
        if request.handle in self._pending or len(self._pending) >= self.max_in_flight:
            raise RuntimeError(f"Handle {request.handle} cannot be registered")
        pending = PendingCommand(request.handle, request)
        self._pending[request.handle] = pending
        return pending

    def complete(self, handle: int) -> Optional[PendingCommand]:
        return self._pending.pop(handle, None)

    def is_pending(self, handle: int) -> bool:
        return handle in self._pending

    def clear(self) -> None:
        self._pending.clear()


class CommandExchange:
    """
    Sends transmission-phase commands over a negotiated connection.

    Example:
        >>> exchange = CommandExchange(connection)
        >>> data = exchange.read(offset=0, length=4096)
        >>> exchange.disconnect()
    """

    def __init__(self, connection: NBDConnection):
        self.connection = connection
        self.pending = PendingCommands(max_in_flight=1)

    def read(self, offset: int, length: int) -> bytes:
        """
        Read length bytes at offset.

        Returns:
            Exactly length bytes, in wire order

        Raises:
            ValidationError: If offset or length is out of range
            ServerCommandError: If the reply carries a non-zero error
            ProtocolMismatch: Wrong reply magic or handle
            TransportError: On I/O failure or short payload
        """
        step = "read"
        validate_read_range(offset, length)

        request = Request.read(offset, length, handle=self.pending.allocate())
        self.pending.register(request)
        try:
            self.connection.send_bytes(request.to_bytes(), step=step)
            logger.debug(f"READ offset={offset} length={length} handle={request.handle}")

            raw = self.connection.receive_all_bytes(SimpleReply.STRUCT.size, step=step)
            reply = SimpleReply.from_bytes(raw)
            self._check_reply(reply, request, step)

            if reply.error != 0:
                name = errno_name(reply.error)
                raise ServerCommandError(
                    f"Server failed READ at offset {offset} (length {length}): {name}",
                    errno=reply.error,
                    errno_name=name,
                    context={'step': step, 'offset': offset, 'length': length}
                )

            return self.connection.receive_all_bytes(length, step=step)
        finally:
            self.pending.complete(request.handle)

    def disconnect(self) -> None:
        """
        Send NBD_CMD_DISC. The server sends no reply.

        Raises:
            TransportError: If the request cannot be written
        """
        request = Request.disconnect()
        self.connection.send_bytes(request.to_bytes(), step="disconnect")
        logger.debug("Sent disconnect request")

    def _check_reply(self, reply: SimpleReply, request: Request, step: str) -> None:
        if reply.magic != NBD_REPLY_MAGIC:
            raise ProtocolMismatch(
                f"Reply had wrong magic 0x{reply.magic:08x}",
                step=step, field="reply_magic",
                expected=NBD_REPLY_MAGIC, actual=reply.magic
            )
        if not self.pending.is_pending(reply.handle) or reply.handle != request.handle:
            raise ProtocolMismatch(
                f"Reply for unknown handle {reply.handle}",
                step=step, field="handle",
                expected=request.handle, actual=reply.handle
            )

