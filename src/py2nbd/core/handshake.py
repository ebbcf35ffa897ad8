"""
Fixed new-style handshake.

The server opens with NBDMAGIC, IHAVEOPT and a 16-bit flags word; the
client answers with its own 32-bit flags. Nothing is written until both
magics and the FIXED_NEWSTYLE bit have been verified.
"""

import enum
import logging
from typing import Optional

from .errors import ProtocolMismatch
from .nbd_protocol import (
    NBD_MAGIC,
    NBD_OPTS_MAGIC,
    ClientFlag,
    HandshakeFlag,
    NewStyleHeader,
    decode_handshake_flags,
    decode_magic,
    encode_client_flags,
)
from .tcp_connection import NBDConnection

logger = logging.getLogger(__name__)

STEP = "handshake"


class HandshakeState(enum.Enum):
    START = "start"
    MAGIC_VERIFIED = "magic_verified"
    FLAGS_VERIFIED = "flags_verified"
    CLIENT_FLAGS_SENT = "client_flags_sent"
    HANDSHAKE_DONE = "handshake_done"


class HandshakeEngine:
    """
    Runs the opening exchange of fixed new-style negotiation.

    Example:
        >>> engine = HandshakeEngine(connection)
        >>> server_flags = engine.run()
        >>> engine.state
        <HandshakeState.HANDSHAKE_DONE: 'handshake_done'>
    """

    CLIENT_FLAGS = ClientFlag.C_FIXED_NEWSTYLE

    def __init__(self, connection: NBDConnection):
        self.connection = connection
        self.state = HandshakeState.START
        self.server_flags = 0
        self.header: Optional[NewStyleHeader] = None

    def run(self) -> int:
        """
        Perform the handshake.

        Each field is read and checked before the next one is read, so a
        peer that sends a bad magic and hangs up is still reported as a
        mismatch carrying the value it sent.

        Returns:
            The server's handshake flags

        Raises:
            ProtocolMismatch: If a magic is wrong or FIXED_NEWSTYLE is missing
            TransportError: On I/O failure
        """
        magic = decode_magic(self.connection.receive_all_bytes(8, step=STEP), "magic")
        if magic != NBD_MAGIC:
            raise ProtocolMismatch(
                f"Bad NBD magic 0x{magic:016x}",
                step=STEP, field="magic",
                expected=NBD_MAGIC, actual=magic
            )

        opts_magic = decode_magic(self.connection.receive_all_bytes(8, step=STEP), "opts_magic")
        if opts_magic != NBD_OPTS_MAGIC:
            raise ProtocolMismatch(
                f"Bad options magic 0x{opts_magic:016x}",
                step=STEP, field="opts_magic",
                expected=NBD_OPTS_MAGIC, actual=opts_magic
            )
        self.state = HandshakeState.MAGIC_VERIFIED

        flags = decode_handshake_flags(self.connection.receive_all_bytes(2, step=STEP))
        if not flags & HandshakeFlag.FIXED_NEWSTYLE:
            raise ProtocolMismatch(
                "Server does not offer fixed new-style negotiation",
                step=STEP, field="handshake_flags",
                expected=int(HandshakeFlag.FIXED_NEWSTYLE), actual=flags,
                suggestions=["Old-style and plain new-style servers are not supported"]
            )
        self.header = NewStyleHeader(magic, opts_magic, flags)
        self.server_flags = flags
        self.state = HandshakeState.FLAGS_VERIFIED

        self.connection.send_bytes(encode_client_flags(self.CLIENT_FLAGS), step=STEP)
        self.state = HandshakeState.CLIENT_FLAGS_SENT

        self.state = HandshakeState.HANDSHAKE_DONE
        logger.info(f"Handshake complete (server flags 0x{self.server_flags:04x})")
        return self.server_flags
