"""
In-band STARTTLS upgrade.

After the handshake the client sends NBD_OPT_STARTTLS with an empty
payload. Only a well-formed NBD_REP_ACK with zero length lets the client
start the TLS handshake; any error-flagged reply is an OptionRejected and
there is no fallback to plaintext.
"""

import logging
import ssl
from typing import Optional

from .errors import OptionRejected, ProtocolMismatch
from .nbd_protocol import (
    NBD_REP_MAGIC,
    Option,
    OptionReplyHeader,
    OptionReplyType,
    OptionRequest,
    reply_type_name,
)
from .tcp_connection import NBDConnection

logger = logging.getLogger(__name__)

STEP = "starttls"

# Servers put a human-readable reason in error replies; cap what we read.
MAX_ERROR_MESSAGE = 4096


def build_ssl_context(
    verify: bool = True,
    ca_file: Optional[str] = None
) -> ssl.SSLContext:
    """
    Create the client SSLContext for the upgrade.

    Args:
        verify: Verify the server certificate and hostname
        ca_file: Optional CA bundle used instead of the system store

    Returns:
        Configured client context
    """
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_file)
    if not verify:
        logger.warning("TLS certificate verification is disabled")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def read_option_reply(connection: NBDConnection, option: int, step: str) -> OptionReplyHeader:
    """
    Read an option reply envelope and validate magic, echoed option id and
    error flag. Error replies have their payload drained and raise
    OptionRejected.
    """
    raw = connection.receive_all_bytes(OptionReplyHeader.STRUCT.size, step=step)
    reply = OptionReplyHeader.from_bytes(raw)

    if reply.magic != NBD_REP_MAGIC:
        raise ProtocolMismatch(
            f"Option reply had wrong magic 0x{reply.magic:x}",
            step=step, field="reply_magic",
            expected=NBD_REP_MAGIC, actual=reply.magic
        )
    if reply.option != option:
        raise ProtocolMismatch(
            f"Option reply echoed option {reply.option}, expected {option}",
            step=step, field="option",
            expected=option, actual=reply.option
        )
    if reply.is_error:
        message = None
        if 0 < reply.length <= MAX_ERROR_MESSAGE:
            payload = connection.receive_all_bytes(reply.length, step=step)
            message = payload.decode("utf-8", errors="replace")
        name = reply_type_name(reply.reply_type)
        raise OptionRejected(
            f"Server rejected option {option} with {name}"
            + (f": {message}" if message else ""),
            option=option,
            reply_type=reply.reply_type,
            reply_name=name,
            server_message=message,
            context={'step': step}
        )
    return reply


class TLSUpgrade:
    """
    Negotiates STARTTLS and swaps the connection to the encrypted socket.

    Example:
        >>> TLSUpgrade(connection, build_ssl_context(verify=False)).run()
        >>> connection.is_encrypted
        True
    """

    def __init__(
        self,
        connection: NBDConnection,
        context: ssl.SSLContext,
        server_hostname: Optional[str] = None
    ):
        self.connection = connection
        self.context = context
        self.server_hostname = server_hostname

    def run(self) -> None:
        """
        Raises:
            OptionRejected: Server answered with an error reply
            ProtocolMismatch: Malformed acknowledgment
            EncryptionHandshakeFailure: TLS handshake failed
            TransportError: On I/O failure
        """
        request = OptionRequest(Option.STARTTLS)
        self.connection.send_bytes(request.to_bytes(), step=STEP)

        reply = read_option_reply(self.connection, Option.STARTTLS, STEP)
        if reply.reply_type != OptionReplyType.ACK:
            raise ProtocolMismatch(
                f"STARTTLS reply had unexpected type {reply_type_name(reply.reply_type)}",
                step=STEP, field="reply_type",
                expected=int(OptionReplyType.ACK), actual=reply.reply_type
            )
        if reply.length != 0:
            raise ProtocolMismatch(
                f"STARTTLS acknowledgment had bogus length {reply.length}",
                step=STEP, field="reply_length",
                expected=0, actual=reply.length
            )

        logger.debug("STARTTLS acknowledged, starting TLS handshake")
        self.connection.start_tls(self.context, server_hostname=self.server_hostname)
