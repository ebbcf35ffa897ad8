"""
Core layer for NBD communication.

This package contains the wire codec, connection management and the
negotiation and transmission engines.
"""

from .nbd_protocol import (
    NBD_DEFAULT_PORT,
    Command,
    Option,
    OptionReplyType,
    TransmissionFlag,
)
from .tcp_connection import NBDConnection, TCPDialer, Dialer
from .handshake import HandshakeEngine, HandshakeState
from .tls_upgrade import TLSUpgrade, build_ssl_context
from .export_negotiation import negotiate_export
from .command_exchange import CommandExchange, PendingCommands

__all__ = [
    'NBD_DEFAULT_PORT',
    'Command',
    'Option',
    'OptionReplyType',
    'TransmissionFlag',
    'NBDConnection',
    'TCPDialer',
    'Dialer',
    'HandshakeEngine',
    'HandshakeState',
    'TLSUpgrade',
    'build_ssl_context',
    'negotiate_export',
    'CommandExchange',
    'PendingCommands',
]
