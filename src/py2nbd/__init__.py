"""
py2nbd - Network Block Device client.

Connects to an NBD server with fixed new-style negotiation, upgrades the
channel with STARTTLS, selects an export and reads blocks from it.

Example:
    >>> from py2nbd import NBDClient
    >>> with NBDClient("nbd.example.com", 10809, "/exportname") as client:
    ...     data = client.read(offset=0, length=4096)
"""

from py2nbd.client import NBDClient
from py2nbd.core.errors import (
    NBDError,
    TransportError,
    ProtocolMismatch,
    OptionRejected,
    EncryptionHandshakeFailure,
    ServerCommandError,
    ConfigurationError,
    ValidationError,
)
from py2nbd.core.tcp_connection import Dialer, TCPDialer
from py2nbd.models.connection import ConnectionConfig, TLSConfig
from py2nbd.models.export import ExportInfo

__version__ = "0.1.0"

__all__ = [
    'NBDClient',
    'ConnectionConfig',
    'TLSConfig',
    'ExportInfo',
    'Dialer',
    'TCPDialer',
    'NBDError',
    'TransportError',
    'ProtocolMismatch',
    'OptionRejected',
    'EncryptionHandshakeFailure',
    'ServerCommandError',
    'ConfigurationError',
    'ValidationError',
]
