"""
NBD client session.

NBDClient ties the protocol engines together: constructing one dials the
server, runs the fixed new-style handshake and the mandatory STARTTLS
upgrade. The export is selected lazily on the first read (or explicitly
with connect()), after which any number of reads can be issued.

Example:
    >>> with NBDClient("nbd.example.com", 10809, "/exportname") as client:
    ...     block = client.read(offset=0, length=65536)
"""

import logging
import ssl
import threading
from typing import Optional, Union

from py2nbd.core.command_exchange import CommandExchange, validate_read_range
from py2nbd.core.errors import (
    ConfigurationError,
    ErrorCodes,
    NBDError,
    ProtocolMismatch,
    TransportError,
)
from py2nbd.core.export_negotiation import negotiate_export
from py2nbd.core.handshake import HandshakeEngine
from py2nbd.core.tcp_connection import Dialer, NBDConnection
from py2nbd.core.tls_upgrade import TLSUpgrade, build_ssl_context
from py2nbd.models.connection import ConnectionConfig, TLSConfig
from py2nbd.models.export import ExportInfo


class NBDClient:
    """
    One NBD session against a single export.

    A session runs one request/response exchange at a time. A transport or
    protocol failure during a command leaves the stream in an unknown
    state, so the session refuses further commands afterwards.
    """

    def __init__(
        self,
        host: str,
        port: int,
        export_name: Union[str, bytes],
        *,
        dialer: Optional[Dialer] = None,
        tls: Optional[TLSConfig] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        timeout: Optional[float] = None
    ):
        """
        Connect, handshake and upgrade to TLS.

        Args:
            host: Server hostname or IP address
            port: Server port (NBD_DEFAULT_PORT is 10809)
            export_name: Export to select on first use
            dialer: Opens the initial socket (default: plain TCP)
            tls: Certificate verification settings (default: verify)
            ssl_context: Ready-made client context; overrides tls settings
            timeout: Socket timeout in seconds (None = block)

        Raises:
            TransportError: Dial or I/O failure
            ProtocolMismatch: Handshake or STARTTLS reply mismatch
            OptionRejected: Server refused STARTTLS
            EncryptionHandshakeFailure: TLS handshake failed
        """
        self.logger = logging.getLogger(__name__)
        self._export_name = export_name
        self._lock = threading.Lock()
        self._connected = False
        self._closed = False
        self._broken = False
        self._export_info: Optional[ExportInfo] = None

        tls = tls or TLSConfig()
        if ssl_context is None:
            try:
                ssl_context = build_ssl_context(verify=tls.verify, ca_file=tls.ca_file)
            except (OSError, ssl.SSLError) as e:
                raise ConfigurationError(
                    f"Could not load TLS settings: {e}",
                    setting_name="tls.ca_file",
                    cause=e
                ) from e
        server_hostname = tls.server_hostname or host

        self._connection = NBDConnection.open(host, port, dialer=dialer, timeout=timeout)
        try:
            HandshakeEngine(self._connection).run()
            TLSUpgrade(self._connection, ssl_context, server_hostname=server_hostname).run()
        except NBDError:
            self._connection.close()
            self._closed = True
            raise

        self._exchange = CommandExchange(self._connection)
        self.logger.info(f"Session ready for {host}:{port}")

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        dialer: Optional[Dialer] = None,
        ssl_context: Optional[ssl.SSLContext] = None
    ) -> "NBDClient":
        """Create a session from a ConnectionConfig."""
        return cls(
            config.host,
            config.port,
            config.export_name,
            dialer=dialer,
            tls=config.tls,
            ssl_context=ssl_context,
            timeout=config.timeout,
        )

    @property
    def export_name(self) -> Union[str, bytes]:
        return self._export_name

    @property
    def connected(self) -> bool:
        """True once the export has been negotiated. Stays True after close()."""
        return self._connected

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def export_info(self) -> Optional[ExportInfo]:
        """Export size and flags, available after negotiation."""
        return self._export_info

    def connect(self) -> ExportInfo:
        """
        Select the export. Does nothing if already negotiated.

        Returns:
            ExportInfo for the export
        """
        with self._lock:
            self._ensure_usable("export_name")
            return self._connect_unsafe()

    def read(self, offset: int, length: int) -> bytes:
        """
        Read length bytes starting at offset.

        Negotiates the export first if that has not happened yet.

        Returns:
            Exactly length bytes

        Raises:
            ValidationError: Offset or length out of range
            ServerCommandError: Server reported an error for this read
            ProtocolMismatch: Malformed reply
            TransportError: I/O failure, or the session is closed or unusable
        """
        with self._lock:
            self._ensure_usable("read")
            validate_read_range(offset, length)
            self._connect_unsafe()
            try:
                return self._exchange.read(offset, length)
            except (TransportError, ProtocolMismatch):
                self._broken = True
                raise

    def close(self) -> None:
        """
        Disconnect and close the transport. Calling close() again is a no-op.

        The transport is closed even if sending the disconnect request
        fails; that failure is then raised.

        Raises:
            TransportError: If the disconnect request could not be sent
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

            error: Optional[TransportError] = None
            if self._connected and not self._broken:
                try:
                    self._exchange.disconnect()
                except TransportError as e:
                    self.logger.error(f"Failed to send disconnect: {e}")
                    error = e

            self._connection.close()
            self.logger.info("Session closed")

            if error is not None:
                raise error

    def _connect_unsafe(self) -> ExportInfo:
        if self._connected:
            return self._export_info
        try:
            self._export_info = negotiate_export(self._connection, self._export_name)
        except NBDError:
            self._broken = True
            raise
        self._connected = True
        return self._export_info

    def _ensure_usable(self, step: str) -> None:
        if self._closed:
            raise TransportError("Session is closed", step=step, error_code=ErrorCodes.SESSION_CLOSED)
        if self._broken:
            raise TransportError(
                "Session is unusable after an earlier transport or protocol failure",
                step=step,
                error_code=ErrorCodes.SESSION_UNUSABLE,
                suggestions=["Close this session and open a new one"]
            )

    def __enter__(self) -> "NBDClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("connected" if self._connected else "negotiating")
        return f"<NBDClient export={self._export_name!r} {state}>"
