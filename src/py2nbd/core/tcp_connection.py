"""
TCP connection management for NBD sessions.

This module handles low-level socket operations for a single NBD session:
dialing the server, exact-length sends and receives, and the in-place
substitution of a TLS-wrapped socket after STARTTLS is acknowledged.

Once start_tls() has succeeded, every further byte goes through the
wrapped socket; the plain socket object is dropped and never used again.
"""

import socket
import ssl
import logging
import threading
from typing import Optional, Protocol, Tuple

from .errors import (
    ErrorCodes,
    TransportError,
    EncryptionHandshakeFailure,
    ValidationError,
    wrap_external_error,
)


class Dialer(Protocol):
    """
    Anything that can open a stream socket to host:port.

    Proxy support is provided by passing a dialer that tunnels the
    connection (for example through SOCKS) and returns the connected socket.
    """

    def dial(self, host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
        ...


class TCPDialer:
    """
    Plain TCP dialer built on socket.create_connection().

    Example:
        >>> sock = TCPDialer().dial("nbd.example.com", 10809, timeout=5.0)
    """

    def __init__(self, source_address: Optional[Tuple[str, int]] = None):
        self.source_address = source_address
        self.logger = logging.getLogger(__name__)

    def dial(self, host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
        """
        Connect to host:port.

        Args:
            host: Server hostname or IP address
            port: Server port
            timeout: Timeout in seconds for connect and subsequent I/O
                     (None = blocking)

        Returns:
            Connected socket

        Raises:
            OSError: If the connection cannot be established
        """
        self.logger.info(f"Dialing {host}:{port}")
        sock = socket.create_connection(
            (host, port),
            timeout=timeout,
            source_address=self.source_address
        )
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            self.logger.debug(f"Could not set TCP_NODELAY: {e}")
        return sock


class NBDConnection:
    """
    Owns the byte stream of one NBD session.

    Example:
        >>> conn = NBDConnection.open("127.0.0.1", 10809)
        >>> conn.send_bytes(b"...")
        >>> header = conn.receive_all_bytes(18)
        >>> conn.close()
    """

    def __init__(self, sock: socket.socket, host: Optional[str] = None, port: Optional[int] = None):
        """
        Wrap an already connected socket.

        Args:
            sock: Connected stream socket
            host: Server host (used as the default TLS server name)
            port: Server port
        """
        self._sock: Optional[socket.socket] = sock
        self._lock = threading.Lock()
        self._encrypted = False
        self.host = host
        self.port = port
        self.logger = logging.getLogger(__name__)

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        dialer: Optional[Dialer] = None,
        timeout: Optional[float] = None
    ) -> "NBDConnection":
        """
        Dial the server and return a connection around the new socket.

        Raises:
            ValidationError: If host or port is invalid
            TransportError: If dialing fails
        """
        cls._validate_host(host)
        cls._validate_port(port)
        dialer = dialer or TCPDialer()
        try:
            sock = dialer.dial(host, port, timeout)
        except OSError as e:
            code = ErrorCodes.CONNECTION_REFUSED if isinstance(e, ConnectionRefusedError) else None
            raise wrap_external_error(
                e,
                f"Could not connect to {host}:{port}: {e}",
                error_code=code,
                suggestions=["Check that the NBD server is running and reachable"],
                step="dial"
            ) from e
        return cls(sock, host, port)

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def is_encrypted(self) -> bool:
        return self._encrypted

    def send_bytes(self, data: bytes, step: Optional[str] = None) -> None:
        """
        Send all of data.

        Raises:
            TransportError: If the connection is closed or the send fails
        """
        with self._lock:
            sock = self._require_socket(step)
            try:
                sock.sendall(data)
            except OSError as e:
                self.logger.error(f"Failed to send {len(data)} bytes: {e}")
                raise wrap_external_error(e, f"Send failed: {e}", step=step) from e
        self.logger.debug(f"Sent {len(data)} bytes ({step})")

    def receive_all_bytes(self, size: int, step: Optional[str] = None) -> bytes:
        """
        Receive exactly size bytes.

        A peer close before size bytes arrive is a short read and fails the
        whole structure; partial data is discarded.

        Raises:
            TransportError: On short read, socket error or closed connection
        """
        if size < 0:
            raise ValidationError(f"Size must be non-negative, got {size}", field_name="size")
        if size == 0:
            return b""

        with self._lock:
            sock = self._require_socket(step)
            buffer = bytearray(size)
            view = memoryview(buffer)
            received = 0
            try:
                while received < size:
                    n = sock.recv_into(view[received:], size - received)
                    if n == 0:
                        self.logger.error(
                            f"Connection closed while receiving data "
                            f"(got {received}/{size} bytes)"
                        )
                        raise TransportError(
                            f"Connection closed after receiving {received}/{size} bytes",
                            step=step,
                            error_code=ErrorCodes.SHORT_READ,
                            context={'received': received, 'expected': size}
                        )
                    received += n
            except OSError as e:
                self.logger.error(f"Failed to receive data: {e}")
                raise wrap_external_error(e, f"Receive failed: {e}", step=step) from e

        self.logger.debug(f"Received {size} bytes ({step})")
        return bytes(buffer)

    def start_tls(self, context: ssl.SSLContext, server_hostname: Optional[str] = None) -> None:
        """
        Run a client TLS handshake over the current socket and substitute
        the wrapped socket for all further I/O.

        Raises:
            EncryptionHandshakeFailure: If the handshake fails
            TransportError: If the connection is already closed
        """
        with self._lock:
            sock = self._require_socket("starttls")
            try:
                wrapped = context.wrap_socket(sock, server_hostname=server_hostname)
            except (ssl.SSLError, ssl.CertificateError, OSError) as e:
                self.logger.error(f"TLS handshake failed: {e}")
                self._close_unsafe()
                raise EncryptionHandshakeFailure(
                    f"TLS handshake failed: {e}",
                    cause=e,
                    suggestions=[
                        "Check the server certificate and the configured CA file",
                        "Set tls.verify to false only for servers you trust",
                    ]
                ) from e
            self._sock = wrapped
            self._encrypted = True

        version = wrapped.version() if hasattr(wrapped, "version") else None
        self.logger.info(f"TLS established ({version or 'unknown version'})")

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        with self._lock:
            self._close_unsafe()

    def _close_unsafe(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
            self.logger.info("Closed NBD connection")
        except OSError as e:
            self.logger.error(f"Error closing socket: {e}")
        finally:
            self._sock = None

    def _require_socket(self, step: Optional[str]) -> socket.socket:
        if self._sock is None:
            raise TransportError(
                "Connection is closed", step=step, error_code=ErrorCodes.SESSION_CLOSED
            )
        return self._sock

    @staticmethod
    def _validate_host(host: str) -> None:
        if not isinstance(host, str) or not host.strip():
            raise ValidationError(f"Invalid host: {host!r}", field_name="host")

    @staticmethod
    def _validate_port(port: int) -> None:
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValidationError(f"Port must be an integer, got {type(port)}", field_name="port")

        if port < 1 or port > 65535:
            raise ValidationError(f"Port must be 1-65535, got {port}", field_name="port")
