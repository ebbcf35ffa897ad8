"""
Connection models for py2nbd.

This module provides the immutable configuration used to open an NBD
session.

Classes:
    TLSConfig: Settings for the mandatory STARTTLS upgrade
    ConnectionConfig: Server address, export name, timeout and TLS settings
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from py2nbd.core.nbd_protocol import NBD_DEFAULT_PORT


@dataclass(frozen=True)
class TLSConfig:
    """
    Settings for the STARTTLS upgrade.

    Attributes:
        verify: Verify the server certificate and hostname (default: True)
        ca_file: CA bundle to verify against instead of the system store
        server_hostname: Name to verify and send as SNI (defaults to host)
    """

    verify: bool = True
    ca_file: Optional[str] = None
    server_hostname: Optional[str] = None


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable configuration for an NBD session.

    Attributes:
        host: Server hostname or IP address
        export_name: Name of the export to select
        port: Server port (default: 10809)
        timeout: Socket timeout in seconds for connect and I/O (None = block)
        tls: STARTTLS settings

    Example:
        >>> config = ConnectionConfig("nbd.example.com", "/exportname")
        >>> valid, errors = config.validate()
    """

    host: str
    export_name: str
    port: int = NBD_DEFAULT_PORT
    timeout: Optional[float] = None
    tls: TLSConfig = field(default_factory=TLSConfig)

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the connection configuration.

        Returns:
            Tuple of (is_valid, list_of_error_messages)

        Validation rules:
            - Host must be a non-empty string
            - Port must be in range 1-65535
            - Export name must be a string no longer than 4096 UTF-8 bytes
            - Timeout, if given, must be positive
        """
        errors = []

        if not isinstance(self.host, str) or not self.host.strip():
            errors.append(f"Invalid host: {self.host!r}")

        if isinstance(self.port, bool) or not isinstance(self.port, int) \
                or not 1 <= self.port <= 65535:
            errors.append(f"Port out of range (1-65535): {self.port}")

        if not isinstance(self.export_name, str):
            errors.append(f"Export name must be a string: {self.export_name!r}")
        elif len(self.export_name.encode("utf-8")) > 4096:
            errors.append("Export name longer than 4096 bytes")

        if self.timeout is not None:
            if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) \
                    or self.timeout <= 0:
                errors.append(f"Timeout must be positive: {self.timeout}")

        if self.tls.ca_file is not None and not isinstance(self.tls.ca_file, str):
            errors.append(f"CA file must be a path: {self.tls.ca_file!r}")

        return len(errors) == 0, errors

    @property
    def server_hostname(self) -> str:
        """Name used for TLS SNI and certificate matching."""
        return self.tls.server_hostname or self.host

    def __str__(self) -> str:
        return f"nbd://{self.host}:{self.port}/{self.export_name}"
