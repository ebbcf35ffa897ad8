"""
Export selection with NBD_OPT_EXPORT_NAME.

The server answers this option without an option reply envelope: it
sends the export size and transmission flags followed by 124 reserved
bytes, and the session moves straight to the transmission phase. An
unknown export name makes the server drop the connection, which surfaces
here as a TransportError.
"""

import logging
from typing import Union

from .nbd_protocol import (
    EXPORT_RESERVED_SIZE,
    ExportDetails,
    Option,
    OptionRequest,
    encode_export_name,
)
from .tcp_connection import NBDConnection
from py2nbd.models.export import ExportInfo

logger = logging.getLogger(__name__)

STEP = "export_name"


def negotiate_export(connection: NBDConnection, export_name: Union[str, bytes]) -> ExportInfo:
    """
    Select export_name and return its metadata.

    Args:
        connection: Connection that has completed handshake and STARTTLS
        export_name: Export name, str (sent as UTF-8) or raw bytes

    Returns:
        ExportInfo with size and transmission flags

    Raises:
        TransportError: On I/O failure, including the server closing the
                        connection for an unknown export
        ProtocolMismatch: If a reply structure is malformed
    """
    name_bytes = encode_export_name(export_name)
    request = OptionRequest(Option.EXPORT_NAME, name_bytes)
    connection.send_bytes(request.to_bytes(), step=STEP)

    raw = connection.receive_all_bytes(ExportDetails.STRUCT.size, step=STEP)
    details = ExportDetails.from_bytes(raw)

    connection.receive_all_bytes(EXPORT_RESERVED_SIZE, step=STEP)

    name = export_name if isinstance(export_name, str) else name_bytes.decode("utf-8", errors="replace")
    info = ExportInfo(name=name, size=details.size, flags=details.flags)
    logger.info(f"Selected export {info}")
    return info
