"""
Tests for export selection with NBD_OPT_EXPORT_NAME.
"""

import socket
import unittest

from py2nbd.core.errors import TransportError, ValidationError
from py2nbd.core.export_negotiation import negotiate_export
from py2nbd.core.nbd_protocol import Option, OptionRequest, TransmissionFlag
from py2nbd.core.tcp_connection import NBDConnection

from mock_nbd_server import export_details, recv_exact


class TestNegotiateExport(unittest.TestCase):
    """Test negotiate_export against a scripted peer."""

    def setUp(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.server_sock.settimeout(5.0)
        self.connection = NBDConnection(self.client_sock)

    def tearDown(self):
        self.connection.close()
        self.server_sock.close()

    def test_request_carries_name_without_terminator(self):
        self.server_sock.sendall(export_details(1048576))
        negotiate_export(self.connection, "test")

        sent = recv_exact(self.server_sock, 20)
        magic, option, length = OptionRequest.decode_header(sent[:16])
        self.assertEqual(option, Option.EXPORT_NAME)
        self.assertEqual(length, 4)
        self.assertEqual(sent[16:], b"test")

    def test_returns_size_and_flags(self):
        flags = TransmissionFlag.HAS_FLAGS | TransmissionFlag.READ_ONLY | TransmissionFlag.SEND_FLUSH
        self.server_sock.sendall(export_details(1 << 40, flags))

        info = negotiate_export(self.connection, "disk0")

        self.assertEqual(info.name, "disk0")
        self.assertEqual(info.size, 1 << 40)
        self.assertEqual(info.flags, flags)
        self.assertTrue(info.read_only)
        self.assertTrue(info.send_flush)
        self.assertFalse(info.send_trim)

    def test_reserved_region_is_consumed(self):
        """Test that exactly 134 bytes are consumed so later replies line up."""
        self.server_sock.sendall(export_details(512) + b"NEXT")
        negotiate_export(self.connection, "test")

        self.assertEqual(self.connection.receive_all_bytes(4), b"NEXT")

    def test_empty_export_name(self):
        self.server_sock.sendall(export_details(0))
        info = negotiate_export(self.connection, "")

        self.assertEqual(info.size, 0)
        sent = recv_exact(self.server_sock, 16)
        self.assertEqual(OptionRequest.decode_header(sent)[2], 0)

    def test_bytes_export_name(self):
        self.server_sock.sendall(export_details(512))
        info = negotiate_export(self.connection, b"raw")

        self.assertEqual(info.name, "raw")
        self.assertEqual(recv_exact(self.server_sock, 19)[16:], b"raw")

    def test_invalid_name_type(self):
        with self.assertRaises(ValidationError):
            negotiate_export(self.connection, 7)

    def test_unknown_export_closes_connection(self):
        """Test that a server hang-up surfaces as a transport error."""
        self.server_sock.shutdown(socket.SHUT_WR)

        with self.assertRaises(TransportError) as ctx:
            negotiate_export(self.connection, "missing")

        self.assertEqual(ctx.exception.step, "export_name")

    def test_truncated_reserved_region(self):
        self.server_sock.sendall(export_details(512)[:60])
        self.server_sock.shutdown(socket.SHUT_WR)

        with self.assertRaises(TransportError):
            negotiate_export(self.connection, "test")


if __name__ == '__main__':
    unittest.main()
