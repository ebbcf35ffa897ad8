"""
Unit tests for NBDConnection and TCPDialer.

Uses socket pairs as the peer so byte-level behavior can be checked
without a server thread.
"""

import socket
import ssl
import unittest
from unittest.mock import Mock, patch

from py2nbd.core.errors import (
    EncryptionHandshakeFailure,
    ErrorCodes,
    TransportError,
    ValidationError,
)
from py2nbd.core.tcp_connection import NBDConnection, TCPDialer

from mock_nbd_server import MockNBDServer, PassthroughTLSContext


class TestNBDConnectionIO(unittest.TestCase):
    """Test exact-length sends and receives."""

    def setUp(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.connection = NBDConnection(self.client_sock, "localhost", 10809)

    def tearDown(self):
        self.connection.close()
        self.server_sock.close()

    def test_send_bytes(self):
        self.connection.send_bytes(b"\x00\x00\x00\x01", step="handshake")
        self.assertEqual(self.server_sock.recv(4), b"\x00\x00\x00\x01")

    def test_receive_all_bytes_assembles_chunks(self):
        """Test that data arriving in pieces is returned as one buffer."""
        self.server_sock.sendall(b"NBD")
        self.server_sock.sendall(b"MAGIC")
        self.assertEqual(self.connection.receive_all_bytes(8), b"NBDMAGIC")

    def test_receive_zero_bytes(self):
        self.assertEqual(self.connection.receive_all_bytes(0), b"")

    def test_receive_negative_size(self):
        with self.assertRaises(ValidationError):
            self.connection.receive_all_bytes(-1)

    def test_short_read_is_transport_error(self):
        """Test that a peer close mid-structure fails the whole read."""
        self.server_sock.sendall(b"NBDM")
        self.server_sock.close()

        with self.assertRaises(TransportError) as ctx:
            self.connection.receive_all_bytes(18, step="handshake")

        self.assertEqual(ctx.exception.step, "handshake")
        self.assertEqual(ctx.exception.context['received'], 4)
        self.assertEqual(ctx.exception.context['expected'], 18)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.SHORT_READ)

    def test_send_failure_is_transport_error(self):
        broken = Mock()
        broken.sendall.side_effect = BrokenPipeError("broken")
        connection = NBDConnection(broken)

        with self.assertRaises(TransportError) as ctx:
            connection.send_bytes(b"x", step="read")

        self.assertEqual(ctx.exception.step, "read")
        self.assertIsInstance(ctx.exception.cause, BrokenPipeError)

    def test_io_after_close(self):
        self.connection.close()

        self.assertFalse(self.connection.is_open)
        with self.assertRaises(TransportError) as ctx:
            self.connection.send_bytes(b"x")
        self.assertEqual(ctx.exception.error_code, ErrorCodes.SESSION_CLOSED)
        with self.assertRaises(TransportError):
            self.connection.receive_all_bytes(1)

    def test_close_is_idempotent(self):
        self.connection.close()
        self.connection.close()
        self.assertFalse(self.connection.is_open)


class TestStartTLS(unittest.TestCase):
    """Test substitution of the wrapped socket."""

    def setUp(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.connection = NBDConnection(self.client_sock, "localhost", 10809)

    def tearDown(self):
        self.connection.close()
        self.server_sock.close()

    def test_io_goes_through_wrapped_socket(self):
        context = PassthroughTLSContext()
        self.connection.start_tls(context, server_hostname="nbd.example.com")

        self.assertTrue(self.connection.is_encrypted)
        self.assertEqual(context.calls, ["nbd.example.com"])

        self.connection.send_bytes(b"after")
        self.assertEqual(context.wrapped[0].sent, [b"after"])
        self.assertEqual(self.server_sock.recv(5), b"after")

    def test_handshake_failure_closes_connection(self):
        """Test that a failed TLS handshake closes and raises."""
        context = PassthroughTLSContext(error=ssl.SSLError("certificate verify failed"))

        with self.assertRaises(EncryptionHandshakeFailure) as ctx:
            self.connection.start_tls(context)

        self.assertEqual(ctx.exception.step, "starttls")
        self.assertFalse(self.connection.is_open)
        self.assertFalse(self.connection.is_encrypted)

    def test_start_tls_on_closed_connection(self):
        self.connection.close()
        with self.assertRaises(TransportError):
            self.connection.start_tls(PassthroughTLSContext())


class TestOpen(unittest.TestCase):
    """Test dialing through the default and injected dialers."""

    def test_open_with_default_dialer(self):
        server = MockNBDServer().start()
        try:
            connection = NBDConnection.open(server.host, server.port, timeout=5.0)
            try:
                self.assertTrue(connection.is_open)
                self.assertEqual(connection.receive_all_bytes(8), b"NBDMAGIC")
            finally:
                connection.close()
        finally:
            server.stop()

    def test_open_uses_injected_dialer(self):
        client_sock, server_sock = socket.socketpair()
        dialer = Mock()
        dialer.dial.return_value = client_sock

        connection = NBDConnection.open("nbd.example.com", 10809, dialer=dialer, timeout=3.0)

        dialer.dial.assert_called_once_with("nbd.example.com", 10809, 3.0)
        connection.close()
        server_sock.close()

    def test_dial_failure_is_transport_error(self):
        dialer = Mock()
        dialer.dial.side_effect = ConnectionRefusedError("refused")

        with self.assertRaises(TransportError) as ctx:
            NBDConnection.open("127.0.0.1", 10809, dialer=dialer)

        self.assertEqual(ctx.exception.step, "dial")
        self.assertEqual(ctx.exception.error_code, ErrorCodes.CONNECTION_REFUSED)

    def test_dial_timeout_keeps_generic_code(self):
        dialer = Mock()
        dialer.dial.side_effect = TimeoutError("timed out")

        with self.assertRaises(TransportError) as ctx:
            NBDConnection.open("127.0.0.1", 10809, dialer=dialer, timeout=1.0)

        self.assertEqual(ctx.exception.error_code, ErrorCodes.CONNECTION_LOST)
        self.assertTrue(ctx.exception.suggestions)

    def test_invalid_host_and_port(self):
        for host, port in [("", 10809), (None, 10809), ("localhost", 0),
                           ("localhost", 65536), ("localhost", "10809"), ("localhost", True)]:
            with self.subTest(host=host, port=port):
                with self.assertRaises(ValidationError):
                    NBDConnection.open(host, port, dialer=Mock())


class TestTCPDialer(unittest.TestCase):
    """Test the default dialer."""

    @patch('py2nbd.core.tcp_connection.socket.create_connection')
    def test_dial_sets_nodelay(self, mock_create):
        sock = Mock()
        mock_create.return_value = sock

        result = TCPDialer(source_address=("10.0.0.1", 0)).dial("nbd.example.com", 10809, 2.0)

        self.assertIs(result, sock)
        mock_create.assert_called_once_with(
            ("nbd.example.com", 10809), timeout=2.0, source_address=("10.0.0.1", 0)
        )
        sock.setsockopt.assert_called_once_with(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    @patch('py2nbd.core.tcp_connection.socket.create_connection')
    def test_dial_propagates_os_error(self, mock_create):
        mock_create.side_effect = OSError("unreachable")
        with self.assertRaises(OSError):
            TCPDialer().dial("nbd.example.com", 10809)


if __name__ == '__main__':
    unittest.main()
