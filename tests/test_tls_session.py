"""
End-to-end tests with a real TLS handshake.

The mock server wraps its socket with a server-side SSLContext right after
acknowledging STARTTLS, using the test certificates in tests/certs/.
"""

import ssl
import unittest
from pathlib import Path

from py2nbd import NBDClient
from py2nbd.core.errors import EncryptionHandshakeFailure
from py2nbd.models.connection import TLSConfig

from mock_nbd_server import MockNBDServer

CERTS = Path(__file__).parent / 'certs'
CA_FILE = str(CERTS / 'ca.pem')


def server_context():
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(CERTS / 'server.pem'), str(CERTS / 'server.key'))
    return context


class TestTLSSession(unittest.TestCase):
    """Test the STARTTLS upgrade against a server that really speaks TLS."""

    def setUp(self):
        self.data = bytes(i % 239 for i in range(1 << 16))
        self.server = MockNBDServer(
            exports={"test": self.data}, tls_context=server_context()
        ).start()
        self.addCleanup(self.server.stop)

    def make_client(self, tls):
        client = NBDClient(self.server.host, self.server.port, "test", tls=tls, timeout=5.0)
        self.addCleanup(client.close)
        return client

    def test_unverified_session_reads_over_tls(self):
        """Test that all traffic after the ACK goes through an SSLSocket."""
        client = self.make_client(TLSConfig(verify=False))

        self.assertTrue(client._connection.is_encrypted)
        self.assertIsInstance(client._connection._sock, ssl.SSLSocket)

        self.assertEqual(client.read(512, 4096), self.data[512:512 + 4096])
        client.close()

        self.assertTrue(self.server.disconnected.wait(5))
        self.assertIsNotNone(self.server.tls_version)
        self.assertEqual(
            self.server.events,
            ["starttls", "export_name:test", "read:512:4096", "disconnect"]
        )

    def test_untrusted_certificate_rejected_by_default(self):
        with self.assertRaises(EncryptionHandshakeFailure) as ctx:
            NBDClient(self.server.host, self.server.port, "test", timeout=5.0)

        self.assertEqual(ctx.exception.step, "starttls")
        self.assertIsInstance(ctx.exception.cause, ssl.SSLError)
        self.assertTrue(self.server.finished.wait(5))
        self.assertEqual(self.server.events, ["starttls"])

    def test_verified_with_ca_file(self):
        client = self.make_client(TLSConfig(ca_file=CA_FILE, server_hostname="localhost"))

        self.assertEqual(client.read(0, 1024), self.data[:1024])

    def test_hostname_mismatch_rejected(self):
        with self.assertRaises(EncryptionHandshakeFailure):
            NBDClient(
                self.server.host, self.server.port, "test", timeout=5.0,
                tls=TLSConfig(ca_file=CA_FILE, server_hostname="nbd.example.com")
            )

        self.assertTrue(self.server.finished.wait(5))
        self.assertNotIn("export_name:test", self.server.events)


if __name__ == '__main__':
    unittest.main()
