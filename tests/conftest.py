"""
Shared fixtures: a self-signed certificate, TLS contexts, a catalog
directory and a running FileServer on a loopback port.
"""

import hashlib
import socket
import threading

import pytest

from cadence.certs import generate_self_signed
from cadence.server import FileServer
from cadence.transport import SecureChannel, client_context, server_context


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory):
    """Return (cert_path, key_path) for a localhost certificate."""
    d = tmp_path_factory.mktemp("tls")
    cert = str(d / "cert.pem")
    key = str(d / "key.pem")
    generate_self_signed(cert, key)
    return cert, key


@pytest.fixture(scope="session")
def server_ctx(tls_files):
    return server_context(*tls_files)


@pytest.fixture(scope="session")
def client_ctx(tls_files):
    return client_context(cafile=tls_files[0])


@pytest.fixture
def catalog(tmp_path):
    d = tmp_path / "catalog"
    d.mkdir()
    return d


@pytest.fixture
def running_server(catalog, server_ctx):
    server = FileServer(
        port=0, host="127.0.0.1", catalog_dir=str(catalog), context=server_ctx
    )
    server.start()
    try:
        yield server
    finally:
        server.stop(join_timeout=5)


def raw_request(port, ctx, payload: bytes) -> bytes:
    """Send *payload* as a request and return everything the server sent."""
    with SecureChannel.dial("127.0.0.1", port, ctx) as channel:
        channel.handshake()
        channel.write(payload)
        return channel.read_until_close()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


class FakeChannel:
    """Stands in for a SecureChannel: serves scripted reads, records writes."""

    def __init__(self, reads=()):
        self._reads = list(reads)
        self.written = bytearray()
        self.closed = False
        self.peer = ("test", 0)

    def read(self, size=4096):
        if not self._reads:
            return b""
        chunk = self._reads.pop(0)
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def write(self, data):
        self.written.extend(data)

    def close(self):
        self.closed = True


class DroppingServer:
    """TLS server that answers every request with *reply* and hangs up.

    Used to simulate a connection lost in the middle of a transfer.
    """

    def __init__(self, ctx, reply: bytes = b"partial" * 20):
        self.ctx = ctx
        self.reply = reply
        self.connections = 0
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(5)
        self._sock.settimeout(0.2)
        self.port = self._sock.getsockname()[1]
        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _loop(self):
        while self._running:
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self.connections += 1
            try:
                conn.setblocking(True)
                tls = self.ctx.wrap_socket(conn, server_side=True)
                tls.recv(256)
                if self.reply:
                    tls.sendall(self.reply)
                tls.close()
            except OSError:
                conn.close()

    def close(self):
        self._running = False
        self._thread.join()
        self._sock.close()
