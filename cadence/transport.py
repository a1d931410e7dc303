"""
Transport security layer — wraps a connected TCP socket in a TLS session.

A server builds one ``ssl.SSLContext`` at startup from its certificate and
key and hands the same context to every per-connection handshake.  The
client presents no certificate of its own.

    raw socket  ->  SecureChannel (HANDSHAKING)
                ->  handshake()   (ESTABLISHED)
                ->  read / write
                ->  close()       (CLOSED)
"""

import enum
import logging
import socket
import ssl
from dataclasses import dataclass

from .config import CERT_FILE, CHUNK_SIZE, IO_TIMEOUT, KEY_FILE
from .errors import TransportError

logger = logging.getLogger(__name__)


class ChannelState(enum.Enum):
    HANDSHAKING = "handshaking"
    ESTABLISHED = "established"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Context construction (done once per process)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransportConfig:
    """Immutable server-side transport settings, loaded once at startup."""

    certfile: str = CERT_FILE
    keyfile: str = KEY_FILE
    # Extension point for read/write deadlines; None keeps fully blocking I/O.
    io_timeout: float | None = IO_TIMEOUT

    def server_context(self) -> ssl.SSLContext:
        return server_context(self.certfile, self.keyfile)


def server_context(certfile: str, keyfile: str) -> ssl.SSLContext:
    """Create the shared server context.

    Raises TransportError if the certificate or key cannot be loaded; callers
    treat that as a fatal bootstrap failure.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        ctx.load_cert_chain(certfile=certfile, keyfile=keyfile)
    except (OSError, ssl.SSLError) as e:
        raise TransportError(
            f"Cannot load certificate {certfile!r} / key {keyfile!r}: {e}"
        ) from e
    return ctx


def client_context(cafile: str | None = None, verify: bool = True) -> ssl.SSLContext:
    """Create a client context.

    With *verify* the server certificate is checked against *cafile* (or the
    system trust store).  ``verify=False`` accepts any certificate.
    """
    if verify:
        return ssl.create_default_context(cafile=cafile)
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


# ---------------------------------------------------------------------------
# Per-connection session
# ---------------------------------------------------------------------------


class SecureChannel:
    """One TLS session bound to one socket."""

    def __init__(
        self,
        sock: socket.socket,
        context: ssl.SSLContext,
        server_side: bool,
        server_hostname: str | None = None,
        io_timeout: float | None = None,
    ):
        self._raw = sock
        self._context = context
        self._server_side = server_side
        self._server_hostname = server_hostname
        self._tls: ssl.SSLSocket | None = None
        self.state = ChannelState.HANDSHAKING
        try:
            self.peer = sock.getpeername()
        except OSError:
            self.peer = None
        sock.settimeout(io_timeout)

    @classmethod
    def dial(
        cls,
        host: str,
        port: int,
        context: ssl.SSLContext,
        io_timeout: float | None = None,
    ) -> "SecureChannel":
        """Open a TCP connection to *host*:*port* (handshake not yet done)."""
        try:
            sock = socket.create_connection((host, port), timeout=io_timeout)
        except OSError as e:
            raise TransportError(f"Cannot connect to {host}:{port}: {e}") from e
        return cls(
            sock,
            context,
            server_side=False,
            server_hostname=host,
            io_timeout=io_timeout,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def handshake(self) -> None:
        if self.state is not ChannelState.HANDSHAKING:
            raise TransportError(f"Handshake not allowed in state {self.state.value}")
        try:
            self._tls = self._context.wrap_socket(
                self._raw,
                server_side=self._server_side,
                server_hostname=None if self._server_side else self._server_hostname,
                do_handshake_on_connect=False,
            )
            self._tls.do_handshake()
        except OSError as e:
            raise TransportError(f"TLS handshake with {self.peer} failed: {e}") from e
        self.state = ChannelState.ESTABLISHED

    def close(self) -> None:
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        try:
            (self._tls or self._raw).close()
        except OSError as e:
            logger.debug("Error closing channel to %s: %s", self.peer, e)

    def __enter__(self) -> "SecureChannel":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def read(self, size: int = CHUNK_SIZE) -> bytes:
        """Read up to *size* bytes.  Returns b"" once the peer has closed."""
        tls = self._established()
        try:
            return tls.recv(size)
        except OSError as e:
            raise TransportError(f"Read from {self.peer} failed: {e}") from e

    def write(self, data: bytes) -> None:
        tls = self._established()
        try:
            tls.sendall(data)
        except OSError as e:
            raise TransportError(f"Write to {self.peer} failed: {e}") from e

    def read_until_close(self, size: int = CHUNK_SIZE) -> bytes:
        """Read until end-of-stream and return everything received."""
        data = bytearray()
        while True:
            chunk = self.read(size)
            if not chunk:
                return bytes(data)
            data.extend(chunk)

    def _established(self) -> ssl.SSLSocket:
        if self.state is not ChannelState.ESTABLISHED or self._tls is None:
            raise TransportError(f"Channel is {self.state.value}, not established")
        return self._tls
