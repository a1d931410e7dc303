"""
TLS file server — accepts connections and answers LIST, SEARCH and DOWNLOAD.

Every accepted connection is handed to its own worker thread, which performs
the TLS handshake, serves exactly one request and closes the connection.
Workers share only the read-only ``ssl.SSLContext`` and the catalog
directory, so no locking is needed between them.

By default the number of live workers is unbounded.  Passing
``max_connections`` turns on a cap: connections arriving while the cap is
reached are closed immediately.  Live workers are tracked so that ``stop()``
can wait for them to drain.

Dispatch of a single request:

    AWAIT_REQUEST -> PARSED -> DISPATCHING -> RESPONDING -> CLOSED

A malformed request is answered with ``RPCERROR <code>``, an unreadable file
with ``FILEERROR <errno>``.  The connection is closed in every case.
"""

import enum
import errno
import logging
import os
import re
import socket
import ssl
import threading

from .catalog import list_files, search_files
from .config import (
    BACKLOG,
    CATALOG_DIR,
    DEFAULT_PORT,
    MAX_CONNECTIONS,
    REQUEST_BUFFER_SIZE,
    REQUIRED_SUFFIX,
)
from .errors import ErrorKind, FileAccessError, ProtocolError, TransportError
from .protocol import Operation, format_error, parse_request, send_file_with_digest
from .transport import SecureChannel, TransportConfig

logger = logging.getLogger(__name__)

# Seconds between checks of the running flag while waiting in accept().
ACCEPT_POLL_INTERVAL = 0.5


# Windows reserved device names that must never be opened as files.
_WINDOWS_RESERVED = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)", re.IGNORECASE
)


def _safe_filename(filename: str) -> str | None:
    """Reduce an untrusted filename to a bare name inside the catalog.

    - Strips directory components (prevents path traversal).
    - Removes null bytes.
    - Returns None for empty names, "." / "..", and Windows device names.
    """
    name = os.path.basename(filename.replace("\\", "/"))
    name = name.replace("\x00", "")
    if name in ("", ".", ".."):
        return None
    if _WINDOWS_RESERVED.match(name):
        return None
    return name


class DispatchState(enum.Enum):
    AWAIT_REQUEST = "await_request"
    PARSED = "parsed"
    DISPATCHING = "dispatching"
    RESPONDING = "responding"
    CLOSED = "closed"


class RpcDispatcher:
    """Serves one request on an established channel, then closes it."""

    def __init__(
        self,
        channel: SecureChannel,
        catalog_dir: str = CATALOG_DIR,
        suffix: str = REQUIRED_SUFFIX,
        buffer_size: int = REQUEST_BUFFER_SIZE,
    ):
        self.channel = channel
        self.catalog_dir = catalog_dir
        self.suffix = suffix
        self.buffer_size = buffer_size
        self.state = DispatchState.AWAIT_REQUEST
        self._handlers = {
            Operation.LIST: self._handle_list,
            Operation.SEARCH: self._handle_search,
            Operation.DOWNLOAD: self._handle_download,
        }

    def run(self) -> None:
        """Read, dispatch and answer one request.

        TransportError propagates to the caller; everything the peer did wrong
        is answered on the wire instead.
        """
        try:
            # One read only: a request line longer than the buffer is truncated.
            raw = self.channel.read(self.buffer_size)
            self.state = DispatchState.PARSED
            try:
                request = parse_request(raw)
            except ProtocolError as e:
                logger.info("[%s] Rejected request %r: %s", self.channel.peer, raw, e)
                self.state = DispatchState.RESPONDING
                self.channel.write(format_error(ErrorKind.RPC, e.code))
                return

            self.state = DispatchState.DISPATCHING
            logger.info(
                "[%s] %s %s",
                self.channel.peer,
                request.operation.value,
                request.argument or "",
            )
            handler = self._handlers[request.operation]

            self.state = DispatchState.RESPONDING
            try:
                handler(request.argument)
            except FileAccessError as e:
                logger.warning("[%s] File error: %s", self.channel.peer, e)
                self.channel.write(format_error(ErrorKind.FILE, e.errno))
        finally:
            self.state = DispatchState.CLOSED
            self.channel.close()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_list(self, _argument: None) -> None:
        self._send_names(list_files(self.catalog_dir, self.suffix))

    def _handle_search(self, term: str) -> None:
        self._send_names(search_files(self.catalog_dir, term, self.suffix))

    def _handle_download(self, filename: str) -> None:
        name = _safe_filename(filename)
        if name is None:
            raise FileAccessError(filename, errno.ENOENT)
        filepath = os.path.join(self.catalog_dir, name)
        digest = send_file_with_digest(self.channel, filepath)
        logger.info("[%s] Sent %s (sha256 %s)", self.channel.peer, name, digest.hex())

    def _send_names(self, names: list[str]) -> None:
        # End of the listing is signalled by closing the connection.
        if names:
            self.channel.write("".join(f"{name}\n" for name in names).encode("utf-8"))


class FileServer:
    """Multithreaded TLS server for catalog and download requests."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        catalog_dir: str = CATALOG_DIR,
        transport: TransportConfig | None = None,
        context: ssl.SSLContext | None = None,
        max_connections: int | None = MAX_CONNECTIONS,
        suffix: str = REQUIRED_SUFFIX,
    ):
        self.host = host
        self.port = port
        self.catalog_dir = catalog_dir
        self.suffix = suffix
        self.transport = transport or TransportConfig()
        if max_connections is not None and max_connections < 1:
            raise ValueError(f"max_connections must be at least 1, got {max_connections}")
        self._context = context
        self._running = False
        self._sock: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._semaphore = (
            threading.BoundedSemaphore(max_connections)
            if max_connections is not None
            else None
        )
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def bind(self) -> None:
        """Load the TLS context and open the listening socket.

        Any failure here is fatal for the process and propagates.
        """
        if self._context is None:
            self._context = self.transport.server_context()

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(BACKLOG)
        except OSError:
            sock.close()
            raise
        sock.settimeout(ACCEPT_POLL_INTERVAL)  # so we can check self._running
        self._sock = sock
        self.port = sock.getsockname()[1]
        logger.info("Listening on %s:%d (catalog %s)", self.host, self.port, self.catalog_dir)

    def start(self) -> None:
        """Bind and run the accept loop in a daemon thread."""
        if self._sock is None:
            self.bind()
        self._running = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="cadence-accept", daemon=True
        )
        self._accept_thread.start()

    def serve_forever(self) -> None:
        """Bind and run the accept loop in the calling thread."""
        if self._sock is None:
            self.bind()
        self._running = True
        self._accept_loop()

    def stop(self, join_timeout: float | None = None) -> None:
        """Stop accepting and wait up to *join_timeout* seconds per live worker."""
        self._running = False
        if self._accept_thread and self._accept_thread is not threading.current_thread():
            self._accept_thread.join()
        if self._sock:
            self._sock.close()
        for worker in self.workers():
            worker.join(join_timeout)

    @property
    def active_workers(self) -> int:
        with self._workers_lock:
            return len(self._workers)

    def workers(self) -> list[threading.Thread]:
        with self._workers_lock:
            return list(self._workers)

    # ------------------------------------------------------------------
    # Accept loop
    # ------------------------------------------------------------------

    def _accept_loop(self) -> None:
        while self._running:
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break
                logger.error("Unable to accept connection: %s", e)
                continue

            if self._semaphore is not None and not self._semaphore.acquire(blocking=False):
                # Over the cap: reject.
                logger.warning("Connection cap reached, rejecting %s", addr)
                try:
                    conn.close()
                except OSError:
                    pass
                continue

            worker = threading.Thread(
                target=self._handle_client,
                args=(conn, addr),
                name=f"cadence-worker-{addr[0]}:{addr[1]}",
                daemon=True,
            )
            with self._workers_lock:
                self._workers.add(worker)
            worker.start()

    # ------------------------------------------------------------------
    # Per-connection worker
    # ------------------------------------------------------------------

    def _handle_client(self, conn: socket.socket, addr: tuple) -> None:
        logger.debug("Accepted connection from %s", addr)
        channel = SecureChannel(
            conn,
            self._context,
            server_side=True,
            io_timeout=self.transport.io_timeout,
        )
        try:
            channel.handshake()
            RpcDispatcher(channel, self.catalog_dir, self.suffix).run()
        except TransportError as e:
            logger.warning("[%s] Connection aborted: %s", addr, e)
        except Exception:
            logger.exception("[%s] Unexpected error while serving request", addr)
        finally:
            channel.close()
            with self._workers_lock:
                self._workers.discard(threading.current_thread())
            if self._semaphore is not None:
                self._semaphore.release()
            logger.debug("Closed connection from %s", addr)
