"""
TLS client — connects to a catalog server and performs file operations.

Each operation opens a fresh TLS session, sends one request, consumes the
response and closes the session.  Only one operation is in flight at a time.

DOWNLOAD is retried from scratch, with no delay, when the transport fails or
the trailing digest does not verify.  An error message from the server is
not retried.

Two API layers:
  - Core functions (fetch_*, search_remote, do_download) return data or raise.
  - CLI wrappers (list_files, search, download_file) print results.
"""

import contextlib
import logging
import os
import ssl
import threading

from typing_extensions import Callable

from .catalog import list_files as _list_local
from .config import DOWNLOADS_DIR, IO_TIMEOUT, MAX_DOWNLOAD_ATTEMPTS, PARTIAL_SUFFIX
from .errors import (
    CadenceError,
    DownloadFailed,
    DownloadInProgress,
    IntegrityError,
    LocalFileError,
    TransportError,
)
from .protocol import ENC, Operation, Request, parse_error, recv_file_with_digest
from .transport import SecureChannel, client_context

logger = logging.getLogger(__name__)

# Destinations with a download running in this process.
_active_downloads: set[str] = set()
_active_lock = threading.Lock()


def _connect(
    host: str,
    port: int,
    context: ssl.SSLContext | None = None,
    io_timeout: float | None = IO_TIMEOUT,
) -> SecureChannel:
    """Open a TLS session to the server."""
    channel = SecureChannel.dial(host, port, context or client_context(), io_timeout)
    try:
        channel.handshake()
    except Exception:
        channel.close()
        raise
    return channel


def format_size(size_bytes: int | float) -> str:
    """Human-readable file size."""
    for unit in ("B", "KB", "MB", "GB"):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


# ======================================================================
# Core API — returns structured data (used by TUI and CLI wrappers)
# ======================================================================


def _fetch_names(
    host: str, port: int, request: Request, context: ssl.SSLContext | None
) -> list[str]:
    channel = _connect(host, port, context)
    try:
        channel.write(request.encode())
        # The listing ends when the server closes the connection.
        data = channel.read_until_close()
    finally:
        channel.close()

    remote_error = parse_error(data)
    if remote_error is not None:
        raise remote_error
    return [line for line in data.decode(ENC, errors="replace").split("\n") if line]


def fetch_file_list(
    host: str, port: int, context: ssl.SSLContext | None = None
) -> list[str]:
    """
    Fetch the catalog from the server.

    Returns filenames in the order the server sent them.
    Raises TransportError or RemoteError.
    """
    return _fetch_names(host, port, Request(Operation.LIST), context)


def search_remote(
    host: str, port: int, term: str, context: ssl.SSLContext | None = None
) -> list[str]:
    """Fetch the catalog entries whose name contains *term*."""
    return _fetch_names(host, port, Request(Operation.SEARCH, term), context)


def do_download(
    host: str,
    port: int,
    filename: str,
    dest_dir: str = DOWNLOADS_DIR,
    context: ssl.SSLContext | None = None,
    max_attempts: int = MAX_DOWNLOAD_ATTEMPTS,
    progress_callback: Callable[[int], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> tuple[str, int]:
    """
    Download *filename* into *dest_dir* and verify its SHA-256 digest.

    Returns (destination_path, bytes_received).
    Raises RemoteError if the server answers with an error message,
    TransferCancelled if *cancel_event* is set, DownloadFailed once
    *max_attempts* attempts have failed at the transport or digest level,
    LocalFileError if the file cannot be written locally, and
    DownloadInProgress if the same destination is already being downloaded.
    """
    # A malicious server cannot pick the local path: only the base name is kept.
    safe_name = os.path.basename(filename)
    if not safe_name:
        raise CadenceError(
            f"Filename is invalid or empty after sanitization: {filename!r}"
        )
    dest = os.path.abspath(os.path.join(dest_dir, safe_name))

    with _active_lock:
        if dest in _active_downloads:
            raise DownloadInProgress(f"{safe_name} is already being downloaded")
        _active_downloads.add(dest)
    try:
        return _download_attempts(
            host,
            port,
            filename,
            dest,
            context,
            max_attempts,
            progress_callback,
            cancel_event,
        )
    finally:
        with _active_lock:
            _active_downloads.discard(dest)


def _download_attempts(
    host, port, filename, dest, context, max_attempts, progress_callback, cancel_event
) -> tuple[str, int]:
    partial = dest + PARTIAL_SUFFIX
    request = Request(Operation.DOWNLOAD, filename)
    try:
        os.makedirs(os.path.dirname(dest), exist_ok=True)
    except OSError as e:
        raise LocalFileError(dest, e) from e

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            channel = _connect(host, port, context)
            try:
                channel.write(request.encode())
                received = recv_file_with_digest(
                    channel, partial, progress_callback, cancel_event
                )
            finally:
                channel.close()
        except (TransportError, IntegrityError) as e:
            last_error = e
            logger.warning(
                "Download attempt %d/%d of %s failed: %s",
                attempt,
                max_attempts,
                filename,
                e,
            )
            continue
        except OSError as e:
            raise LocalFileError(partial, e) from e

        try:
            os.replace(partial, dest)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.remove(partial)
            raise LocalFileError(dest, e) from e
        logger.info("Downloaded %s (%d bytes) on attempt %d", filename, received, attempt)
        return dest, received

    raise DownloadFailed(filename, max_attempts, last_error)


def list_downloads(dest_dir: str = DOWNLOADS_DIR) -> list[str]:
    """Completed downloads in *dest_dir*; unverified partial files are skipped."""
    return [
        name for name in _list_local(dest_dir) if not name.endswith(PARTIAL_SUFFIX)
    ]



# ======================================================================
# CLI wrappers — print results (used by the interactive client)
# ======================================================================


def _print_names(names: list[str]) -> None:
    if not names:
        print("  (no files)")
        return
    for name in names:
        print(f"  {name}")


def list_files(host: str, port: int, context: ssl.SSLContext | None = None) -> None:
    """Print the server's catalog."""
    try:
        names = fetch_file_list(host, port, context)
    except CadenceError as e:
        print(f"  [!] {e}")
        return
    _print_names(names)


def search(
    host: str, port: int, term: str, context: ssl.SSLContext | None = None
) -> None:
    """Print the catalog entries matching *term*."""
    try:
        names = search_remote(host, port, term, context)
    except CadenceError as e:
        print(f"  [!] {e}")
        return
    _print_names(names)


def download_file(
    host: str,
    port: int,
    filename: str,
    dest_dir: str = DOWNLOADS_DIR,
    context: ssl.SSLContext | None = None,
    max_attempts: int = MAX_DOWNLOAD_ATTEMPTS,
) -> bool:
    """Download a file and print the result.  Returns True on success."""
    try:
        dest, received = do_download(
            host, port, filename, dest_dir, context, max_attempts
        )
    except CadenceError as e:
        print(f"  [!] {e}")
        return False
    print(f"  Downloaded {filename} ({format_size(received)}) -> {dest}")
    return True
