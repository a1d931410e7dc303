"""
Cadence - Secure File Catalog and Transfer

A TLS file catalog server with SHA-256 verified downloads, and a client
that browses, downloads and plays files from it.
"""

__version__ = "1.0.0"

from .catalog import list_files, search_files
from .client import (
    do_download,
    fetch_file_list,
    format_size,
    list_downloads,
    search_remote,
)
from .config import (
    CHUNK_SIZE,
    DEFAULT_PORT,
    DIGEST_SIZE,
    MAX_DOWNLOAD_ATTEMPTS,
    REQUIRED_SUFFIX,
)
from .errors import (
    CadenceError,
    DownloadFailed,
    DownloadInProgress,
    FileAccessError,
    IntegrityError,
    LocalFileError,
    ProtocolError,
    RemoteError,
    TransferCancelled,
    TransportError,
)
from .playback import CancelToken, PlaybackController
from .protocol import Operation, Request, parse_request
from .server import FileServer, RpcDispatcher
from .transport import SecureChannel, TransportConfig, client_context, server_context

__all__ = [
    "DEFAULT_PORT",
    "CHUNK_SIZE",
    "DIGEST_SIZE",
    "REQUIRED_SUFFIX",
    "MAX_DOWNLOAD_ATTEMPTS",
    "list_files",
    "search_files",
    "fetch_file_list",
    "search_remote",
    "do_download",
    "list_downloads",
    "format_size",
    "FileServer",
    "RpcDispatcher",
    "SecureChannel",
    "TransportConfig",
    "server_context",
    "client_context",
    "Operation",
    "Request",
    "parse_request",
    "CancelToken",
    "PlaybackController",
    "CadenceError",
    "TransportError",
    "ProtocolError",
    "FileAccessError",
    "RemoteError",
    "IntegrityError",
    "DownloadFailed",
    "DownloadInProgress",
    "LocalFileError",
    "TransferCancelled",
]
