"""
Wire protocol helpers: request lines, error messages and file streaming.

A request is a single text line sent in one write:

    LIST
    SEARCH <term>
    DOWNLOAD <filename>

The argument may contain spaces but not newlines.  Responses depend on the
operation:

    LIST / SEARCH   "<filename>\\n" lines, ended by the server closing
    DOWNLOAD        [ file bytes ][ 32 bytes: SHA-256 of the file bytes ]
    any failure     "FILEERROR <errno>" or "RPCERROR <code>"

The download response has no length prefix.  The receiver holds back the
most recent DIGEST_SIZE bytes while streaming to disk; whatever is held back
at end-of-stream is the digest.
"""

import enum
import errno
import hashlib
import os
import re
import threading
from dataclasses import dataclass

from typing_extensions import Callable

from .config import CHUNK_SIZE, DIGEST_SIZE
from .errors import (
    ErrorKind,
    FileAccessError,
    IntegrityError,
    ProtocolError,
    RemoteError,
    RpcErrorCode,
    TransferCancelled,
)
from .transport import SecureChannel

ENC = "utf-8"

_ERROR_RE = re.compile(rb"\s*(FILEERROR|RPCERROR)\s+(-?\d+)\s*")


class Operation(str, enum.Enum):
    LIST = "LIST"
    SEARCH = "SEARCH"
    DOWNLOAD = "DOWNLOAD"


# Operations that take exactly one argument.
_UNARY = (Operation.SEARCH, Operation.DOWNLOAD)


@dataclass(frozen=True)
class Request:
    operation: Operation
    argument: str | None = None

    def __post_init__(self) -> None:
        if self.operation is Operation.LIST:
            if self.argument is not None:
                raise ValueError("LIST takes no argument")
        elif not self.argument:
            raise ValueError(f"{self.operation.value} requires an argument")
        elif "\n" in self.argument:
            raise ValueError("Request argument must not contain a newline")

    def encode(self) -> bytes:
        if self.argument is None:
            return self.operation.value.encode(ENC)
        return f"{self.operation.value} {self.argument}".encode(ENC)


# ---------------------------------------------------------------------------
# Request parsing (server side)
# ---------------------------------------------------------------------------


def parse_request(raw: bytes) -> Request:
    """Split a request line into operation and argument and check its arity.

    Raises ProtocolError carrying the RPC error code to report.
    """
    text = raw.split(b"\x00", 1)[0].decode(ENC, errors="replace")
    # Trailing whitespace belongs to the argument.
    tokens = text.lstrip().split(None, 1)

    if len(tokens) == 1:
        if tokens[0] == Operation.LIST.value:
            return Request(Operation.LIST)
        raise ProtocolError(RpcErrorCode.TOO_FEW_ARGS)

    if len(tokens) == 2:
        op, argument = tokens
        argument = argument.split("\n", 1)[0].rstrip("\r")
        if op == Operation.LIST.value:
            raise ProtocolError(RpcErrorCode.TOO_MANY_ARGS)
        for operation in _UNARY:
            if op == operation.value:
                return Request(operation, argument)
        raise ProtocolError(RpcErrorCode.BAD_OPERATION)

    raise ProtocolError(RpcErrorCode.TOO_FEW_ARGS)


# ---------------------------------------------------------------------------
# Error messages
# ---------------------------------------------------------------------------


def format_error(kind: ErrorKind, code: int) -> bytes:
    return f"{kind.value} {int(code)}".encode(ENC)


def parse_error(data: bytes) -> RemoteError | None:
    """Decode *data* as an error message, or return None if it is not one."""
    match = _ERROR_RE.fullmatch(data.rstrip(b"\x00"))
    if match is None:
        return None
    return RemoteError(ErrorKind(match.group(1).decode(ENC)), int(match.group(2)))


# ---------------------------------------------------------------------------
# File transfer
# ---------------------------------------------------------------------------


def send_file_with_digest(channel: SecureChannel, filepath: str) -> bytes:
    """Stream *filepath* in CHUNK_SIZE pieces, then its SHA-256 digest.

    Raises FileAccessError (before anything is written) if the file cannot be
    opened.  Returns the digest that was sent.
    """
    try:
        f = open(filepath, "rb")
    except OSError as e:
        raise FileAccessError(
            os.path.basename(filepath), e.errno or errno.EIO
        ) from e

    digest = hashlib.sha256()
    with f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            channel.write(chunk)
            digest.update(chunk)

    final = digest.digest()
    channel.write(final)
    return final


def recv_file_with_digest(
    channel: SecureChannel,
    filepath: str,
    progress_callback: Callable[[int], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """
    Receive a DOWNLOAD response into *filepath* and verify its digest.

    Returns the number of payload bytes written.  The file is created when the
    first chunk arrives.  On any failure (error message from the server,
    cancellation, short stream, digest mismatch, transport error) the partial
    file is deleted and the exception propagates.

    progress_callback: optional callable(payload_bytes_so_far)
    cancel_event: optional threading.Event to cancel the transfer
    """
    digest = hashlib.sha256()
    tail = b""
    received = 0
    out = None
    try:
        try:
            while True:
                if cancel_event and cancel_event.is_set():
                    raise TransferCancelled("Transfer cancelled")
                chunk = channel.read(CHUNK_SIZE)
                if not chunk:
                    break
                remote_error = parse_error(chunk)
                if remote_error is not None:
                    raise remote_error
                if out is None:
                    out = open(filepath, "wb")

                buffered = tail + chunk
                payload = buffered[:-DIGEST_SIZE]
                tail = buffered[-DIGEST_SIZE:]
                if payload:
                    out.write(payload)
                    digest.update(payload)
                    received += len(payload)
                    if progress_callback:
                        progress_callback(received)
        finally:
            if out is not None:
                out.close()

        if len(tail) < DIGEST_SIZE:
            raise IntegrityError(
                f"Stream ended after {len(tail)} bytes, before a complete digest"
            )
        if digest.digest() != tail:
            raise IntegrityError("SHA-256 digest mismatch")
    except Exception:
        # Never leave a partial or unverified file behind
        if out is not None:
            try:
                os.remove(filepath)
            except OSError:
                pass
        raise

    return received
