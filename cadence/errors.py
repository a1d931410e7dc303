"""
Exception hierarchy shared by the server and the client.
"""

import enum
import os


class RpcErrorCode(enum.IntEnum):
    TOO_MANY_ARGS = -1
    TOO_FEW_ARGS = -2
    BAD_OPERATION = -3


class ErrorKind(str, enum.Enum):
    FILE = "FILEERROR"
    RPC = "RPCERROR"


class CadenceError(Exception):
    """Base class for every error raised by this package."""


class TransportError(CadenceError):
    """Socket, handshake or encrypted I/O failure."""


class ProtocolError(CadenceError):
    """A request or response that does not follow the wire grammar."""

    def __init__(self, code: RpcErrorCode, message: str = ""):
        super().__init__(message or code.name.lower().replace("_", " "))
        self.code = code


class FileAccessError(CadenceError):
    """The requested file could not be opened for reading."""

    def __init__(self, filename: str, errno: int):
        super().__init__(f"{filename}: {os.strerror(errno)}")
        self.filename = filename
        self.errno = errno


class RemoteError(CadenceError):
    """An error message the server sent in place of a response."""

    def __init__(self, kind: ErrorKind, code: int):
        self.kind = kind
        self.code = code
        super().__init__(self.describe())

    def describe(self) -> str:
        if self.kind is ErrorKind.FILE:
            return f"Server file error: {os.strerror(self.code)}"
        try:
            reason = RpcErrorCode(self.code).name.lower().replace("_", " ")
        except ValueError:
            reason = "unknown error"
        return f"Server rejected request: {reason} ({self.code})"


class IntegrityError(CadenceError):
    """The trailing digest is missing or does not match the payload."""


class DownloadFailed(CadenceError):
    """Every download attempt failed."""

    def __init__(self, filename: str, attempts: int, cause: Exception | None):
        super().__init__(
            f"Download of {filename} failed after {attempts} attempt(s): {cause}"
        )
        self.filename = filename
        self.attempts = attempts
        self.cause = cause


class TransferCancelled(CadenceError):
    """The caller cancelled a download in progress."""


class LocalFileError(CadenceError):
    """A download could not be written into the local downloads directory."""

    def __init__(self, path: str, cause: OSError):
        super().__init__(f"Cannot save {path}: {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class DownloadInProgress(CadenceError):
    """Another download into the same destination is still running."""
